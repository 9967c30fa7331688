"""
Chat error taxonomy and the result type returned at every write boundary.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ChatErrorCode(str, Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    NOT_FOUND = "NOT_FOUND"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    OWNER_LOOKUP_FAILED = "OWNER_LOOKUP_FAILED"
    INVALID_MESSAGE = "INVALID_MESSAGE"


@dataclass(frozen=True)
class ChatError:
    code: ChatErrorCode
    message: str

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


@dataclass(frozen=True)
class OperationResult:
    """``{success, error}`` plus an optional value. Store errors never escape past this."""
    success: bool
    error: Optional[ChatError] = None
    value: Any = None

    @classmethod
    def ok(cls, value: Any = None) -> "OperationResult":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, code: ChatErrorCode, message: str) -> "OperationResult":
        return cls(success=False, error=ChatError(code, message))


def unauthenticated(message: str = "Sign in or start the conversation from a listing.") -> OperationResult:
    return OperationResult.fail(ChatErrorCode.UNAUTHENTICATED, message)


def not_found(resource: str) -> OperationResult:
    return OperationResult.fail(ChatErrorCode.NOT_FOUND, f"{resource} not found.")


def store_unavailable() -> OperationResult:
    return OperationResult.fail(
        ChatErrorCode.STORE_UNAVAILABLE,
        "Chat is temporarily unavailable. Please try again.",
    )
