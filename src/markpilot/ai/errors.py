"""Failure taxonomy shared by the resolver, executor and command pipeline.

Every failure a user can see maps to one :class:`ErrorCategory`, and every
category maps to one fixed message. Components return categorized results
instead of raising across their boundaries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import httpx
import openai


class ErrorCategory(str, Enum):
    NOT_FOUND = "not_found"
    OUT_OF_BOUNDS = "out_of_bounds"
    MALFORMED_ARGUMENTS = "malformed_arguments"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @property
    def message(self) -> str:
        return ERROR_MESSAGES[self]


ERROR_MESSAGES: Mapping[ErrorCategory, str] = {
    ErrorCategory.NOT_FOUND: "Could not find that text in the document. Try quoting it exactly as it appears.",
    ErrorCategory.OUT_OF_BOUNDS: "That edit falls outside the document, so nothing was changed.",
    ErrorCategory.MALFORMED_ARGUMENTS: "Failed to parse AI response. Please try again.",
    ErrorCategory.UNAUTHORIZED: "Invalid API key. Please check your API key in Settings.",
    ErrorCategory.RATE_LIMITED: "Rate limit exceeded. Please try again in a moment.",
    ErrorCategory.SERVICE_UNAVAILABLE: "The AI service is temporarily unavailable. Please try again later.",
    ErrorCategory.TIMEOUT: "The request timed out. Please try again.",
    ErrorCategory.CANCELLED: "Request cancelled.",
    ErrorCategory.UNKNOWN: "Something went wrong while processing your request. Please try again.",
}


@dataclass
class CommandError(Exception):
    """Categorized failure carried between components.

    Attributes:
        category: Which taxonomy bucket the failure belongs to.
        detail: Developer-facing explanation (never shown verbatim to users).
        details: Extra structured context for logging.
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN
    detail: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        Exception.__init__(self, self.detail or self.category.message)

    @property
    def message(self) -> str:
        return self.category.message

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": self.category.value,
            "message": self.message,
        }
        if self.detail:
            payload["detail"] = self.detail
        if self.details:
            payload["details"] = dict(self.details)
        return payload

    def __str__(self) -> str:
        return f"[{self.category.value}] {self.detail or self.message}"


@dataclass
class MalformedArgumentsError(CommandError):
    """Tool call arguments that failed to parse or validate."""

    category: ErrorCategory = ErrorCategory.MALFORMED_ARGUMENTS
    tool: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.tool:
            payload["tool"] = self.tool
        return payload


def _status_category(status: int | None) -> ErrorCategory | None:
    if status is None:
        return None
    if status in (401, 403):
        return ErrorCategory.UNAUTHORIZED
    if status == 429:
        return ErrorCategory.RATE_LIMITED
    if status in (408, 504):
        return ErrorCategory.TIMEOUT
    if 500 <= status < 600:
        return ErrorCategory.SERVICE_UNAVAILABLE
    return None


def classify_exception(exc: BaseException) -> ErrorCategory:
    """Map a client, transport or asyncio exception onto the taxonomy."""

    if isinstance(exc, CommandError):
        return exc.category
    if isinstance(exc, asyncio.CancelledError):
        return ErrorCategory.CANCELLED
    # APITimeoutError subclasses APIConnectionError, so it is checked first.
    if isinstance(exc, (openai.APITimeoutError, httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ErrorCategory.UNAUTHORIZED
    if isinstance(exc, openai.RateLimitError):
        return ErrorCategory.RATE_LIMITED
    if isinstance(exc, (openai.InternalServerError, openai.APIConnectionError, httpx.TransportError)):
        return ErrorCategory.SERVICE_UNAVAILABLE
    if isinstance(exc, openai.APIStatusError):
        return _status_category(exc.status_code) or ErrorCategory.UNKNOWN
    if isinstance(exc, httpx.HTTPStatusError):
        return _status_category(exc.response.status_code) or ErrorCategory.UNKNOWN
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return _status_category(status) or ErrorCategory.UNKNOWN
    return ErrorCategory.UNKNOWN


__all__ = [
    "CommandError",
    "ERROR_MESSAGES",
    "ErrorCategory",
    "MalformedArgumentsError",
    "classify_exception",
]
