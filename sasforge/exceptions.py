"""
Exceptions for sasforge.

Every error carries an Azure-style error code plus the offending field and the
expected/actual values, so callers can diagnose a failure without recomputing
the string-to-sign.

Author: sasforge Team
Date: 2026-10-19
"""

from typing import Any, Dict, Optional


class SasError(Exception):
    """Base exception for SAS issuance errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        error_code: str = "SasError",
        field: Optional[str] = None,
        expected: Any = None,
        actual: Any = None,
    ):
        self.message = message
        self.error_code = error_code
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Structured form of the error, omitting unset context."""
        data: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
        }
        for name in ("field", "expected", "actual"):
            value = getattr(self, name)
            if value is not None:
                data[name] = str(value)
        return data


class MalformedDescriptorError(SasError):
    """Raised when a credential descriptor string cannot be parsed."""

    def __init__(self, message: str = "Malformed credential descriptor", **context: Any):
        super().__init__(message, "MalformedDescriptor", **context)


class InvalidScopeError(SasError):
    """Raised when a requested scope violates its alphabet, window or policy."""

    def __init__(self, message: str = "Invalid SAS scope", **context: Any):
        super().__init__(message, "InvalidScope", **context)


class SigningError(SasError):
    """Raised when key material or the key/token window relationship is invalid."""

    def __init__(self, message: str = "Unable to sign SAS token", **context: Any):
        super().__init__(message, "SigningError", **context)


class AuthorityError(SasError):
    """Base exception for delegation authority failures."""


class AuthorityUnavailableError(AuthorityError):
    """Raised when the authority could not be reached or timed out (transient)."""

    retryable = True

    def __init__(self, message: str = "Delegation authority unavailable", **context: Any):
        super().__init__(message, "AuthorityUnavailable", **context)


class AuthorityDeniedError(AuthorityError):
    """Raised when the authority explicitly refused to issue a key."""

    def __init__(self, message: str = "Delegation authority denied the request", **context: Any):
        super().__init__(message, "AuthorityDenied", **context)
