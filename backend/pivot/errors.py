"""
Asset Pivot — Client error kinds
"""

from typing import Any, Optional


class PivotError(Exception):
    """Base exception for pivot client errors."""


class AuthorizationError(PivotError):
    """Raised on HTTP 401. Never retried."""

    def __init__(self, message: str = "Unauthorized", identity: Any = None):
        super().__init__(message)
        self.identity = identity


class PivotFetchError(PivotError):
    """Any other fetch failure; carries the attempted query identity."""

    def __init__(self, message: str, identity: Any = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.identity = identity
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            base = f"{base} (HTTP {self.status_code})"
        if self.identity is not None:
            base = f"{base} [{self.identity}]"
        return base
