"""Error types raised by the merman pipeline."""
from __future__ import annotations

from typing import Optional


class MermanError(ValueError):
    """Structured error with a stable code for CLI and scanner mapping."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return self.message


class DiagramDecodeError(MermanError):
    """Raised when description text cannot be decoded into a diagram."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        super().__init__(code, message)
        self.line = line
        self.column = column


class MalformedDiagram(MermanError):
    """Raised when a diagram fails structural validation."""

    def __init__(self, code: str, message: str, *, field: str, value: object) -> None:
        super().__init__(code, message)
        self.field = field
        self.value = value


class LayoutOverflow(MermanError):
    """Raised when a diagram exceeds the configured layout size limits."""

    def __init__(self, kind: str, size: int, limit: int) -> None:
        super().__init__(
            "E_LAYOUT_OVERFLOW",
            f"diagram exceeds configured limits: {kind}={size} (max {limit})",
        )
        self.kind = kind
        self.size = size
        self.limit = limit


__all__ = ["MermanError", "DiagramDecodeError", "MalformedDiagram", "LayoutOverflow"]
