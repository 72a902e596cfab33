"""
Error taxonomy shared by the store, the raster toolkit and the export pipeline.

Validation/lookup problems are raised before any pipeline stage starts; tool and
data problems abort a running export and end up in its Failed state.
"""
from __future__ import annotations

from typing import Optional, Sequence


class KnitterError(Exception):
    """Base class for every expected failure raised by this project."""


class ValidationError(KnitterError):
    """Missing required map fields, non-unique name, out-of-range coordinates."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(KnitterError):
    """Unknown map / warpable / node / export id."""

    def __init__(self, kind: str, ident: object):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class ExternalToolError(KnitterError):
    """
    A raster tool exited non-zero, timed out, or could not be started.

    Attributes:
        cmd: argv that was run (None for in-process operations)
        returncode: process exit code, None on timeout / missing binary
        output: last lines of combined stdout/stderr for diagnostics
    """

    def __init__(
        self,
        message: str,
        *,
        cmd: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        output: str = "",
    ):
        super().__init__(message)
        self.cmd = list(cmd) if cmd else None
        self.returncode = returncode
        self.output = output

    def detail(self) -> str:
        parts = [str(self)]
        if self.returncode is not None:
            parts.append(f"exit {self.returncode}")
        lines = [line.strip() for line in (self.output or "").splitlines() if line.strip()]
        if lines:
            parts.append(lines[-1])
        return "; ".join(parts)


class DataError(KnitterError):
    """Not enough data to compute a result (e.g. scale of a map with no placed images)."""


class ConcurrencyError(KnitterError):
    """An export is already active for this map."""


class InvalidTransitionError(KnitterError):
    """Export state machine was asked for a transition it does not allow."""
