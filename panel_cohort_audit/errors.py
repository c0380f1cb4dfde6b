"""Error taxonomy for the panel cohort analytics engine.

Every error derives from :class:`PanelAuditError` so callers can catch the
whole family at the transport boundary. Input errors also subclass
``ValueError`` because that is what they are: the caller supplied something
that cannot be computed and must correct it. Only :class:`StoreUnavailable`
is retryable.

A ``SUPPRESSED`` trust verdict is *not* an error; it is a valid result with an
empty detail payload.
"""

from __future__ import annotations

from typing import Any, Mapping


class PanelAuditError(Exception):
    """Base class for all engine errors."""

    retryable: bool = False

    def __init__(self, message: str, details: Mapping[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable description of the error."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class InvalidWindow(PanelAuditError, ValueError):
    """Window bounds are unparseable or ``start >= end``."""


class InvalidDimension(PanelAuditError, ValueError):
    """Unknown dimension domain/level or malformed drill-down path."""


class MissingRequiredParameter(PanelAuditError, ValueError):
    """A metric was requested without a parameter it cannot be defined without."""


class StoreUnavailable(PanelAuditError):
    """The transaction store failed, timed out, or its circuit is open.

    The engine is stateless and idempotent, so retrying the whole request is
    always safe.
    """

    retryable = True
