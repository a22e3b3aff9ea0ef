"""Error taxonomy for the tracking engine.

Only ``ValidationError``, ``NotFoundError``, ``ForbiddenError`` and
``ConflictError`` reach callers. ``UpstreamDegraded`` is raised by routing
clients and absorbed by the strategy chain, where it becomes a warning.
"""

from __future__ import annotations

from typing import Any


class TrackingError(Exception):
    """Base exception for errors raised by the tracking engine."""

    code = "tracking_error"

    def __init__(self, message: str, details: Any | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(TrackingError):
    """Malformed input, rejected before any state change."""

    code = "validation_error"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message, details=errors)
        self.errors = errors or []


class NotFoundError(TrackingError):
    """Unknown tracking session."""

    code = "not_found"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"tracking session not found: {session_id}")
        self.session_id = session_id


class ForbiddenError(TrackingError):
    """Caller is neither the session owner nor an authorized overseer."""

    code = "forbidden"

    def __init__(self, caller_id: str, session_id: str) -> None:
        super().__init__(f"caller {caller_id} may not act on session {session_id}")
        self.caller_id = caller_id
        self.session_id = session_id


class ConflictError(TrackingError):
    """Operation not allowed in the session's current (closed) state."""

    code = "conflict"

    def __init__(self, message: str, session: Any | None = None) -> None:
        super().__init__(message, details=session)
        self.session = session


class UpstreamDegraded(TrackingError):
    """An external routing tier failed; the caller should fall through."""

    code = "upstream_degraded"

    def __init__(self, tier: str, reason: str, status: int | None = None) -> None:
        super().__init__(f"{tier}: {reason}")
        self.tier = tier
        self.reason = reason
        self.status = status
