"""Business error taxonomy for trade lifecycle operations.

Every expected failure of a lifecycle operation is raised as a ``TradeError``
subclass. Infrastructure failures (database unreachable, Redis down) are not
wrapped and propagate as-is.
"""

from __future__ import annotations

from typing import Any, Optional


class TradeError(Exception):
    code = "trade_error"

    def __init__(self, message: str, *, context: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class AuthorizationError(TradeError):
    code = "not_authorized"


class InvalidStateError(TradeError):
    code = "invalid_state"


class AlreadyTerminalError(InvalidStateError):
    code = "already_terminal"


class ProposalAlreadyResolved(InvalidStateError):
    code = "proposal_already_resolved"


class ValidationError(TradeError):
    code = "validation_failed"


class NotFoundError(TradeError):
    code = "not_found"


class TradeNotFound(NotFoundError):
    code = "trade_not_found"


class ProposalNotFound(NotFoundError):
    code = "proposal_not_found"


class ConcurrencyConflictError(TradeError):
    """The trade changed between read and write more times than the retry budget allows."""

    code = "concurrency_conflict"
