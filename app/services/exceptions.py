"""
Royalty engine errors.

Fatal errors abort one author's statement; the batch orchestrator records
them and moves on. DuplicateStatementError is a skip, not a failure.
InsufficientDataWarning is never raised: it is attached to the result.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict


class RoyaltyEngineError(Exception):
    """Base class for royalty engine errors."""

    code = "royalty_engine_error"


class ScheduleError(RoyaltyEngineError):
    """Tier configuration is missing, overlapping, gapped or not open-ended."""

    code = "schedule_error"


class DuplicateStatementError(RoyaltyEngineError):
    """A statement already exists for (tenant, contact, period)."""

    code = "duplicate_statement"


class NegativeDeltaUnderflow(RoyaltyEngineError):
    """Returns pushed a format's net quantity below zero beyond the tolerance."""

    code = "negative_delta_underflow"


class SplitError(RoyaltyEngineError):
    """Ownership percentages are missing, out of range or do not sum to 100."""

    code = "split_error"


class ContractNotFoundError(RoyaltyEngineError):
    """No active contract could be resolved for the author."""

    code = "contract_not_found"


class LifetimeStateError(RoyaltyEngineError):
    """Lifetime sales state cannot be advanced for the requested period."""

    code = "lifetime_state_error"


class PersistenceError(RoyaltyEngineError):
    """The storage layer failed while persisting a statement."""

    code = "persistence_error"


class StatementImmutableError(RoyaltyEngineError):
    """A persisted statement was about to be modified or deleted."""

    code = "statement_immutable"


@dataclass(frozen=True)
class InsufficientDataWarning:
    """Non-fatal data problem attached to a statement (e.g. returns exceed sales)."""

    format: str
    message: str
    excess_quantity: int = 0
    code: str = "insufficient_data"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
