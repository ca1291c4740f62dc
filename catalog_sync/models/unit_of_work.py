"""Per-event processing state machine and its reportable outcome."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.exceptions import BaseAppException
from .product import utcnow


class UnitState(str, Enum):
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    RESOLVED = "resolved"
    MERGED = "merged"
    STOCK_APPLIED = "stock_applied"
    COMMITTED = "committed"
    REJECTED = "rejected"
    FAILED = "failed"


TERMINAL_STATES = {UnitState.COMMITTED, UnitState.REJECTED, UnitState.FAILED}

# COMMITTED is reachable early for duplicate deliveries and ignored topics.
TRANSITIONS = {
    UnitState.RECEIVED: {UnitState.AUTHENTICATED, UnitState.RESOLVED, UnitState.COMMITTED, UnitState.REJECTED},
    UnitState.AUTHENTICATED: {UnitState.RESOLVED, UnitState.COMMITTED},
    UnitState.RESOLVED: {UnitState.MERGED},
    UnitState.MERGED: {UnitState.STOCK_APPLIED},
    UnitState.STOCK_APPLIED: {UnitState.COMMITTED},
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class StockChange:
    """One stock mutation (or skipped mutation) applied to a variant."""

    variant_id: int
    before: int
    after: int
    requested: int
    mode: str
    skipped_reason: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.skipped_reason is None and self.before != self.after

    @property
    def clamped(self) -> bool:
        return self.mode == "delta" and self.before + self.requested < 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "before": self.before,
            "after": self.after,
            "requested": self.requested,
            "mode": self.mode,
            "skipped_reason": self.skipped_reason,
        }


@dataclass
class UnitOfWork:
    """Tracks one push event or one pulled entity through the pipeline."""

    topic: str
    origin: str
    event_id: Optional[str] = None
    external_id: Optional[Any] = None
    state: UnitState = UnitState.RECEIVED
    history: List[UnitState] = field(default_factory=lambda: [UnitState.RECEIVED])
    action: Optional[str] = None
    duplicate: bool = False
    local_product_id: Optional[int] = None
    local_variant_ids: List[int] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    stock_changes: List[StockChange] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)
    # Remote side effects that did not take; the local commit stands
    warnings: List[str] = field(default_factory=list)
    error: Optional[BaseAppException] = None
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    def advance(self, new_state: UnitState) -> None:
        if new_state not in TRANSITIONS.get(self.state, set()):
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")
        self._enter(new_state)

    def reject(self, error: BaseAppException) -> None:
        if self.state != UnitState.RECEIVED:
            raise InvalidTransition(f"{self.state.value} -> rejected")
        self.error = error
        self.action = "rejected"
        self._enter(UnitState.REJECTED)

    def fail(self, error: BaseAppException) -> None:
        if self.state in TERMINAL_STATES:
            raise InvalidTransition(f"{self.state.value} -> failed")
        self.error = error
        self.action = "failed"
        self._enter(UnitState.FAILED)

    def reset_effects(self) -> None:
        """Forget in-transaction bookkeeping after a rollback."""
        self.created = self.updated = self.unchanged = self.deleted = 0
        self.stock_changes = []
        self.local_variant_ids = []

    def _enter(self, new_state: UnitState) -> None:
        self.state = new_state
        self.history.append(new_state)
        if new_state in TERMINAL_STATES:
            self.finished_at = utcnow()

    def outcome(self) -> "ProcessingOutcome":
        return ProcessingOutcome(
            state=self.state,
            topic=self.topic,
            origin=self.origin,
            event_id=self.event_id,
            external_id=self.external_id,
            action=self.action,
            duplicate=self.duplicate,
            local_product_id=self.local_product_id,
            local_variant_ids=list(self.local_variant_ids),
            created=self.created,
            updated=self.updated,
            unchanged=self.unchanged,
            deleted=self.deleted,
            stock_changes=list(self.stock_changes),
            unmatched=list(self.unmatched),
            warnings=list(self.warnings),
            error_kind=self.error.kind if self.error else None,
            error_message=self.error.message if self.error else None,
            error_details=dict(self.error.details) if self.error else {},
            history=list(self.history),
        )


@dataclass
class ProcessingOutcome:
    """What happened to one unit of work; safe to show to operators."""

    state: UnitState
    topic: str
    origin: str
    event_id: Optional[str] = None
    external_id: Optional[Any] = None
    action: Optional[str] = None
    duplicate: bool = False
    local_product_id: Optional[int] = None
    local_variant_ids: List[int] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    stock_changes: List[StockChange] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    error_details: Dict[str, Any] = field(default_factory=dict)
    history: List[UnitState] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.state == UnitState.COMMITTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "topic": self.topic,
            "origin": self.origin,
            "event_id": self.event_id,
            "external_id": self.external_id,
            "action": self.action,
            "duplicate": self.duplicate,
            "local_product_id": self.local_product_id,
            "local_variant_ids": self.local_variant_ids,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "deleted": self.deleted,
            "stock_changes": [change.to_dict() for change in self.stock_changes],
            "unmatched": self.unmatched,
            "warnings": self.warnings,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }
