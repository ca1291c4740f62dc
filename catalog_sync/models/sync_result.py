"""Bulk import result data models."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional

from .product import utcnow
from .unit_of_work import ProcessingOutcome


@dataclass
class ItemFailure:
    """One product that could not be reconciled during a bulk import."""

    external_id: str
    error_type: str
    message: str
    local_id: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_id": self.external_id,
            "local_id": self.local_id,
            "error_type": self.error_type,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass
class SyncResult:
    """
    Tally of a bulk pull import.

    Each product is its own unit of work, so ``failed_count`` products can
    fail while the rest commit. ``success`` is False when any product
    failed or the enumeration itself was aborted (``metadata["aborted"]``).
    """

    success: bool
    succeeded_count: int = 0
    failed_count: int = 0
    created_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    errors: List[ItemFailure] = field(default_factory=list)
    duration: float = 0.0  # seconds
    total_items: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = utcnow()

    def record(self, outcome: ProcessingOutcome) -> None:
        """Count one product's outcome."""
        self.total_items += 1
        if not outcome.committed:
            self.add_error(
                outcome.external_id,
                outcome.error_kind,
                outcome.error_message,
                local_id=outcome.local_product_id,
                details=outcome.error_details,
            )
            return

        self.succeeded_count += 1
        if outcome.action == "created":
            self.created_count += 1
        elif outcome.action == "updated":
            self.updated_count += 1
        else:
            self.unchanged_count += 1

    def add_error(
        self,
        external_id: Any,
        error_type: str,
        message: str,
        local_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.errors.append(ItemFailure(
            external_id=str(external_id),
            error_type=error_type,
            message=message,
            local_id=local_id,
            details=details,
        ))
        self.failed_count += 1

    def finalize(self):
        """Stamp the end time; any failure makes the import unsuccessful."""
        self.end_time = utcnow()
        if self.start_time:
            self.duration = (self.end_time - self.start_time).total_seconds()
        self.success = self.success and self.failed_count == 0

    @property
    def success_rate(self) -> float:
        if self.total_items == 0:
            return 0.0
        return (self.succeeded_count / self.total_items) * 100

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "total": self.total_items,
            "succeeded": self.succeeded_count,
            "failed": self.failed_count,
        }

    def failures_by_kind(self) -> Dict[str, int]:
        return dict(Counter(error.error_type for error in self.errors))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            **self.summary,
            "created": self.created_count,
            "updated": self.updated_count,
            "unchanged": self.unchanged_count,
            "success_rate": round(self.success_rate, 2),
            "duration": round(self.duration, 2),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "errors": [error.to_dict() for error in self.errors],
            "metadata": self.metadata
        }

    def get_summary(self) -> str:
        """Human-readable summary for the import log."""
        summary_lines = [
            f"Import completed in {self.duration:.2f}s",
            f"Total products: {self.total_items}",
            f"Succeeded: {self.succeeded_count} "
            f"(created {self.created_count}, updated {self.updated_count}, unchanged {self.unchanged_count})",
            f"Failed: {self.failed_count}",
        ]
        if "aborted" in self.metadata:
            summary_lines.append(f"Enumeration aborted: {self.metadata['aborted']['message']}")

        if self.errors:
            kinds = ", ".join(f"{kind}={n}" for kind, n in sorted(self.failures_by_kind().items()))
            summary_lines.append(f"\nErrors ({kinds}):")
            for error in self.errors[:5]:
                summary_lines.append(f"  - product {error.external_id}: {error.message}")
            if len(self.errors) > 5:
                summary_lines.append(f"  ... and {len(self.errors) - 5} more errors")

        return "\n".join(summary_lines)
