"""Stock mutations: absolute sets and signed deltas, floored at zero."""

from typing import Optional

from ..models.product import Variant
from ..models.unit_of_work import StockChange
from ..utils.logger import get_sync_logger
from .notifier import LoggingStockNotifier, StockNotifier


class StockLedger:
    """
    The only writer of ``Variant.stock``.

    Callers hold the variant's lock (registry lock plus row lock taken at
    resolution) for the whole transaction. ``set_absolute`` is idempotent;
    ``apply_delta`` is not, so deltas are only applied once per recorded
    event id by the reconciliation service.
    """

    def __init__(self, notifier: Optional[StockNotifier] = None, low_stock_threshold: int = 10):
        self.notifier = notifier or LoggingStockNotifier()
        self.low_stock_threshold = low_stock_threshold
        self.logger = get_sync_logger()

    def set_absolute(self, variant: Variant, quantity: int,
                     require_inventory_item: bool = True) -> StockChange:
        before = variant.stock or 0
        if require_inventory_item and variant.is_sync_pending:
            return self._skip(variant, before, quantity, "absolute")

        after = max(0, int(quantity))
        return self._write(variant, before, after, quantity, "absolute")

    def apply_delta(self, variant: Variant, delta: int,
                    require_inventory_item: bool = True) -> StockChange:
        before = variant.stock or 0
        if require_inventory_item and variant.is_sync_pending:
            return self._skip(variant, before, delta, "delta")

        after = max(0, before + int(delta))
        if before + delta < 0:
            self.logger.warning(
                f"Stock for variant {variant.id} would go to {before + delta}; floored at 0"
            )
        return self._write(variant, before, after, delta, "delta")

    def _skip(self, variant: Variant, before: int, requested: int, mode: str) -> StockChange:
        self.logger.warning(
            f"Variant {variant.id} (sku={variant.sku}) has no inventory item id yet; "
            f"{mode} stock change of {requested} not applied"
        )
        return StockChange(
            variant_id=variant.id,
            before=before,
            after=before,
            requested=requested,
            mode=mode,
            skipped_reason="sync_pending",
        )

    def _write(self, variant: Variant, before: int, after: int, requested: int, mode: str) -> StockChange:
        change = StockChange(variant_id=variant.id, before=before, after=after, requested=requested, mode=mode)
        if after == before:
            return change

        variant.stock = after
        variant.touch()
        self.logger.info(f"Stock for variant {variant.id} (sku={variant.sku}): {before} -> {after}")
        self._check_low_stock(variant, after)
        return change

    def _check_low_stock(self, variant: Variant, after: int) -> None:
        # Any write that lands low signals, including seeding a new variant.
        if after > self.low_stock_threshold:
            return
        try:
            self.notifier.low_stock(variant, after, self.low_stock_threshold)
        except Exception as e:
            # Advisory only; the stock write stands.
            self.logger.warning(f"Low-stock notification failed for variant {variant.id}: {str(e)}")
