"""Low-stock signal sinks."""

from typing import Protocol

from ..utils.logger import get_sync_logger


class StockNotifier(Protocol):
    def low_stock(self, variant, quantity: int, threshold: int) -> None:
        ...


class LoggingStockNotifier:
    """Default sink: a warning on the sync log."""

    def __init__(self):
        self.logger = get_sync_logger()

    def low_stock(self, variant, quantity: int, threshold: int) -> None:
        name = variant.product.name if variant.product is not None else "?"
        self.logger.warning(
            f"[LOW STOCK] {name} - {variant.title or variant.sku or variant.id}: "
            f"{quantity} units remaining (threshold {threshold})"
        )
