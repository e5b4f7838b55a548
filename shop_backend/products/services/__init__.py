from .inventory import (
    InsufficientStockError,
    InventoryError,
    release_lines,
    release_stock,
    reserve_lines,
    reserve_stock,
)

__all__ = [
    "InventoryError",
    "InsufficientStockError",
    "reserve_stock",
    "release_stock",
    "reserve_lines",
    "release_lines",
]
