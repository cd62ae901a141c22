"""Stock status derived from quantity thresholds. Pure functions, no I/O."""
from edsupply.models.enums import ADMINISTRATIVE_STATUSES, SupplyStatus


def derive(current: int, minimum: int, critical: int) -> SupplyStatus:
    """
    Map a quantity to in_stock / low_stock / critical_stock.

    Never returns on_order or discontinued. Thresholds are not validated here;
    with critical > minimum the low_stock band is simply empty.
    """
    if current <= 0:
        return SupplyStatus.CRITICAL_STOCK
    if current <= critical:
        return SupplyStatus.CRITICAL_STOCK
    if current <= minimum:
        return SupplyStatus.LOW_STOCK
    return SupplyStatus.IN_STOCK


def next_status(
    stored: SupplyStatus,
    current: int,
    minimum: int,
    critical: int,
    inbound: bool = False,
) -> SupplyStatus:
    """
    Status to store after a quantity change.

    discontinued is kept no matter what. on_order is kept until stock arrives
    through an inbound movement (check-in, restock, return).
    """
    if stored == SupplyStatus.DISCONTINUED:
        return stored
    if stored == SupplyStatus.ON_ORDER and not inbound:
        return stored
    return derive(current, minimum, critical)


def is_administrative(status: SupplyStatus) -> bool:
    return status in ADMINISTRATIVE_STATUSES


def validate_thresholds(minimum: int, critical: int) -> None:
    """Raise ValueError unless 0 <= critical <= minimum."""
    if minimum < 0 or critical < 0:
        raise ValueError("minimum_quantity and critical_quantity must be >= 0")
    if critical > minimum:
        raise ValueError(
            f"critical_quantity ({critical}) must not exceed minimum_quantity ({minimum})"
        )
