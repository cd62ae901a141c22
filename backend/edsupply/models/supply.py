import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.types import JSON

from edsupply.core.clock import utcnow
from edsupply.db.base import Base
from edsupply.models.enums import SupplyCategory, SupplyLocation, SupplyStatus, SupplyUnit
from edsupply.models.types import enum_column_type


def _new_id() -> str:
    return uuid.uuid4().hex


class Supply(Base):
    """
    Tracked medical supply.

    INVARIANT: status == derive(current_quantity, minimum_quantity, critical_quantity)
    unless an administrator set on_order / discontinued.
    - Quantities change only through InventoryService
    - `version` is bumped on every UPDATE; a stale writer fails its flush
    """
    __tablename__ = "medical_supplies"

    id = Column(String(64), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    category = Column(enum_column_type(SupplyCategory), nullable=False, default=SupplyCategory.OTHER)
    manufacturer = Column(String(255), nullable=True)
    model_number = Column(String(128), nullable=True)
    lot_number = Column(String(128), nullable=True)
    unit = Column(enum_column_type(SupplyUnit), nullable=False, default=SupplyUnit.EACH)
    unit_price = Column(Numeric(10, 2), nullable=True)
    location = Column(enum_column_type(SupplyLocation), nullable=False, default=SupplyLocation.CENTRAL_SUPPLY)
    expiration_date = Column(DateTime(timezone=True), nullable=True, index=True)
    last_restock_date = Column(DateTime(timezone=True), nullable=True)

    current_quantity = Column(Integer, nullable=False, default=0)
    minimum_quantity = Column(Integer, nullable=False, default=0)
    critical_quantity = Column(Integer, nullable=False, default=0)
    status = Column(enum_column_type(SupplyStatus), nullable=False, default=SupplyStatus.CRITICAL_STOCK, index=True)

    is_controlled = Column(Boolean, nullable=False, default=False)  # controlled substance tracking
    required_signature = Column(Boolean, nullable=False, default=False)  # checkout needs elevated access
    notes = Column(Text, nullable=True)
    tags = Column(JSON, nullable=True)

    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Supply {self.id} {self.name!r} qty={self.current_quantity} status={self.status}>"
