"""
SupplyTransaction: the inventory ledger. One row per successful quantity-changing event.
Trust: append-only. Rows are written inside the same transaction as the Supply
update and are never updated or deleted afterwards (see db/immutability.py).
"""
import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text

from edsupply.core.clock import utcnow
from edsupply.db.base import Base
from edsupply.models.enums import SupplyLocation, TransactionType
from edsupply.models.types import enum_column_type


class SupplyTransaction(Base):
    __tablename__ = "supply_transactions"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    # No foreign key: history must survive an administrative hard delete of the supply
    supply_id = Column(String(64), nullable=False, index=True)
    supply_name = Column(String(255), nullable=False)
    transaction_type = Column(enum_column_type(TransactionType), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)  # absolute amount moved
    previous_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)
    user_id = Column(String(128), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    patient_id = Column(String(128), nullable=True, index=True)
    patient_name = Column(String(255), nullable=True)
    source = Column(enum_column_type(SupplyLocation), nullable=True)
    destination = Column(enum_column_type(SupplyLocation), nullable=True)
    notes = Column(Text, nullable=True)
    lot_number = Column(String(128), nullable=True)
    expiration_date = Column(DateTime(timezone=True), nullable=True)

    @property
    def quantity_delta(self) -> int:
        """Signed change applied to the supply's current quantity."""
        return self.new_quantity - self.previous_quantity
