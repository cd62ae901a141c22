"""Inventory ledger entries. Used by InventoryService inside its transaction."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from edsupply.models.enums import SupplyLocation, TransactionType
from edsupply.models.supply_transaction import SupplyTransaction


def append(
    db: Session,
    *,
    supply_id: str,
    supply_name: str,
    transaction_type: TransactionType,
    quantity: int,
    previous_quantity: int,
    new_quantity: int,
    user_id: str,
    user_name: str,
    timestamp: datetime,
    patient_id: Optional[str] = None,
    patient_name: Optional[str] = None,
    source: Optional[SupplyLocation] = None,
    destination: Optional[SupplyLocation] = None,
    notes: Optional[str] = None,
    lot_number: Optional[str] = None,
    expiration_date: Optional[datetime] = None,
) -> SupplyTransaction:
    """Add one ledger row to the caller's session. Does not commit."""
    entry = SupplyTransaction(
        supply_id=supply_id,
        supply_name=supply_name,
        transaction_type=transaction_type,
        quantity=quantity,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        user_id=user_id,
        user_name=user_name,
        timestamp=timestamp,
        patient_id=patient_id,
        patient_name=patient_name,
        source=source,
        destination=destination,
        notes=notes,
        lot_number=lot_number,
        expiration_date=expiration_date,
    )
    db.add(entry)
    return entry


def list_entries(
    db: Session,
    supply_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    transaction_type: Optional[TransactionType] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[SupplyTransaction]:
    q = db.query(SupplyTransaction)
    if supply_id:
        q = q.filter(SupplyTransaction.supply_id == supply_id)
    if patient_id:
        q = q.filter(SupplyTransaction.patient_id == patient_id)
    if transaction_type:
        q = q.filter(SupplyTransaction.transaction_type == transaction_type)
    return q.order_by(SupplyTransaction.timestamp.desc()).offset(offset).limit(limit).all()


def to_dict(entry: SupplyTransaction) -> dict:
    return {
        "id": entry.id,
        "supply_id": entry.supply_id,
        "supply_name": entry.supply_name,
        "transaction_type": entry.transaction_type.value,
        "quantity": entry.quantity,
        "previous_quantity": entry.previous_quantity,
        "new_quantity": entry.new_quantity,
        "user_id": entry.user_id,
        "user_name": entry.user_name,
        "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
        "patient_id": entry.patient_id,
        "patient_name": entry.patient_name,
        "source": entry.source.value if entry.source else None,
        "destination": entry.destination.value if entry.destination else None,
        "notes": entry.notes,
        "lot_number": entry.lot_number,
        "expiration_date": entry.expiration_date.isoformat() if entry.expiration_date else None,
    }
