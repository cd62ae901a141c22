from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime


class CheckOutRequest(BaseModel):
    quantity: int
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    destination: Optional[str] = None
    notes: Optional[str] = None


class CheckInRequest(BaseModel):
    quantity: int
    transaction_type: Optional[str] = "check_in"
    source: Optional[str] = None
    notes: Optional[str] = None
    lot_number: Optional[str] = None
    expiration_date: Optional[str] = None
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None


class RestockRequest(BaseModel):
    """Body for restock and return."""
    quantity: int
    source: Optional[str] = None
    notes: Optional[str] = None
    lot_number: Optional[str] = None
    expiration_date: Optional[str] = None
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None


class WasteRequest(BaseModel):
    quantity: int
    reason: str


class AdjustRequest(BaseModel):
    new_quantity: int
    reason: str


class TransferRequest(BaseModel):
    quantity: int
    source_location: str
    destination_location: str
    notes: Optional[str] = None


class MutationResponse(BaseModel):
    success: bool
    supply_id: str
    new_quantity: int
    status: str
    timestamp: datetime
    previous_quantity: Optional[int] = None
    quantity: Optional[int] = None
    source_location: Optional[str] = None
    destination_location: Optional[str] = None
    new_location: Optional[str] = None


class ExpiredSweepResponse(BaseModel):
    success: bool
    message: str
    expired_count: int
    processed_supplies: List[dict]
    failed_supplies: List[dict]
    timestamp: datetime


class TransactionRecord(BaseModel):
    id: str
    supply_id: str
    supply_name: str
    transaction_type: str
    quantity: int
    previous_quantity: int
    new_quantity: int
    user_id: str
    user_name: str
    timestamp: Optional[datetime] = None
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    source: Optional[str] = None
    destination: Optional[str] = None
    notes: Optional[str] = None
    lot_number: Optional[str] = None
    expiration_date: Optional[datetime] = None
