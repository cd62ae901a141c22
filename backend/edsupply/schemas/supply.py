from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime


class SupplyCreate(BaseModel):
    name: str
    description: Optional[str] = ""
    category: Optional[str] = "other"
    manufacturer: Optional[str] = None
    model_number: Optional[str] = None
    lot_number: Optional[str] = None
    unit: Optional[str] = "each"
    unit_price: Optional[float] = None
    location: Optional[str] = "central_supply"
    expiration_date: Optional[str] = None
    current_quantity: int = 0
    minimum_quantity: int = 0
    critical_quantity: int = 0
    status: Optional[str] = None
    is_controlled: bool = False
    required_signature: bool = False
    notes: Optional[str] = None
    tags: List[str] = []


class SupplyUpdate(BaseModel):
    """Only fields present in the request body are applied."""
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    model_number: Optional[str] = None
    lot_number: Optional[str] = None
    unit: Optional[str] = None
    unit_price: Optional[float] = None
    location: Optional[str] = None
    expiration_date: Optional[str] = None
    minimum_quantity: Optional[int] = None
    critical_quantity: Optional[int] = None
    status: Optional[str] = None
    is_controlled: Optional[bool] = None
    required_signature: Optional[bool] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None


class SupplyResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    category: str
    manufacturer: Optional[str] = None
    model_number: Optional[str] = None
    lot_number: Optional[str] = None
    unit: str
    unit_price: Optional[float] = None
    location: str
    expiration_date: Optional[datetime] = None
    last_restock_date: Optional[datetime] = None
    current_quantity: int
    minimum_quantity: int
    critical_quantity: int
    status: str
    is_controlled: bool
    required_signature: bool
    notes: Optional[str] = None
    tags: List[str] = []
    last_updated: Optional[datetime] = None


class LowStockReport(BaseModel):
    success: bool
    message: str
    low_stock_count: int
    critical_stock_count: int
    supplies: List[dict]
