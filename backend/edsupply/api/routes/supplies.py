"""Supplies: catalogue CRUD and every quantity movement.

Handlers are thin: they unpack the request and call InventoryService.
Domain errors propagate to the exception handlers registered in main.py.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from edsupply.api.deps import get_inventory_service, get_optional_actor_id
from edsupply.schemas.supply import LowStockReport, SupplyCreate, SupplyResponse, SupplyUpdate
from edsupply.schemas.transaction import (
    AdjustRequest,
    CheckInRequest,
    CheckOutRequest,
    ExpiredSweepResponse,
    MutationResponse,
    RestockRequest,
    TransactionRecord,
    TransferRequest,
    WasteRequest,
)
from edsupply.services.inventory_service import InventoryService

router = APIRouter()


# ==============================================================================
# CATALOGUE
# ==============================================================================

@router.get("", response_model=List[SupplyResponse])
def list_supplies(
    category: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    return service.list_supplies(
        actor_id, category=category, status=status, location=location,
        search=search, limit=limit, offset=offset,
    )


@router.post("", response_model=SupplyResponse, status_code=201)
def create_supply(
    data: SupplyCreate,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    return service.create_supply(actor_id, data.model_dump())


@router.get("/low-stock", response_model=LowStockReport)
def low_stock(
    include_details: bool = Query(True),
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    """Supplies at low or critical stock."""
    return service.get_low_stock_supplies(actor_id, include_details=include_details)


@router.post("/process-expired", response_model=ExpiredSweepResponse)
def process_expired(
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    """Manual trigger for the expiration sweep that also runs daily."""
    return service.process_expired_supplies(actor_id)


@router.get("/{supply_id}", response_model=SupplyResponse)
def get_supply(
    supply_id: str,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    return service.get_supply(actor_id, supply_id)


@router.patch("/{supply_id}", response_model=SupplyResponse)
def update_supply(
    supply_id: str,
    data: SupplyUpdate,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    return service.update_supply(actor_id, supply_id, data.model_dump(exclude_unset=True))


@router.delete("/{supply_id}")
def delete_supply(
    supply_id: str,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    return service.delete_supply(actor_id, supply_id)


@router.post("/{supply_id}/discontinue", response_model=SupplyResponse)
def discontinue_supply(
    supply_id: str,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    """Soft delete. History and ledger remain."""
    return service.discontinue_supply(actor_id, supply_id)


@router.get("/{supply_id}/transactions", response_model=List[TransactionRecord])
def supply_transactions(
    supply_id: str,
    transaction_type: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    return service.list_transactions(
        actor_id, supply_id=supply_id, transaction_type=transaction_type, limit=limit, offset=offset,
    )


# ==============================================================================
# MOVEMENTS
# ==============================================================================

@router.post("/{supply_id}/checkout", response_model=MutationResponse)
def checkout(
    supply_id: str,
    data: CheckOutRequest,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    result = service.check_out(
        actor_id, supply_id, data.quantity,
        patient_id=data.patient_id, patient_name=data.patient_name,
        destination=data.destination, notes=data.notes,
    )
    return result.to_dict()


@router.post("/{supply_id}/checkin", response_model=MutationResponse)
def checkin(
    supply_id: str,
    data: CheckInRequest,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    result = service.check_in(
        actor_id, supply_id, data.quantity,
        transaction_type=data.transaction_type or "check_in",
        **data.model_dump(exclude={"quantity", "transaction_type"}),
    )
    return result.to_dict()


@router.post("/{supply_id}/restock", response_model=MutationResponse)
def restock(
    supply_id: str,
    data: RestockRequest,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    result = service.restock(actor_id, supply_id, data.quantity, **data.model_dump(exclude={"quantity"}))
    return result.to_dict()


@router.post("/{supply_id}/return", response_model=MutationResponse)
def return_supply(
    supply_id: str,
    data: RestockRequest,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    options = data.model_dump(exclude={"quantity"}, exclude_none=True)
    result = service.return_supply(actor_id, supply_id, data.quantity, **options)
    return result.to_dict()


@router.post("/{supply_id}/waste", response_model=MutationResponse)
def waste(
    supply_id: str,
    data: WasteRequest,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    return service.waste(actor_id, supply_id, data.quantity, data.reason).to_dict()


@router.post("/{supply_id}/adjust", response_model=MutationResponse)
def adjust(
    supply_id: str,
    data: AdjustRequest,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    """Set an absolute quantity after a physical count."""
    return service.adjust_inventory(actor_id, supply_id, data.new_quantity, data.reason).to_dict()


@router.post("/{supply_id}/transfer", response_model=MutationResponse)
def transfer(
    supply_id: str,
    data: TransferRequest,
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    result = service.transfer_supply(
        actor_id, supply_id, data.quantity, data.source_location, data.destination_location, data.notes,
    )
    return result.to_dict()
