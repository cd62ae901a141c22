"""Ledger reads across all supplies (e.g. everything used on one patient)."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from edsupply.api.deps import get_inventory_service, get_optional_actor_id
from edsupply.schemas.transaction import TransactionRecord
from edsupply.services.inventory_service import InventoryService

router = APIRouter()


@router.get("", response_model=List[TransactionRecord])
def list_transactions(
    supply_id: Optional[str] = Query(None),
    patient_id: Optional[str] = Query(None),
    transaction_type: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: InventoryService = Depends(get_inventory_service),
):
    return service.list_transactions(
        actor_id, supply_id=supply_id, patient_id=patient_id,
        transaction_type=transaction_type, limit=limit, offset=offset,
    )
