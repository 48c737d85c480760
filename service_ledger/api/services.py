from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from service_ledger.api.errors import raise_for_result
from service_ledger.database import get_db
from service_ledger.models.service_realized import ServiceStatus
from service_ledger.schemas.finance import SettlePayload
from service_ledger.schemas.service_realized import FulfillmentResult, ServiceRealizedOut, ServiceRealizedPayload
from service_ledger.services import fulfillment_service

router = APIRouter(prefix="/services/realized", tags=["Services Realized"])


@router.post("", response_model=FulfillmentResult, status_code=201)
def create_service_realized(data: ServiceRealizedPayload, created_by: str | None = None):
    result = fulfillment_service.create_fulfillment(data, actor=created_by)
    raise_for_result(result)
    return result


@router.get("", response_model=list[ServiceRealizedOut])
def list_services_realized(
    skip: int = 0, limit: int = 100, status: ServiceStatus | None = None, db: Session = Depends(get_db)
):
    return fulfillment_service.list_fulfillments(db, skip=skip, limit=limit, status=status)


@router.get("/{service_realized_id}", response_model=ServiceRealizedOut)
def get_service_realized(service_realized_id: str, db: Session = Depends(get_db)):
    record = fulfillment_service.get_fulfillment(db, service_realized_id)
    if not record:
        raise HTTPException(404, "Service realized not found")
    return record


@router.put("/{service_realized_id}", response_model=FulfillmentResult)
def update_service_realized(service_realized_id: str, data: ServiceRealizedPayload, created_by: str | None = None):
    result = fulfillment_service.update_fulfillment(service_realized_id, data, actor=created_by)
    raise_for_result(result)
    return result


@router.post("/{service_realized_id}/settle", response_model=FulfillmentResult)
def settle_service_realized(service_realized_id: str, data: SettlePayload | None = None):
    result = fulfillment_service.settle_fulfillment(service_realized_id, data)
    raise_for_result(result)
    return result


@router.delete("/{service_realized_id}", response_model=FulfillmentResult)
def delete_service_realized(service_realized_id: str):
    result = fulfillment_service.delete_fulfillment(service_realized_id)
    raise_for_result(result)
    return result
