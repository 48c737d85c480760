from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from service_ledger.api.errors import raise_for_result
from service_ledger.database import get_db
from service_ledger.schemas.product import (
    MovementResult,
    ProductCreate,
    ProductOut,
    StockAdjust,
    StockMoveIn,
    StockMovementBatch,
    StockMovementOut,
)
from service_ledger.services import product_service, stock_ledger

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, db: Session = Depends(get_db)):
    return product_service.create_product(db, data)


@router.get("", response_model=list[ProductOut])
def list_products(skip: int = 0, limit: int = 100, active: bool | None = None, db: Session = Depends(get_db)):
    return product_service.list_products(db, skip=skip, limit=limit, active=active)


@router.get("/movements", response_model=list[StockMovementOut])
def list_movements(product_id: str | None = None, limit: int | None = None, db: Session = Depends(get_db)):
    return stock_ledger.list_stock_movements(db, product_id=product_id, limit=limit)


@router.post("/movements", response_model=MovementResult)
def apply_movements(data: StockMovementBatch):
    result = stock_ledger.apply_movements(
        data.items,
        data.direction,
        data.origin,
        reference_id=data.reference_id,
        actor=data.created_by,
    )
    raise_for_result(result)
    return result


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Session = Depends(get_db)):
    product = product_service.get_product(db, product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.post("/{product_id}/movements", response_model=MovementResult)
def move_product_stock(product_id: str, data: StockMoveIn):
    result = stock_ledger.move_stock_by_product(StockAdjust(product_id=product_id, **data.model_dump()))
    raise_for_result(result)
    return result
