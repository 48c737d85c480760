"""Stock ledger: the only writer of ``Product.stock``.

Every call locks the affected product rows (in product id order), validates
the whole batch, and only then writes the new balances together with one
``StockMovement`` per product. A rejected batch therefore leaves no trace,
whether or not this module owns the surrounding transaction.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from pydantic import ValidationError as PayloadError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from service_ledger.config import settings
from service_ledger.exceptions import (
    InsufficientStockError,
    LedgerError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from service_ledger.models.product import Product
from service_ledger.models.stock_movement import MovementDirection, MovementOrigin, StockMovement
from service_ledger.schemas.product import MovementOutcome, MovementResult, StockAdjust, StockMovementItem
from service_ledger.transaction import transactions

logger = logging.getLogger(__name__)


@dataclass
class StockItem:
    product_id: str
    quantity: Decimal
    description: str | None = None


def coalesce_items(items: Iterable[StockMovementItem | dict]) -> list[StockItem]:
    """Drop non-positive quantities and merge repeated products into one entry.

    Plain mappings such as ``{"productId": ..., "quantity": ...}`` are accepted too.
    """
    merged: dict[str, StockItem] = {}
    for raw in items:
        try:
            item = StockMovementItem.model_validate(raw)
        except PayloadError as e:
            raise ValidationError(f"Invalid stock movement item: {e.errors()[0]['msg']}") from e
        if not item.product_id:
            raise ValidationError("Product id is required for every stock movement item")
        if item.quantity is None or item.quantity <= 0:
            continue
        entry = merged.get(item.product_id)
        if entry is None:
            merged[item.product_id] = StockItem(item.product_id, Decimal(item.quantity), item.description or None)
        else:
            entry.quantity += Decimal(item.quantity)
            entry.description = entry.description or item.description or None
    return [merged[product_id] for product_id in sorted(merged)]


def lock_products(db: Session, product_ids: Iterable[str]) -> dict[str, Product]:
    """SELECT ... FOR UPDATE each product, always in ascending id order."""
    locked: dict[str, Product] = {}
    for product_id in sorted(set(product_ids)):
        product = db.query(Product).filter(Product.id == product_id).with_for_update().first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        locked[product_id] = product
    return locked


def ensure_available(products: dict[str, Product], items: Iterable[StockItem]) -> None:
    """Raise InsufficientStockError for the first item its locked product cannot cover."""
    for item in items:
        product = products[item.product_id]
        if product.stock < item.quantity:
            raise InsufficientStockError(product.id, product.name, product.stock, item.quantity)


def _default_description(direction: MovementDirection, origin: MovementOrigin, reference_id: str | None) -> str:
    label = "Inbound" if direction == MovementDirection.INBOUND else "Outbound"
    if reference_id:
        return f"{label} ({origin.value}) ref {reference_id}"
    return f"{label} ({origin.value})"


def record_movements(
    db: Session,
    items: list[StockItem],
    direction: MovementDirection,
    origin: MovementOrigin,
    reference_id: str | None = None,
    actor: str | None = None,
) -> list[MovementOutcome]:
    """Apply already coalesced items inside the caller's transaction.

    Raises NotFoundError or InsufficientStockError before any row is written.
    """
    if not items:
        return []

    products = lock_products(db, (item.product_id for item in items))

    if direction == MovementDirection.OUTBOUND:
        ensure_available(products, items)

    outcomes: list[MovementOutcome] = []
    for item in items:
        product = products[item.product_id]
        previous_stock = product.stock
        if direction == MovementDirection.OUTBOUND:
            current_stock = previous_stock - item.quantity
        else:
            current_stock = previous_stock + item.quantity
        product.stock = current_stock

        db.add(StockMovement(
            product_id=product.id,
            direction=direction,
            quantity=item.quantity,
            previous_stock=previous_stock,
            current_stock=current_stock,
            description=item.description or _default_description(direction, origin, reference_id),
            origin=origin,
            reference_id=reference_id,
            created_by=actor,
        ))
        outcomes.append(MovementOutcome(
            product_id=product.id,
            product_name=product.name,
            previous_stock=previous_stock,
            quantity=item.quantity,
            current_stock=current_stock,
        ))

    db.flush()
    logger.info(
        "Stock %s (%s) ref=%s: %s",
        direction.value, origin.value, reference_id,
        ", ".join(f"{o.product_id} {o.previous_stock}->{o.current_stock}" for o in outcomes),
    )
    return outcomes


def apply_movements(
    items: Iterable[StockMovementItem | dict],
    direction: MovementDirection,
    origin: MovementOrigin = MovementOrigin.MANUAL,
    reference_id: str | None = None,
    actor: str | None = None,
    db: Session | None = None,
) -> MovementResult:
    """Apply a batch of stock movements atomically.

    Pass ``db`` to take part in a transaction the caller owns; otherwise the
    batch runs in a transaction of its own.
    """
    try:
        batch = coalesce_items(items)
    except LedgerError as e:
        return MovementResult(success=False, message=e.message, error=e.code)

    if not batch:
        return MovementResult(success=True, message="No stock movement to apply")

    try:
        with transactions.scope(db) as session:
            outcomes = record_movements(session, batch, direction, origin, reference_id, actor)
    except LedgerError as e:
        logger.warning("Stock movement rejected: %s", e.message)
        return MovementResult(success=False, message=e.message, error=e.code)
    except SQLAlchemyError:
        if db is not None:
            raise
        logger.exception("Failed to persist stock movements")
        error = PersistenceError("Failed to persist stock movements")
        return MovementResult(success=False, message=error.message, error=error.code)

    return MovementResult(success=True, message="Stock movements applied", outcomes=outcomes)


def move_stock_by_product(data: StockAdjust, db: Session | None = None) -> MovementResult:
    """Manual single-product movement."""
    if data.quantity <= 0:
        return MovementResult(success=False, message="Quantity must be greater than zero", error="validation")
    item = StockMovementItem(product_id=data.product_id, quantity=data.quantity, description=data.description)
    return apply_movements(
        [item], data.direction, MovementOrigin.MANUAL, actor=data.created_by, db=db,
    )


def list_stock_movements(db: Session, product_id: str | None = None, limit: int | None = None) -> list[StockMovement]:
    limit = limit or settings.MOVEMENT_LIST_LIMIT
    limit = max(1, min(limit, settings.MOVEMENT_LIST_MAX))
    q = db.query(StockMovement)
    if product_id:
        q = q.filter(StockMovement.product_id == product_id)
    return q.order_by(StockMovement.id.desc()).limit(limit).all()


def ledger_balance(db: Session, product_id: str) -> Decimal:
    """Signed sum of every movement recorded for a product."""
    movements = db.query(StockMovement).filter(StockMovement.product_id == product_id).all()
    return sum((m.signed_quantity for m in movements), Decimal("0"))
