"""Services realized: record, stock consumption and billing in one transaction.

Each public operation returns a ``FulfillmentResult``; the work itself runs in
``transactions.scope`` so it owns its transaction unless the caller passed one.
Business rejections are detected before the first write, so a failed result
never leaves partial work behind in either mode.
"""

import logging
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from service_ledger.exceptions import LedgerError, NotFoundError, PersistenceError, ValidationError
from service_ledger.models.finance import FinanceMovement
from service_ledger.models.product import Product
from service_ledger.models.service_realized import ServiceRealized, ServiceRealizedItem, ServiceStatus
from service_ledger.models.stock_movement import MovementDirection, MovementOrigin
from service_ledger.schemas.finance import FinanceMovementOut, SettlePayload
from service_ledger.schemas.product import StockMovementItem
from service_ledger.schemas.service_realized import (
    FulfillmentResult,
    ServiceRealizedItemIn,
    ServiceRealizedOut,
    ServiceRealizedPayload,
)
from service_ledger.services import billing_service, catalog_service
from service_ledger.services.stock_ledger import (
    StockItem,
    coalesce_items,
    ensure_available,
    lock_products,
    record_movements,
)
from service_ledger.transaction import transactions

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_fields(data: ServiceRealizedPayload) -> None:
    if not (data.client_id or data.client_name):
        raise ValidationError("Client is required")
    if not (data.service_id or data.service_name or data.description):
        raise ValidationError("Service name or description is required")


def _resolve_names(db: Session, data: ServiceRealizedPayload) -> tuple[str, str]:
    """Fill client and service names from their records when the payload omits them."""
    client_name = data.client_name
    if data.client_id and not client_name:
        client = catalog_service.get_client(db, data.client_id)
        if client is None:
            raise ValidationError(f"Client {data.client_id} not found and no client name given")
        client_name = client.name

    service_name = data.service_name
    if data.service_id:
        service = catalog_service.get_catalog_service(db, data.service_id)
        if service is None:
            raise NotFoundError(f"Service {data.service_id} not found")
        service_name = service_name or service.name

    return client_name or "", service_name or ""


def _lock_record(db: Session, service_realized_id: str) -> ServiceRealized:
    if not service_realized_id or not str(service_realized_id).strip():
        raise ValidationError("Service realized id is required")
    record = (
        db.query(ServiceRealized)
        .filter(ServiceRealized.id == service_realized_id)
        .with_for_update()
        .first()
    )
    if record is None:
        raise NotFoundError(f"Service realized {service_realized_id} not found")
    return record


def _build_items(items: list[ServiceRealizedItemIn], products: dict[str, Product]) -> list[ServiceRealizedItem]:
    rows = []
    for item in items:
        product = products.get(item.product_id) if item.product_id else None
        rows.append(ServiceRealizedItem(
            product_id=item.product_id,
            product_name=item.product_name or (product.name if product else "Produto"),
            quantity=item.quantity,
            unit_price=_money(item.price),
            total=_money(item.quantity * item.price),
            unit_cost=_money(item.cost),
            total_cost=_money(item.quantity * item.cost),
        ))
    return rows


def _apply_payload(
    record: ServiceRealized,
    data: ServiceRealizedPayload,
    client_name: str,
    service_name: str,
    items: list[ServiceRealizedItem],
) -> None:
    record.client_id = data.client_id
    record.client_name = client_name
    record.client_contact = data.client_contact or ""
    record.service_id = data.service_id
    record.service_name = service_name
    record.equipment = data.equipment or ""
    record.description = data.description or ""
    record.service_date = data.service_date
    record.status = data.status
    record.notes = data.notes or ""
    record.items = items

    record.service_value = _money(data.value)
    record.service_cost = _money(data.cost)
    record.products_value = sum((i.total for i in items), Decimal("0.00"))
    record.products_cost = sum((i.total_cost for i in items), Decimal("0.00"))
    record.total_value = record.service_value + record.products_value
    record.total_cost = record.service_cost + record.products_cost


def _quantities_by_product(items: Iterable) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for item in items:
        if item.product_id:
            totals[item.product_id] += Decimal(item.quantity)
    return dict(totals)


def _reconcile(
    previous: dict[str, Decimal], current: dict[str, Decimal], service_realized_id: str
) -> tuple[list[StockItem], list[StockItem]]:
    """Split quantity deltas into (extra consumption, stock returned)."""
    outbound: list[StockItem] = []
    inbound: list[StockItem] = []
    for product_id in sorted(set(previous) | set(current)):
        delta = current.get(product_id, Decimal("0")) - previous.get(product_id, Decimal("0"))
        if delta > 0:
            outbound.append(StockItem(
                product_id, delta, f"Additional consumption for service realized {service_realized_id}"
            ))
        elif delta < 0:
            inbound.append(StockItem(
                product_id, -delta, f"Returned from service realized {service_realized_id}"
            ))
    return outbound, inbound


def _result(
    record: ServiceRealized,
    message: str,
    movement: FinanceMovement | None = None,
    already_billed: bool = False,
) -> FulfillmentResult:
    out = ServiceRealizedOut.model_validate(record)
    return FulfillmentResult(
        success=True,
        message=message,
        record=out,
        items=out.items,
        movement=FinanceMovementOut.model_validate(movement) if movement is not None else None,
        already_billed=already_billed,
    )


def _run(db: Session | None, failure_message: str, work: Callable[[Session], FulfillmentResult]) -> FulfillmentResult:
    try:
        with transactions.scope(db) as session:
            return work(session)
    except LedgerError as e:
        logger.warning("%s: %s", failure_message, e.message)
        return FulfillmentResult(success=False, message=e.message, error=e.code)
    except SQLAlchemyError:
        if db is not None:
            raise
        logger.exception(failure_message)
        return FulfillmentResult(success=False, message=failure_message, error=PersistenceError.code)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def _create(db: Session, data: ServiceRealizedPayload, actor: str | None) -> FulfillmentResult:
    _require_fields(data)
    client_name, service_name = _resolve_names(db, data)

    consumption = coalesce_items(
        StockMovementItem(product_id=i.product_id, quantity=i.quantity) for i in data.items if i.product_id
    )
    products = lock_products(db, (item.product_id for item in consumption))
    ensure_available(products, consumption)

    record = ServiceRealized()
    _apply_payload(record, data, client_name, service_name, _build_items(data.items, products))
    db.add(record)
    db.flush()

    for item in consumption:
        item.description = f"Consumed by service realized {record.id}"
    record_movements(db, consumption, MovementDirection.OUTBOUND, MovementOrigin.SERVICE, record.id, actor)

    movement, already_billed = None, False
    if record.status == ServiceStatus.COMPLETED:
        movement, already_billed = billing_service.ensure_billed(db, record)

    logger.info("Created service realized %s (total %s)", record.id, record.total_value)
    return _result(record, "Service realized created", movement, already_billed)


def create_fulfillment(
    data: ServiceRealizedPayload, actor: str | None = None, db: Session | None = None
) -> FulfillmentResult:
    return _run(db, "Failed to create service realized", lambda session: _create(session, data, actor))


def _update(
    db: Session, service_realized_id: str, data: ServiceRealizedPayload, actor: str | None
) -> FulfillmentResult:
    _require_fields(data)
    record = _lock_record(db, service_realized_id)
    previous = _quantities_by_product(record.items)
    current = _quantities_by_product(data.items)
    client_name, service_name = _resolve_names(db, data)

    # One canonical lock order across both adjustment batches
    products = lock_products(db, set(previous) | set(current))
    outbound, inbound = _reconcile(previous, current, record.id)
    ensure_available(products, outbound)

    _apply_payload(record, data, client_name, service_name, _build_items(data.items, products))
    db.flush()

    record_movements(db, outbound, MovementDirection.OUTBOUND, MovementOrigin.SERVICE, record.id, actor)
    record_movements(db, inbound, MovementDirection.INBOUND, MovementOrigin.SERVICE, record.id, actor)

    movement, already_billed = None, False
    if record.status == ServiceStatus.COMPLETED:
        movement, already_billed = billing_service.ensure_billed(db, record)

    logger.info(
        "Updated service realized %s: %d outbound, %d inbound adjustments",
        record.id, len(outbound), len(inbound),
    )
    return _result(record, "Service realized updated", movement, already_billed)


def update_fulfillment(
    service_realized_id: str,
    data: ServiceRealizedPayload,
    actor: str | None = None,
    db: Session | None = None,
) -> FulfillmentResult:
    return _run(
        db, "Failed to update service realized",
        lambda session: _update(session, service_realized_id, data, actor),
    )


def _settle(db: Session, service_realized_id: str, data: SettlePayload) -> FulfillmentResult:
    record = _lock_record(db, service_realized_id)
    movement, already_billed = billing_service.ensure_billed(
        db, record, channel=data.channel, movement_date=data.date, notes=data.notes
    )
    record.status = ServiceStatus.COMPLETED
    db.flush()
    message = "Service realized already billed" if already_billed else "Service realized settled"
    return _result(record, message, movement, already_billed)


def settle_fulfillment(
    service_realized_id: str, data: SettlePayload | None = None, db: Session | None = None
) -> FulfillmentResult:
    data = data or SettlePayload()
    return _run(
        db, "Failed to settle service realized",
        lambda session: _settle(session, service_realized_id, data),
    )


def _delete(db: Session, service_realized_id: str) -> FulfillmentResult:
    record = _lock_record(db, service_realized_id)
    result = _result(record, "Service realized deleted")

    # Consumed stock is not returned to the products
    db.query(FinanceMovement).filter(
        FinanceMovement.service_realized_id == record.id
    ).delete()
    db.delete(record)  # items go with it (delete-orphan cascade)
    db.flush()

    logger.info("Deleted service realized %s", service_realized_id)
    return result


def delete_fulfillment(service_realized_id: str, db: Session | None = None) -> FulfillmentResult:
    return _run(db, "Failed to delete service realized", lambda session: _delete(session, service_realized_id))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_fulfillment(db: Session, service_realized_id: str) -> ServiceRealized | None:
    return (
        db.query(ServiceRealized)
        .options(selectinload(ServiceRealized.items))
        .filter(ServiceRealized.id == service_realized_id)
        .first()
    )


def list_fulfillments(
    db: Session, skip: int = 0, limit: int = 100, status: ServiceStatus | None = None
) -> list[ServiceRealized]:
    q = db.query(ServiceRealized).options(selectinload(ServiceRealized.items))
    if status:
        q = q.filter(ServiceRealized.status == status)
    return q.order_by(ServiceRealized.created_at.desc()).offset(skip).limit(limit).all()
