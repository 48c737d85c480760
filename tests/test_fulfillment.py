import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError as PayloadError
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from service_ledger.database import SessionLocal
from service_ledger.models.finance import FinanceMovement, FinanceStatus, FinanceType, PaymentChannel
from service_ledger.models.service_realized import ServiceRealized, ServiceRealizedItem, ServiceStatus
from service_ledger.models.stock_movement import MovementDirection, MovementOrigin
from service_ledger.schemas.catalog import CatalogServiceCreate, ClientCreate
from service_ledger.schemas.finance import SettlePayload
from service_ledger.schemas.service_realized import ServiceRealizedPayload
from service_ledger.services import billing_service, catalog_service, fulfillment_service


def payload(items=(), **fields):
    fields.setdefault("client_name", "Oficina Silva")
    fields.setdefault("service_name", "Revisão")
    return ServiceRealizedPayload(items=list(items), **fields)


def line(product_id, quantity, price=0, cost=0):
    return {"product_id": product_id, "quantity": quantity, "price": price, "cost": cost}


def service_movements(movements_of, product_id):
    return [m for m in movements_of(product_id) if m.origin == MovementOrigin.SERVICE]


def finance_rows(service_realized_id=None):
    with SessionLocal() as session:
        q = session.query(FinanceMovement)
        if service_realized_id:
            q = q.filter(FinanceMovement.service_realized_id == service_realized_id)
        rows = q.all()
        session.expunge_all()
        return rows


def count(model):
    with SessionLocal() as session:
        return session.query(model).count()


# --- create ---

def test_create_coalesces_consumption_per_product(make_product, stock_of, movements_of):
    a = make_product("A", stock=10)

    result = fulfillment_service.create_fulfillment(payload([line(a.id, 2), line(a.id, 1)]), actor="ana")

    assert result.success
    record = result.record
    assert len(result.items) == 2
    assert stock_of(a.id) == Decimal("7")
    rows = service_movements(movements_of, a.id)
    assert len(rows) == 1
    assert rows[0].direction == MovementDirection.OUTBOUND
    assert rows[0].quantity == Decimal("3")
    assert rows[0].reference_id == record.id
    assert rows[0].created_by == "ana"
    assert rows[0].description == f"Consumed by service realized {record.id}"


def test_create_computes_totals(make_product):
    a = make_product("Pastilha", stock=10)

    result = fulfillment_service.create_fulfillment(
        payload([line(a.id, 2, price=30, cost=10)], value="100", cost="40")
    )

    record = result.record
    assert record.service_value == Decimal("100")
    assert record.products_value == Decimal("60")
    assert record.total_value == Decimal("160")
    assert record.products_cost == Decimal("20")
    assert record.total_cost == Decimal("60")
    assert result.items[0].product_name == "Pastilha"
    assert result.items[0].total == Decimal("60")
    assert record.status == ServiceStatus.IN_PROGRESS
    assert result.movement is None


def test_create_accepts_comma_decimals():
    result = fulfillment_service.create_fulfillment(payload(value="1.234,50"))
    assert result.record.total_value == Decimal("1234.50")


def test_create_with_insufficient_stock_leaves_nothing(make_product, stock_of, movements_of):
    a = make_product("A", stock=5)
    b = make_product("B", stock=1)

    result = fulfillment_service.create_fulfillment(payload([line(a.id, 2), line(b.id, 3)]))

    assert not result.success
    assert result.error == "insufficient_stock"
    assert result.record is None
    assert stock_of(a.id) == Decimal("5")
    assert stock_of(b.id) == Decimal("1")
    assert service_movements(movements_of, a.id) == []
    assert count(ServiceRealized) == 0
    assert count(ServiceRealizedItem) == 0


def test_create_with_unknown_product_is_not_found():
    result = fulfillment_service.create_fulfillment(payload([line("nope", 1)]))
    assert result.error == "not_found"
    assert count(ServiceRealized) == 0


def test_item_quantity_below_ledger_precision_is_rejected():
    with pytest.raises(PayloadError):
        payload([{"product_name": "Graxa", "quantity": "0.0004"}])

    rounded = payload([{"product_name": "Graxa", "quantity": "1,2345"}])
    assert rounded.items[0].quantity == Decimal("1.235")


def test_free_text_items_do_not_touch_stock(movements_of):
    result = fulfillment_service.create_fulfillment(
        payload([{"product_name": "Mão de obra extra", "quantity": 1, "price": 50}])
    )
    assert result.success
    assert result.items[0].product_id is None
    assert result.record.products_value == Decimal("50")
    assert movements_of() == []


def test_create_requires_client_and_service():
    result = fulfillment_service.create_fulfillment(payload(client_name=None))
    assert result.error == "validation"

    result = fulfillment_service.create_fulfillment(payload(service_name=None))
    assert result.error == "validation"

    result = fulfillment_service.create_fulfillment(payload(service_name=None, description="Troca de óleo"))
    assert result.success


def test_create_fills_names_from_records(db):
    client_id = catalog_service.create_client(db, ClientCreate(name="Joana")).id
    service_id = catalog_service.create_catalog_service(db, CatalogServiceCreate(name="Alinhamento", price="80")).id
    db.close()

    result = fulfillment_service.create_fulfillment(
        payload(client_name=None, client_id=client_id, service_name=None, service_id=service_id)
    )

    assert result.success
    assert result.record.client_name == "Joana"
    assert result.record.service_name == "Alinhamento"


def test_create_with_unknown_service_or_client():
    result = fulfillment_service.create_fulfillment(payload(service_id="missing"))
    assert result.error == "not_found"

    result = fulfillment_service.create_fulfillment(payload(client_name=None, client_id="missing"))
    assert result.error == "validation"


def test_create_completed_bills_once():
    result = fulfillment_service.create_fulfillment(
        payload(value=250, status=ServiceStatus.COMPLETED, service_date=date(2024, 3, 5))
    )

    assert result.success
    assert result.already_billed is False
    movement = result.movement
    assert movement.value == Decimal("250")
    assert movement.type == FinanceType.IN.value
    assert movement.status == FinanceStatus.PAID.value
    assert movement.movement_date == datetime(2024, 3, 5)
    assert movement.title == "Serviço realizado - Revisão (Oficina Silva)"
    assert movement.category == "Serviços"

    settled = fulfillment_service.settle_fulfillment(result.record.id)
    assert settled.success
    assert settled.already_billed is True
    assert settled.message == "Service realized already billed"
    assert settled.movement.id == movement.id
    assert len(finance_rows(result.record.id)) == 1


def test_create_participating_is_rolled_back_by_caller(db, make_product, stock_of):
    a = make_product("A", stock=4)

    result = fulfillment_service.create_fulfillment(payload([line(a.id, 1)]), db=db)
    assert result.success
    db.rollback()

    assert stock_of(a.id) == Decimal("4")
    assert count(ServiceRealized) == 0

    result = fulfillment_service.create_fulfillment(payload([line(a.id, 1)]), db=db)
    db.commit()
    assert stock_of(a.id) == Decimal("3")
    assert count(ServiceRealized) == 1


def test_persistence_failure_rolls_back_owned_work(monkeypatch, make_product, stock_of):
    a = make_product("A", stock=4)

    def broken(*args, **kwargs):
        raise OperationalError("INSERT INTO finance_movements", {}, Exception("disk full"))

    monkeypatch.setattr(billing_service, "ensure_billed", broken)
    result = fulfillment_service.create_fulfillment(
        payload([line(a.id, 1)], status=ServiceStatus.COMPLETED)
    )

    assert not result.success
    assert result.error == "persistence"
    assert stock_of(a.id) == Decimal("4")
    assert count(ServiceRealized) == 0


def test_persistence_failure_propagates_to_participating_caller(monkeypatch, db):
    def broken(*args, **kwargs):
        raise OperationalError("INSERT INTO finance_movements", {}, Exception("disk full"))

    monkeypatch.setattr(billing_service, "ensure_billed", broken)
    with pytest.raises(OperationalError):
        fulfillment_service.create_fulfillment(payload(status=ServiceStatus.COMPLETED), db=db)
    db.rollback()
    assert count(ServiceRealized) == 0


# --- update ---

def test_update_consumes_only_the_increase(make_product, stock_of, movements_of):
    a = make_product("A", stock=10)
    created = fulfillment_service.create_fulfillment(payload([line(a.id, 2)]))

    result = fulfillment_service.update_fulfillment(created.record.id, payload([line(a.id, 5)]))

    assert result.success
    assert stock_of(a.id) == Decimal("5")
    rows = service_movements(movements_of, a.id)
    assert len(rows) == 2
    assert rows[-1].direction == MovementDirection.OUTBOUND
    assert rows[-1].quantity == Decimal("3")
    assert rows[-1].description == f"Additional consumption for service realized {created.record.id}"


def test_update_returns_the_decrease(make_product, stock_of, movements_of):
    a = make_product("A", stock=9)
    created = fulfillment_service.create_fulfillment(payload([line(a.id, 2)]))
    assert stock_of(a.id) == Decimal("7")

    result = fulfillment_service.update_fulfillment(created.record.id, payload([line(a.id, 1)]))

    assert result.success
    assert stock_of(a.id) == Decimal("8")
    last = service_movements(movements_of, a.id)[-1]
    assert last.direction == MovementDirection.INBOUND
    assert last.quantity == Decimal("1")
    assert last.description == f"Returned from service realized {created.record.id}"


def test_update_with_same_items_writes_no_movement(make_product, stock_of, movements_of):
    a = make_product("A", stock=10)
    b = make_product("B", stock=10)
    items = [line(a.id, 2), line(b.id, 1)]
    created = fulfillment_service.create_fulfillment(payload(items))
    before = len(movements_of())

    result = fulfillment_service.update_fulfillment(
        created.record.id, payload(items, equipment="Compressor", notes="revisado")
    )

    assert result.success
    assert result.record.equipment == "Compressor"
    assert len(movements_of()) == before
    assert stock_of(a.id) == Decimal("8")
    assert stock_of(b.id) == Decimal("9")


def test_update_swapping_products(make_product, stock_of, movements_of):
    a = make_product("A", stock=10)
    b = make_product("B", stock=10)
    created = fulfillment_service.create_fulfillment(payload([line(a.id, 2)]))

    result = fulfillment_service.update_fulfillment(created.record.id, payload([line(b.id, 4)]))

    assert result.success
    assert stock_of(a.id) == Decimal("10")
    assert stock_of(b.id) == Decimal("6")
    assert [i.product_id for i in result.items] == [b.id]
    assert count(ServiceRealizedItem) == 1


def test_update_with_insufficient_stock_keeps_record(make_product, stock_of, movements_of):
    a = make_product("A", stock=3)
    created = fulfillment_service.create_fulfillment(payload([line(a.id, 2, price=10)], value=50))
    before = len(movements_of())

    result = fulfillment_service.update_fulfillment(
        created.record.id, payload([line(a.id, 6, price=10)], value=999)
    )

    assert result.error == "insufficient_stock"
    assert stock_of(a.id) == Decimal("1")
    assert len(movements_of()) == before
    with SessionLocal() as session:
        record = fulfillment_service.get_fulfillment(session, created.record.id)
        assert record.total_value == Decimal("70")
        assert [i.quantity for i in record.items] == [Decimal("2")]


def test_update_to_completed_bills():
    created = fulfillment_service.create_fulfillment(payload(value=120))
    assert finance_rows() == []

    result = fulfillment_service.update_fulfillment(
        created.record.id, payload(value=120, status=ServiceStatus.COMPLETED)
    )
    assert result.movement is not None
    assert result.already_billed is False

    again = fulfillment_service.update_fulfillment(
        created.record.id, payload(value=130, status=ServiceStatus.COMPLETED)
    )
    assert again.already_billed is True
    assert again.movement.value == Decimal("120")
    assert len(finance_rows(created.record.id)) == 1


def test_update_unknown_or_blank_id():
    assert fulfillment_service.update_fulfillment("missing", payload()).error == "not_found"
    assert fulfillment_service.update_fulfillment("  ", payload()).error == "validation"


# --- settle ---

def test_settle_is_idempotent():
    created = fulfillment_service.create_fulfillment(payload(value=80))

    first = fulfillment_service.settle_fulfillment(
        created.record.id, SettlePayload(channel="PIX", date=datetime(2024, 6, 1, 10, 30), notes="pago")
    )
    assert first.success
    assert first.already_billed is False
    assert first.message == "Service realized settled"
    assert first.record.status == ServiceStatus.COMPLETED
    assert first.movement.channel == PaymentChannel.PIX.value
    assert first.movement.movement_date == datetime(2024, 6, 1, 10, 30)
    assert first.movement.notes == "pago"

    second = fulfillment_service.settle_fulfillment(created.record.id)
    assert second.success
    assert second.already_billed is True
    assert second.movement.id == first.movement.id
    assert len(finance_rows()) == 1


def test_concurrent_settle_bills_once(engine):
    record_id = fulfillment_service.create_fulfillment(payload(value=80)).record.id
    start = threading.Barrier(2)

    def slow_read(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().startswith("SELECT") and "FROM services_realized" in statement:
            time.sleep(0.2)

    def settle(_):
        start.wait()
        return fulfillment_service.settle_fulfillment(record_id)

    event.listen(engine, "after_cursor_execute", slow_read)
    try:
        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(settle, range(2)))
    finally:
        event.remove(engine, "after_cursor_execute", slow_read)

    assert all(r.success for r in results)
    assert sorted(r.already_billed for r in results) == [False, True]
    assert len({r.movement.id for r in results}) == 1
    assert len(finance_rows(record_id)) == 1


def test_settle_unknown_record():
    result = fulfillment_service.settle_fulfillment("missing")
    assert result.error == "not_found"
    assert finance_rows() == []


# --- delete ---

def test_delete_removes_record_and_billing_without_restocking(make_product, stock_of, movements_of):
    a = make_product("A", stock=10)
    created = fulfillment_service.create_fulfillment(
        payload([line(a.id, 3)], status=ServiceStatus.COMPLETED, value=40)
    )
    assert len(finance_rows(created.record.id)) == 1
    before = len(movements_of())

    result = fulfillment_service.delete_fulfillment(created.record.id)

    assert result.success
    assert result.record.id == created.record.id
    assert count(ServiceRealized) == 0
    assert count(ServiceRealizedItem) == 0
    assert finance_rows() == []
    assert stock_of(a.id) == Decimal("7")
    assert len(movements_of()) == before


def test_delete_unknown_record():
    assert fulfillment_service.delete_fulfillment("missing").error == "not_found"


# --- queries ---

def test_list_fulfillments_by_status(db):
    fulfillment_service.create_fulfillment(payload(value=10))
    fulfillment_service.create_fulfillment(payload(value=20, status=ServiceStatus.COMPLETED))

    assert len(fulfillment_service.list_fulfillments(db)) == 2
    completed = fulfillment_service.list_fulfillments(db, status=ServiceStatus.COMPLETED)
    assert [r.total_value for r in completed] == [Decimal("20")]
    assert len(billing_service.list_finance_movements(db)) == 1
