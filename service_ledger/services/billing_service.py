import logging
from datetime import datetime, time

from sqlalchemy.orm import Session

from service_ledger.config import settings
from service_ledger.models.finance import FinanceMovement, FinanceStatus, FinanceType, PaymentChannel
from service_ledger.models.service_realized import ServiceRealized

logger = logging.getLogger(__name__)


def _billing_title(record: ServiceRealized) -> str:
    label = record.service_name or record.description or "Serviço"
    if record.client_name:
        return f"{settings.BILLING_TITLE_PREFIX} - {label} ({record.client_name})"
    return f"{settings.BILLING_TITLE_PREFIX} - {label}"


def _movement_date(record: ServiceRealized, movement_date: datetime | None) -> datetime:
    if movement_date:
        return movement_date
    if record.service_date:
        return datetime.combine(record.service_date, time.min)
    return datetime.now()


def get_billing(db: Session, service_realized_id: str) -> FinanceMovement | None:
    return (
        db.query(FinanceMovement)
        .filter(FinanceMovement.service_realized_id == service_realized_id)
        .order_by(FinanceMovement.created_at)
        .first()
    )


def ensure_billed(
    db: Session,
    record: ServiceRealized,
    channel: PaymentChannel | None = None,
    movement_date: datetime | None = None,
    notes: str | None = None,
) -> tuple[FinanceMovement, bool]:
    """Return the finance movement for ``record``, creating it on first call.

    Runs inside the caller's transaction; callers settling an existing record
    hold its row lock so two settlements cannot both miss the existence check.
    The second element is True when the movement already existed.
    """
    db.flush()
    existing = get_billing(db, record.id)
    if existing is not None:
        logger.info("Service realized %s already billed by %s", record.id, existing.id)
        return existing, True

    movement = FinanceMovement(
        title=_billing_title(record),
        category=settings.BILLING_CATEGORY,
        movement_date=_movement_date(record, movement_date),
        value=record.total_value,
        status=FinanceStatus.PAID,
        type=FinanceType.IN,
        channel=channel,
        notes=notes or "",
        service_realized_id=record.id,
    )
    db.add(movement)
    db.flush()
    logger.info("Billed service realized %s: %s", record.id, record.total_value)
    return movement, False


def list_finance_movements(
    db: Session, service_realized_id: str | None = None, skip: int = 0, limit: int = 100
) -> list[FinanceMovement]:
    q = db.query(FinanceMovement)
    if service_realized_id:
        q = q.filter(FinanceMovement.service_realized_id == service_realized_id)
    return q.order_by(FinanceMovement.movement_date.desc()).offset(skip).limit(limit).all()
