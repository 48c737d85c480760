import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from service_ledger.database import Base


class FinanceType(str, PyEnum):
    IN = "in"
    OUT = "out"


class FinanceStatus(str, PyEnum):
    PAID = "Pago"
    PENDING = "Pendente"
    SCHEDULED = "Agendado"


class PaymentChannel(str, PyEnum):
    PIX = "PIX"
    CARD = "Cartao"
    CASH = "Dinheiro"
    BANK_SLIP = "Boleto"
    TRANSFER = "Transferencia"


class FinanceMovement(Base):
    __tablename__ = "finance_movements"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, default="")
    movement_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(FinanceStatus, values_callable=lambda x: [e.value for e in x]),
        default=FinanceStatus.PAID,
    )
    type: Mapped[str] = mapped_column(
        Enum(FinanceType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    channel: Mapped[str | None] = mapped_column(
        Enum(PaymentChannel, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    notes: Mapped[str] = mapped_column(Text, default="")

    # At most one movement per service realized; guarded by billing_service, not by a constraint
    service_realized_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("services_realized.id"), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
