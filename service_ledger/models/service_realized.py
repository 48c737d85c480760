import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from service_ledger.database import Base


class ServiceStatus(str, PyEnum):
    SCHEDULED = "agendado"
    IN_PROGRESS = "em_execucao"
    COMPLETED = "concluido"


class ServiceRealized(Base):
    __tablename__ = "services_realized"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Client (informational copy, the client record may be absent)
    client_id: Mapped[str | None] = mapped_column(String, nullable=True)
    client_name: Mapped[str] = mapped_column(String, default="")
    client_contact: Mapped[str] = mapped_column(String, default="")

    service_id: Mapped[str | None] = mapped_column(String, nullable=True)
    service_name: Mapped[str] = mapped_column(String, default="")
    equipment: Mapped[str] = mapped_column(String, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    service_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(
        Enum(ServiceStatus, values_callable=lambda x: [e.value for e in x]),
        default=ServiceStatus.IN_PROGRESS,
    )

    # Pricing
    service_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    products_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    service_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    products_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    items: Mapped[list["ServiceRealizedItem"]] = relationship(
        "ServiceRealizedItem",
        back_populates="service_realized",
        cascade="all, delete-orphan",
        order_by="ServiceRealizedItem.id",
    )


class ServiceRealizedItem(Base):
    __tablename__ = "services_realized_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_realized_id: Mapped[str] = mapped_column(
        String, ForeignKey("services_realized.id"), nullable=False, index=True
    )
    # Free-text lines have no product and never touch stock
    product_id: Mapped[str | None] = mapped_column(String, ForeignKey("products.id"), nullable=True)
    product_name: Mapped[str] = mapped_column(String, default="")
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    service_realized: Mapped["ServiceRealized"] = relationship("ServiceRealized", back_populates="items")
