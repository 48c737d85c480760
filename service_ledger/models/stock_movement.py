from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, event, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from service_ledger.database import Base


class MovementDirection(str, PyEnum):
    INBOUND = "entrada"
    OUTBOUND = "saida"


class MovementOrigin(str, PyEnum):
    MANUAL = "manual"
    SERVICE = "servico"
    QUOTE = "orcamento"
    SYSTEM_ADJUSTMENT = "ajuste_sistema"


class StockMovement(Base):
    """Append-only audit row for every stock change."""

    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    direction: Mapped[str] = mapped_column(
        Enum(MovementDirection, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    previous_stock: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    current_stock: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    origin: Mapped[str] = mapped_column(
        Enum(MovementOrigin, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    reference_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)  # e.g. service realized id
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    product: Mapped["Product"] = relationship("Product", back_populates="movements")

    @property
    def signed_quantity(self) -> Decimal:
        if self.direction == MovementDirection.OUTBOUND:
            return -self.quantity
        return self.quantity


@event.listens_for(StockMovement, "before_update")
def _reject_update(mapper, connection, target):
    raise RuntimeError(f"Stock movement {target.id} is immutable")


@event.listens_for(StockMovement, "before_delete")
def _reject_delete(mapper, connection, target):
    raise RuntimeError(f"Stock movement {target.id} is immutable")


from service_ledger.models.product import Product  # noqa: E402, F401
