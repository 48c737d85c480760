from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, Field, field_validator

from service_ledger.models.stock_movement import MovementDirection, MovementOrigin
from service_ledger.schemas.common import OperationResult, normalize_number, normalize_quantity


# --- Product schemas ---

class ProductCreate(BaseModel):
    name: str
    code: str = ""
    sku: str = ""
    category: str = ""
    unit: str = "un"
    description: str = ""
    stock: Decimal = Decimal("0")  # initial stock, recorded as a ledger entry
    cost: Decimal = Decimal("0")
    sale_price: Decimal
    active: bool = True

    @field_validator("cost", "sale_price", mode="before")
    @classmethod
    def parse_number(cls, v):
        return normalize_number(v, default=Decimal("0"))

    @field_validator("stock", mode="before")
    @classmethod
    def parse_stock(cls, v):
        return normalize_quantity(v)

    @field_validator("name")
    @classmethod
    def name_required(cls, v):
        if not v.strip():
            raise ValueError("Product name is required")
        return v.strip()

    @field_validator("stock")
    @classmethod
    def stock_not_negative(cls, v):
        if v < 0:
            raise ValueError("Initial stock cannot be negative")
        return v


class ProductOut(BaseModel):
    id: str
    code: str
    sku: str
    name: str
    category: str
    unit: str
    description: str
    stock: Decimal
    cost: Decimal
    sale_price: Decimal
    active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# --- Stock ledger schemas ---

class StockMovementItem(BaseModel):
    product_id: str | None = Field(default=None, validation_alias=AliasChoices("product_id", "productId"))
    quantity: Decimal = Decimal("0")
    description: str | None = None

    @field_validator("product_id", mode="before")
    @classmethod
    def product_id_as_text(cls, v):
        if v is None:
            return None
        return str(v).strip() or None

    @field_validator("quantity", mode="before")
    @classmethod
    def parse_quantity(cls, v):
        return normalize_quantity(v)


class StockMovementBatch(BaseModel):
    items: list[StockMovementItem]
    direction: MovementDirection
    origin: MovementOrigin = MovementOrigin.MANUAL
    reference_id: str | None = None
    created_by: str | None = None


class StockMoveIn(BaseModel):
    quantity: Decimal
    direction: MovementDirection
    description: str | None = None
    created_by: str | None = None

    @field_validator("quantity", mode="before")
    @classmethod
    def parse_quantity(cls, v):
        return normalize_quantity(v)


class StockAdjust(StockMoveIn):
    """Single manual movement for one product."""

    product_id: str


class MovementOutcome(BaseModel):
    product_id: str
    product_name: str
    previous_stock: Decimal
    quantity: Decimal
    current_stock: Decimal


class StockMovementOut(BaseModel):
    id: int
    product_id: str
    direction: MovementDirection
    quantity: Decimal
    previous_stock: Decimal
    current_stock: Decimal
    description: str
    origin: MovementOrigin
    reference_id: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("description", mode="before")
    @classmethod
    def description_default(cls, v):
        return v or ""


class MovementResult(OperationResult):
    outcomes: list[MovementOutcome] = []
