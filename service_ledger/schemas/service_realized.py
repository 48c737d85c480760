from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from service_ledger.models.service_realized import ServiceStatus
from service_ledger.schemas.common import OperationResult, normalize_number, normalize_quantity, normalize_text
from service_ledger.schemas.finance import FinanceMovementOut


class ServiceRealizedItemIn(BaseModel):
    product_id: str | None = None
    product_name: str | None = None
    quantity: Decimal = Field(gt=0)
    price: Decimal = Decimal("0")
    cost: Decimal = Decimal("0")

    @field_validator("quantity", mode="before")
    @classmethod
    def parse_quantity(cls, v):
        return normalize_quantity(v)

    @field_validator("price", "cost", mode="before")
    @classmethod
    def parse_number(cls, v):
        return normalize_number(v, default=Decimal("0"))

    @field_validator("product_id", "product_name", mode="before")
    @classmethod
    def parse_text(cls, v):
        return normalize_text(v)


class ServiceRealizedPayload(BaseModel):
    client_id: str | None = None
    client_name: str | None = None
    client_contact: str | None = None
    service_id: str | None = None
    service_name: str | None = None
    equipment: str | None = None
    description: str | None = None
    service_date: date | None = None
    status: ServiceStatus = ServiceStatus.IN_PROGRESS
    value: Decimal = Decimal("0")  # declared service value, products are added on top
    cost: Decimal = Decimal("0")
    items: list[ServiceRealizedItemIn] = []
    notes: str | None = None

    @field_validator("value", "cost", mode="before")
    @classmethod
    def parse_number(cls, v):
        return normalize_number(v, default=Decimal("0"))

    @field_validator(
        "client_id", "client_name", "client_contact", "service_id", "service_name",
        "equipment", "description", "notes",
        mode="before",
    )
    @classmethod
    def parse_text(cls, v):
        return normalize_text(v)

    @field_validator("service_date", mode="before")
    @classmethod
    def parse_service_date(cls, v):
        # Accept full ISO timestamps, keep the date part
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        if isinstance(v, datetime):
            return v.date()
        return v or None


class ServiceRealizedItemOut(BaseModel):
    id: int
    product_id: str | None = None
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    unit_cost: Decimal
    total_cost: Decimal

    model_config = {"from_attributes": True}


class ServiceRealizedOut(BaseModel):
    id: str
    client_id: str | None = None
    client_name: str
    client_contact: str
    service_id: str | None = None
    service_name: str
    equipment: str
    description: str
    service_date: date | None = None
    status: ServiceStatus
    service_value: Decimal
    products_value: Decimal
    total_value: Decimal
    service_cost: Decimal
    products_cost: Decimal
    total_cost: Decimal
    notes: str
    items: list[ServiceRealizedItemOut] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class FulfillmentResult(OperationResult):
    record: ServiceRealizedOut | None = None
    items: list[ServiceRealizedItemOut] = []
    movement: FinanceMovementOut | None = None
    already_billed: bool = False
