from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, field_validator

from service_ledger.models.finance import PaymentChannel


class FinanceMovementOut(BaseModel):
    id: str
    title: str
    category: str
    movement_date: datetime
    value: Decimal
    status: str
    type: str
    channel: str | None = None
    notes: str
    service_realized_id: str | None = None

    model_config = {"from_attributes": True}

    @field_validator("status", "type", "channel", mode="before")
    @classmethod
    def enum_value(cls, v):
        return v.value if hasattr(v, "value") else v

    @field_validator("notes", "category", mode="before")
    @classmethod
    def text_default(cls, v):
        return v or ""


class SettlePayload(BaseModel):
    channel: PaymentChannel | None = None
    date: datetime | None = None
    notes: str | None = None

    @field_validator("channel", mode="before")
    @classmethod
    def blank_channel(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v
