from decimal import Decimal

from pydantic import BaseModel, field_validator

from service_ledger.schemas.common import normalize_number


class ClientCreate(BaseModel):
    name: str
    client_type: str = "pf"
    document: str = ""
    email: str = ""
    phone: str = ""
    notes: str = ""


class CatalogServiceCreate(BaseModel):
    name: str
    category: str = ""
    price: Decimal = Decimal("0")
    deadline: str = ""
    description: str = ""

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, v):
        return normalize_number(v, default=Decimal("0"))
