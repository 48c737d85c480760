from decimal import Decimal

from sqlalchemy.orm import Session

from service_ledger.models.product import Product
from service_ledger.models.stock_movement import MovementDirection, MovementOrigin
from service_ledger.schemas.product import ProductCreate
from service_ledger.services.stock_ledger import StockItem, record_movements


def create_product(db: Session, data: ProductCreate, actor: str | None = None) -> Product:
    product = Product(
        code=data.code,
        sku=data.sku,
        name=data.name,
        category=data.category,
        unit=data.unit,
        description=data.description,
        stock=Decimal("0"),
        cost=data.cost,
        sale_price=data.sale_price,
        active=data.active,
    )
    db.add(product)
    db.flush()

    if data.stock > 0:
        record_movements(
            db,
            [StockItem(product.id, data.stock, "Initial stock on product creation")],
            MovementDirection.INBOUND,
            MovementOrigin.SYSTEM_ADJUSTMENT,
            reference_id=product.id,
            actor=actor,
        )

    db.commit()
    db.refresh(product)
    return product


def get_product(db: Session, product_id: str) -> Product | None:
    return db.query(Product).filter(Product.id == product_id).first()


def list_products(
    db: Session, skip: int = 0, limit: int = 100, active: bool | None = None
) -> list[Product]:
    q = db.query(Product)
    if active is not None:
        q = q.filter(Product.active == active)
    return q.order_by(Product.name).offset(skip).limit(limit).all()
