import pytest
from sqlalchemy import create_engine

from service_ledger.database import SessionLocal, enable_sqlite_locking, init_db
from service_ledger.models.product import Product
from service_ledger.models.stock_movement import StockMovement
from service_ledger.schemas.product import ProductCreate
from service_ledger.services import product_service


@pytest.fixture(autouse=True)
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}", connect_args={"check_same_thread": False}
    )
    enable_sqlite_locking(engine)
    init_db(bind=engine)
    SessionLocal.configure(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_product():
    """Create a product in its own session and return it detached."""
    def _make(name="Produto", stock=0, sale_price="10", cost="4"):
        with SessionLocal() as session:
            product = product_service.create_product(
                session, ProductCreate(name=name, stock=stock, sale_price=sale_price, cost=cost)
            )
            session.expunge(product)
        return product
    return _make


@pytest.fixture
def stock_of():
    """Read a product's stock through a fresh session."""
    def _stock(product_id):
        with SessionLocal() as session:
            return session.get(Product, product_id).stock
    return _stock


@pytest.fixture
def movements_of():
    def _movements(product_id=None):
        with SessionLocal() as session:
            q = session.query(StockMovement)
            if product_id:
                q = q.filter(StockMovement.product_id == product_id)
            rows = q.order_by(StockMovement.id).all()
            session.expunge_all()
            return rows
    return _movements
