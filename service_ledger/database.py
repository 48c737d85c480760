from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from service_ledger.config import settings


def enable_sqlite_locking(engine):
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite delays BEGIN until the first write and SQLite ignores FOR UPDATE,
    so the database write lock has to be taken before the first read.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args, echo=settings.SQL_ECHO)
if settings.DATABASE_URL.startswith("sqlite"):
    enable_sqlite_locking(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    # Import all models so Base.metadata knows about them
    import service_ledger.models.catalog  # noqa: F401
    import service_ledger.models.finance  # noqa: F401
    import service_ledger.models.product  # noqa: F401
    import service_ledger.models.service_realized  # noqa: F401
    import service_ledger.models.stock_movement  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
