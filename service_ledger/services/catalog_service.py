from sqlalchemy.orm import Session

from service_ledger.models.catalog import CatalogService, Client
from service_ledger.schemas.catalog import CatalogServiceCreate, ClientCreate


def get_client(db: Session, client_id: str) -> Client | None:
    return db.query(Client).filter(Client.id == client_id).first()


def get_catalog_service(db: Session, service_id: str) -> CatalogService | None:
    return db.query(CatalogService).filter(CatalogService.id == service_id).first()


def create_client(db: Session, data: ClientCreate) -> Client:
    client = Client(**data.model_dump())
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


def create_catalog_service(db: Session, data: CatalogServiceCreate) -> CatalogService:
    service = CatalogService(**data.model_dump())
    db.add(service)
    db.commit()
    db.refresh(service)
    return service
