from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Service Ledger"
    DATABASE_URL: str = "sqlite:///./service_ledger.db"
    SQL_ECHO: bool = False

    LOG_LEVEL: str = "INFO"

    # Finance movement generated when a service realized is completed
    BILLING_CATEGORY: str = "Serviços"
    BILLING_TITLE_PREFIX: str = "Serviço realizado"

    # Stock movement listing
    MOVEMENT_LIST_LIMIT: int = 100
    MOVEMENT_LIST_MAX: int = 500

    model_config = {"env_file": ".env"}


settings = Settings()
