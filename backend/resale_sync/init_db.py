from resale_sync.models_sqlalchemy import Base, engine
from resale_sync.models_sqlalchemy.models import (  # noqa: F401 - registers tables on Base
    InventoryItem, MarketplaceCredential, Order, OrderLine, RawPayload, SyncRun
)
from resale_sync.utils.logger import logger


def init_db(bind=None):
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created successfully!")


if __name__ == "__main__":
    init_db()
