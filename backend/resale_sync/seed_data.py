from resale_sync.init_db import init_db
from resale_sync.models_sqlalchemy import SessionLocal
from resale_sync.models_sqlalchemy.models import InventoryItem
from resale_sync.utils.logger import logger

# Matches the SKUs carried by the fixture client's orders: one line links to
# each of these, the third line has no SKU.
INVENTORY_SEED = [
    {"sku": "INV-2509-AAA001", "title": "Vintage Card", "cost_cents": 1000, "quantity_on_hand": 1},
    {"sku": "INV-2509-AAA002", "title": "Enamel Pin Lot", "cost_cents": 450, "quantity_on_hand": 1},
]


def seed_data(session_factory=SessionLocal) -> int:
    """Insert the demo inventory items that are missing. Returns how many were added."""
    db = session_factory()
    created = 0
    try:
        for data in INVENTORY_SEED:
            existing = db.query(InventoryItem).filter(InventoryItem.sku == data["sku"]).first()
            if existing:
                continue
            db.add(InventoryItem(**data))
            created += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    logger.info(f"Seeded {created} inventory item(s)")
    return created


if __name__ == "__main__":
    init_db()
    seed_data()
