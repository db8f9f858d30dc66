from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from resale_sync.config import settings

DATABASE_URL = settings.DATABASE_URL


def engine_options(database_url: str) -> Dict[str, Any]:
    """Keyword arguments for ``create_engine`` for the given backend."""
    if database_url.startswith("sqlite"):
        # sessions are handed across the threadpool FastAPI runs sync code in
        return {"connect_args": {"check_same_thread": False}}

    return {
        "connect_args": {
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 3600,
        "pool_timeout": 30,
    }


_options = engine_options(DATABASE_URL)
connect_args = _options["connect_args"]

engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True, **_options)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
