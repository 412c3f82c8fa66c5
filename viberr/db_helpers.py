import logging
from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from viberr.entities import Base
from viberr.settings import DATABASE_URL

logger = logging.getLogger("viberr_backend")


def get_db_engine(url: str | None = None):
    url = url or DATABASE_URL

    if url.startswith("sqlite"):
        logger.info(f"[DB] Using SQLite URL: {url}")
        # handlers run in FastAPI's threadpool
        return create_engine(url, connect_args={"check_same_thread": False})

    logger.info("[DB] Connecting to %s", url.split("@")[-1])
    return create_engine(url, pool_pre_ping=True)


def build_db_session_factory(url: str | None = None) -> Callable[[], Session]:
    engine = get_db_engine(url)
    Base.metadata.create_all(engine)
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
