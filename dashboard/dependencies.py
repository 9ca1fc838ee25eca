"""
FastAPI dependencies shared by the routers.
"""

from functools import lru_cache
from typing import Generator

from sqlalchemy.orm import Session

from composite_risk.config import CompositeRiskConfig, load_config
from database.engine import get_session


def get_db() -> Generator[Session, None, None]:
    db = get_session()
    try:
        yield db
    finally:
        db.close()


@lru_cache(maxsize=1)
def get_config() -> CompositeRiskConfig:
    return load_config()
