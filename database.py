"""
Database connection

`db` is a pymongo Database when DATABASE_URL and DATABASE_NAME are set,
otherwise None. MongoClient connects lazily, so importing this module never
blocks on the network.
"""

import logging
from typing import Any, Iterable

from pymongo import MongoClient

from config import Settings

logger = logging.getLogger(__name__)

_settings = Settings.from_env()

db = None
if _settings.database_url and _settings.database_name:
    client = MongoClient(_settings.database_url)
    db = client[_settings.database_name]


def ensure_indexes(database: Any, kinds: Iterable[Any]) -> None:
    """Create the unique indexes each entity kind declares."""
    if database is None:
        logger.warning("Database not configured; skipping index creation")
        return
    for kind in kinds:
        for field_name in kind.unique:
            database[kind.collection].create_index(field_name, unique=True)
            logger.info(f"Ensured unique index {kind.collection}.{field_name}")
