"""MongoDB access for the generation log store."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import ServerSelectionTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MongoSettings:
    uri: str
    db_name: str = "iterative_deck"
    timeout_ms: int = 5000
    log_ttl_days: Optional[int] = None

    @classmethod
    def from_env(cls) -> "MongoSettings":
        """Read ``MONGODB_*`` variables; ``MONGODB_URI`` is required.

        ``DECK_LOG_TTL_DAYS`` expires old generation logs when set.
        """
        load_dotenv()
        uri = os.environ.get("MONGODB_URI")
        if not uri:
            raise RuntimeError("MONGODB_URI is not set")
        ttl = os.environ.get("DECK_LOG_TTL_DAYS")
        return cls(
            uri=uri,
            db_name=os.environ.get("MONGODB_DB_NAME", "iterative_deck"),
            timeout_ms=int(os.environ.get("MONGODB_TIMEOUT_MS", "5000")),
            log_ttl_days=int(ttl) if ttl else None,
        )


@lru_cache(maxsize=1)
def get_settings() -> MongoSettings:
    return MongoSettings.from_env()


@lru_cache(maxsize=1)
def get_mongo_client() -> MongoClient:
    settings = get_settings()
    client = MongoClient(settings.uri, serverSelectionTimeoutMS=settings.timeout_ms, tz_aware=True)
    try:
        client.admin.command("ping")
    except ServerSelectionTimeoutError as e:
        client.close()
        raise RuntimeError(f"Cannot connect to MongoDB: {e}")
    logger.info("Connected to MongoDB database %s", settings.db_name)
    return client


def get_db():
    return get_mongo_client()[get_settings().db_name]


def close_client() -> None:
    """Close the cached client so the next ``get_db`` reconnects."""
    if get_mongo_client.cache_info().currsize:
        get_mongo_client().close()
    get_mongo_client.cache_clear()
    get_settings.cache_clear()


def ensure_log_indexes(collection_name: str = "generation_logs") -> List[str]:
    """Create the indexes generation log lookups rely on. Idempotent."""
    coll = get_db()[collection_name]
    names = [
        coll.create_index("generationId", unique=True),
        coll.create_index([("status", ASCENDING), ("kind", ASCENDING)]),
    ]
    ttl_days = get_settings().log_ttl_days
    if ttl_days:
        # startedAt is an ISO string, so expiry keys off the BSON date written at save time
        names.append(
            coll.create_index("savedAt", expireAfterSeconds=ttl_days * 86400, name="savedAt_ttl")
        )
    else:
        names.append(coll.create_index([("startedAt", DESCENDING)]))
    return names
