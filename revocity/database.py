# MongoDB bootstrap: client, indexes, counters and small row helpers

import logging
import secrets
import string
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Optional

from pymongo import MongoClient, ReturnDocument

from . import config

logger = logging.getLogger(__name__)


def connect(url: str = None, name: str = None):
    """Return ``(client, db)``. Datetimes come back timezone-aware (UTC)."""
    client = MongoClient(url or config.MONGODB_URL, tz_aware=True)
    return client, client[name or config.MONGODB_DB]


def init_db(db) -> None:
    db.complaints.create_index("complaint_code", unique=True)
    db.complaints.create_index("created_at")
    db.complaints.create_index("complaint_status")
    db.complaints.create_index("priority")
    db.complaints.create_index("reporter_id")
    db.complaints.create_index("area_name")
    db.complaints.create_index("side_effects_attempted_at")
    db.area_statistics.create_index("area_name", unique=True)
    db.user_rewards.create_index("user_id", unique=True)
    db.user_rewards.create_index([("points", -1)])
    db.user_roles.create_index("user_id", unique=True)
    db.scan_history.create_index([("user_id", 1), ("created_at", -1)])
    logger.info("Database initialized")


def new_id() -> str:
    return str(uuid.uuid4())


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes read back from storage as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def generate_complaint_code(db, now: datetime) -> str:
    counter = db.counters.find_one_and_update(
        {"_id": "complaint"}, {"$inc": {"seq": 1}},
        upsert=True, return_document=ReturnDocument.AFTER)
    # Random suffix so codes cannot be enumerated from the sequence alone
    random_suffix = ''.join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"RVC-{now.year}-{counter['seq']:06d}{random_suffix}"

# ---------------------------------------------------------------------------
# Request-scoped access
# ---------------------------------------------------------------------------
db_client = None
db = None
executor = ThreadPoolExecutor(max_workers=10)


async def get_db():
    return db
