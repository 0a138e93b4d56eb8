# Area risk aggregator: rolling per-area overflow statistics
#
# The first report for an area is an atomic upsert. Later reports run an
# optimistic read-compute-write: the write only lands if total_complaints is
# still the value that was read, otherwise the whole step is retried against
# the fresh row. Concurrent submissions to one area therefore never lose a
# count or skew the running mean. Each row also lists the complaints it has
# counted, so re-applying one complaint is a no-op.

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from .errors import AggregationConflictError
from .models import AreaRisk

logger = logging.getLogger(__name__)

OVERFLOW_FILL_LEVEL = 75
PREDICTION_HORIZON = timedelta(hours=48)
PREDICTION_MIN_OVERFLOWS = 3
MAX_CAS_ATTEMPTS = 20


def area_key(area_name: Optional[str], latitude: float, longitude: float) -> str:
    if area_name and area_name.strip():
        return area_name.strip()
    return f"{latitude:.3f},{longitude:.3f}"


def risk_for_overflows(overflow_count: int) -> AreaRisk:
    if overflow_count >= 10:
        return AreaRisk.CRITICAL
    if overflow_count >= 5:
        return AreaRisk.HIGH
    if overflow_count >= 3:
        return AreaRisk.MEDIUM
    return AreaRisk.LOW


def _read_area(coll, key: str) -> Optional[dict]:
    return coll.find_one({"area_name": key})


def _insert_first(coll, key: str, fill_level: float, is_overflow: bool,
                  latitude: float, longitude: float, now: datetime,
                  complaint_id: Optional[str] = None) -> bool:
    """Create the row for a new area. Returns False when it already exists."""
    try:
        result = coll.update_one(
            {"area_name": key},
            {"$setOnInsert": {
                "area_name": key, "latitude": latitude, "longitude": longitude,
                "total_complaints": 1, "overflow_count": 1 if is_overflow else 0,
                "avg_fill_level": float(fill_level), "risk_level": AreaRisk.LOW.value,
                "last_complaint_at": now, "predicted_next_overflow": None,
                "complaint_ids": [complaint_id] if complaint_id else [],
                "created_at": now, "updated_at": now}},
            upsert=True)
    except DuplicateKeyError:
        # Another request created it between our filter match and insert
        return False
    return result.upserted_id is not None


def record_complaint(db, key: str, fill_level: float, latitude: float, longitude: float,
                     now: datetime, complaint_id: Optional[str] = None) -> dict:
    """Fold one complaint into its area's statistics and return the updated row.

    With ``complaint_id`` a complaint already counted for the area returns the
    row unchanged.
    """
    coll = db.area_statistics
    is_overflow = fill_level >= OVERFLOW_FILL_LEVEL
    for attempt in range(MAX_CAS_ATTEMPTS):
        existing = _read_area(coll, key)
        if existing is None:
            if _insert_first(coll, key, fill_level, is_overflow, latitude, longitude, now,
                             complaint_id):
                logger.info("Area %s: first complaint recorded", key)
                return _read_area(coll, key)
            continue
        if complaint_id and complaint_id in (existing.get("complaint_ids") or []):
            logger.info("Area %s: complaint %s already counted", key, complaint_id)
            return existing

        old_count = existing.get("total_complaints") or 0
        old_avg = existing.get("avg_fill_level") or 0
        new_count = old_count + 1
        overflow_count = (existing.get("overflow_count") or 0) + (1 if is_overflow else 0)
        avg_fill = (old_avg * old_count + fill_level) / new_count
        risk = risk_for_overflows(overflow_count)
        predicted = now + PREDICTION_HORIZON if overflow_count >= PREDICTION_MIN_OVERFLOWS else None

        updated = {
            "total_complaints": new_count, "overflow_count": overflow_count,
            "avg_fill_level": avg_fill, "risk_level": risk.value,
            "last_complaint_at": now, "predicted_next_overflow": predicted,
            "updated_at": now,
        }
        change = {"$set": updated}
        if complaint_id:
            change["$addToSet"] = {"complaint_ids": complaint_id}
        result = coll.update_one({"area_name": key, "total_complaints": old_count}, change)
        if result.matched_count == 1:
            if risk.value != existing.get("risk_level"):
                logger.info("Area %s risk changed %s -> %s", key, existing.get("risk_level"), risk.value)
            return {**existing, **updated}
        logger.warning("Area %s: concurrent update detected, retrying (attempt %d)", key, attempt + 1)
    raise AggregationConflictError(f"Could not update statistics for area {key}")


def get_area(db, key: str) -> Optional[dict]:
    return db.area_statistics.find_one({"area_name": key}, {"complaint_ids": 0})


def list_areas(db, risk: Optional[AreaRisk] = None, limit: int = 100) -> List[dict]:
    fq = {"risk_level": risk.value} if risk else {}
    rows = db.area_statistics.find(fq, {"complaint_ids": 0}).sort("overflow_count", DESCENDING)
    return list(rows.limit(limit))
