# Complaint store: submission, admin updates, queries and the workflow rules
#
# Workflow: pending -> {in_progress, escalated} -> resolved. Only the
# escalation scheduler moves a complaint to escalated; resolved is terminal.

import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

from pymongo import ASCENDING, DESCENDING

from . import areas, rewards
from .analysis import status_for_fill, derive_priority
from .auth import authorize
from .database import new_id, generate_complaint_code, as_utc
from .errors import ValidationError, NotFoundError, InvalidTransitionError
from .escalation import DEPARTMENT_BY_LEVEL
from .models import (
    ComplaintCreate, ComplaintUpdate, ComplaintStatus, ComplaintResponse,
    ComplaintTrackResponse, ComplaintStats, CleanupVerdict, Priority, AreaRisk,
)

logger = logging.getLogger(__name__)

# in_progress and escalated share a rank, so an admin may pick up an escalated
# complaint. The move keeps escalation_level and assigned_department.
STATUS_RANK = {
    ComplaintStatus.PENDING: 0,
    ComplaintStatus.IN_PROGRESS: 1,
    ComplaintStatus.ESCALATED: 1,
    ComplaintStatus.RESOLVED: 2,
}

SIDE_EFFECTS = ("reward", "area")
MAX_LIST_LIMIT = 500
RETRY_GRACE = timedelta(minutes=5)

# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------
def complaint_to_response(doc: dict) -> ComplaintResponse:
    return ComplaintResponse(**doc, id=doc["_id"])


def complaint_to_track(doc: dict) -> ComplaintTrackResponse:
    return ComplaintTrackResponse(
        complaint_code=doc["complaint_code"], status=doc["status"], priority=doc["priority"],
        complaint_status=doc["complaint_status"], escalation_level=doc.get("escalation_level", 0),
        assigned_department=doc["assigned_department"], area_name=doc.get("area_name"),
        created_at=doc["created_at"], updated_at=doc["updated_at"],
        resolved_at=doc.get("resolved_at"))

# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------
def check_transition(current: ComplaintStatus, new: ComplaintStatus) -> None:
    current, new = ComplaintStatus(current), ComplaintStatus(new)
    if current == new:
        return
    if current == ComplaintStatus.RESOLVED:
        raise InvalidTransitionError("Resolved complaints cannot change status")
    if new == ComplaintStatus.ESCALATED:
        raise InvalidTransitionError("Complaints are escalated by the escalation scheduler only")
    if STATUS_RANK[new] < STATUS_RANK[current]:
        raise InvalidTransitionError(f"Cannot move a complaint from {current.value} back to {new.value}")

# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------
def validate_submission(reporter_id: Optional[str], data: ComplaintCreate) -> None:
    missing = []
    if not reporter_id:
        missing.append("reporter identity")
    if data.latitude is None:
        missing.append("latitude")
    if data.longitude is None:
        missing.append("longitude")
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _apply_reward(db, complaint: dict, now: datetime):
    result = rewards.award(db, complaint["reporter_id"], Priority(complaint["priority"]), now,
                           complaint_id=complaint["_id"])
    db.complaints.update_one({"_id": complaint["_id"]}, {"$pull": {"side_effects_pending": "reward"}})
    return result


def _apply_area(db, complaint: dict, now: datetime):
    key = areas.area_key(complaint.get("area_name"), complaint["latitude"], complaint["longitude"])
    stat = areas.record_complaint(db, key, complaint["fill_level"],
                                  complaint["latitude"], complaint["longitude"], now,
                                  complaint_id=complaint["_id"])
    update: Dict[str, Any] = {"$pull": {"side_effects_pending": "area"}}
    if stat["risk_level"] in (AreaRisk.HIGH.value, AreaRisk.CRITICAL.value):
        update["$set"] = {"is_high_risk_area": True, "overflow_frequency": stat["overflow_count"]}
    db.complaints.update_one({"_id": complaint["_id"]}, update)
    return stat


_SIDE_EFFECT_HANDLERS = {"reward": _apply_reward, "area": _apply_area}


def _run_side_effects(db, complaint: dict, now: datetime) -> Dict[str, Any]:
    results: Dict[str, Any] = {}
    for name in list(complaint.get("side_effects_pending") or []):
        handler = _SIDE_EFFECT_HANDLERS.get(name)
        if handler is None:
            continue
        try:
            results[name] = handler(db, complaint, now)
        except Exception as e:
            logger.error("Side effect %s failed for complaint %s: %s", name, complaint["complaint_code"], e)
    return results


def submit(db, reporter_id: Optional[str], data: ComplaintCreate, now: datetime) -> dict:
    """File a complaint and apply its reward and area side effects.

    Returns ``{"complaint": doc, "points_awarded": int, "badges_earned": [...]}``.
    A side effect that fails is left in ``side_effects_pending`` for
    ``retry_pending_side_effects``; the complaint itself is already stored.
    """
    validate_submission(reporter_id, data)
    status = status_for_fill(data.fill_level)
    priority = data.priority or derive_priority(status, data.fill_level)
    doc = {
        "_id": new_id(), "complaint_code": generate_complaint_code(db, now),
        "reporter_id": reporter_id, "reporter_email": data.reporter_email,
        "reporter_notes": data.reporter_notes,
        "latitude": data.latitude, "longitude": data.longitude,
        "address": data.address, "area_name": data.area_name, "image_url": data.image_url,
        "fill_level": data.fill_level, "status": status.value, "priority": priority.value,
        "recommendation": data.recommendation, "suggested_actions": data.suggested_actions,
        "ai_confidence": data.ai_confidence,
        "odor_risk": data.odor_risk.value, "pest_risk": data.pest_risk.value,
        "disease_risk": data.disease_risk.value,
        "public_hygiene_impact": data.public_hygiene_impact.value,
        "needs_review": data.needs_review,
        "complaint_status": ComplaintStatus.PENDING.value,
        "escalation_level": 0, "escalated_at": None,
        "assigned_department": DEPARTMENT_BY_LEVEL[0].value,
        "is_high_risk_area": False, "overflow_frequency": 0,
        "assigned_to": None, "admin_notes": None,
        "cleanup_image_url": None, "cleanup_verified": False, "cleanup_verification": None,
        "side_effects_pending": list(SIDE_EFFECTS), "side_effects_attempted_at": now,
        "created_at": now, "updated_at": now, "resolved_at": None,
    }
    db.complaints.insert_one(doc)

    results = _run_side_effects(db, doc, now)
    reward = results.get("reward")
    points = reward.points_awarded if reward else 0
    logger.info("New complaint submitted: %s, awarded %d points", doc["complaint_code"], points)
    return {"complaint": db.complaints.find_one({"_id": doc["_id"]}),
            "points_awarded": points,
            "badges_earned": reward.badges_earned if reward else []}


def retry_pending_side_effects(db, now: datetime, limit: int = 200) -> Dict[str, int]:
    """Re-apply side effects left pending by earlier submissions.

    Complaints are visited least recently attempted first. Anything attempted
    within ``RETRY_GRACE`` is left alone, which keeps the sweep clear of
    submissions still in flight.
    """
    checked = applied = failed = 0
    cutoff = now - RETRY_GRACE
    stale = db.complaints.find({"side_effects_pending": {"$exists": True, "$ne": []}}) \
        .sort("side_effects_attempted_at", ASCENDING).limit(limit)
    for complaint in list(stale):
        attempted = complaint.get("side_effects_attempted_at") or complaint["created_at"]
        if as_utc(attempted) > cutoff:
            break
        db.complaints.update_one({"_id": complaint["_id"]},
                                 {"$set": {"side_effects_attempted_at": now}})
        checked += 1
        pending = list(complaint.get("side_effects_pending") or [])
        results = _run_side_effects(db, complaint, now)
        applied += len(results)
        failed += len(pending) - len(results)
    if checked:
        logger.info("Side-effect retry: %d complaints, %d applied, %d failed", checked, applied, failed)
    return {"checked": checked, "applied": applied, "failed": failed}

# ---------------------------------------------------------------------------
# Admin updates
# ---------------------------------------------------------------------------
def update(db, complaint_id: str, caller_id: Optional[str], patch: ComplaintUpdate,
           now: datetime) -> dict:
    authorize(db, caller_id, "complaint.update")
    current = get_complaint(db, complaint_id)
    changes = patch.model_dump(exclude_unset=True)

    set_fields: Dict[str, Any] = {"updated_at": now}
    query: Dict[str, Any] = {"_id": complaint_id}
    if "complaint_status" in changes:
        new_status = changes["complaint_status"]
        if new_status is None:
            raise ValidationError("complaint_status cannot be cleared")
        check_transition(current["complaint_status"], new_status)
        if new_status.value != current["complaint_status"]:
            set_fields["complaint_status"] = new_status.value
            # A concurrent resolution must never be undone by this write
            query["complaint_status"] = {"$ne": ComplaintStatus.RESOLVED.value}
            if new_status == ComplaintStatus.RESOLVED:
                set_fields["resolved_at"] = now
    for field in ("assigned_to", "admin_notes", "cleanup_image_url"):
        if field in changes:
            set_fields[field] = changes[field]
    if "cleanup_verified" in changes:
        if changes["cleanup_verified"] is None:
            raise ValidationError("cleanup_verified must be true or false")
        set_fields["cleanup_verified"] = changes["cleanup_verified"]

    result = db.complaints.update_one(query, {"$set": set_fields})
    if result.matched_count == 0:
        raise InvalidTransitionError("Complaint was resolved concurrently; reload and retry")
    logger.info("Complaint %s updated by admin %s", current["complaint_code"], caller_id)
    return db.complaints.find_one({"_id": complaint_id})


def record_cleanup_verification(db, complaint_id: str, caller_id: Optional[str],
                                verdict: CleanupVerdict, image_url: Optional[str],
                                now: datetime) -> dict:
    """Attach an advisory cleanup verdict. Never sets ``cleanup_verified``."""
    authorize(db, caller_id, "cleanup.verify")
    set_fields: Dict[str, Any] = {
        "cleanup_verification": {**verdict.model_dump(mode="json"), "verified_at": now},
        "updated_at": now,
    }
    if image_url:
        set_fields["cleanup_image_url"] = image_url
    result = db.complaints.update_one({"_id": complaint_id}, {"$set": set_fields})
    if result.matched_count == 0:
        raise NotFoundError("Complaint not found")
    return db.complaints.find_one({"_id": complaint_id})

# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def get_complaint(db, complaint_id: str) -> dict:
    doc = db.complaints.find_one({"_id": complaint_id})
    if not doc:
        raise NotFoundError("Complaint not found")
    return doc


def get_by_code(db, code: str) -> dict:
    doc = db.complaints.find_one({"complaint_code": code})
    if not doc:
        raise NotFoundError("Complaint not found")
    return doc


def list_complaints(db, status: Optional[ComplaintStatus] = None, priority: Optional[Priority] = None,
                    area_name: Optional[str] = None, reporter_id: Optional[str] = None,
                    limit: int = 100, skip: int = 0) -> List[dict]:
    fq: Dict[str, Any] = {}
    if status: fq["complaint_status"] = ComplaintStatus(status).value
    if priority: fq["priority"] = Priority(priority).value
    if area_name: fq["area_name"] = area_name
    if reporter_id: fq["reporter_id"] = reporter_id
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    return list(db.complaints.find(fq).sort("created_at", DESCENDING).skip(skip).limit(limit))


def complaint_stats(db) -> ComplaintStats:
    stats = ComplaintStats()
    statuses = [s.value for s in ComplaintStatus]
    priorities = [p.value for p in Priority]
    projection = {"complaint_status": 1, "priority": 1, "area_name": 1}
    for c in db.complaints.find({}, projection):
        stats.total += 1
        if c.get("complaint_status") in statuses:
            setattr(stats, c["complaint_status"], getattr(stats, c["complaint_status"]) + 1)
        if c.get("priority") in priorities:
            setattr(stats, c["priority"], getattr(stats, c["priority"]) + 1)
        if c.get("area_name"):
            stats.area_stats[c["area_name"]] = stats.area_stats.get(c["area_name"], 0) + 1
    return stats
