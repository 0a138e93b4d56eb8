# Reward ledger: points and badges for reporting citizens
#
# Counters move with a single atomic $inc upsert that also records the
# complaint id, so a retried award for the same complaint changes nothing.
# Badges are granted with $addToSet from the post-increment totals. Every
# threshold is monotonic in its counter, so concurrent awards can neither
# lose a count nor revoke or duplicate a badge.

import logging
from datetime import datetime
from typing import List, Optional

from pymongo import ReturnDocument, DESCENDING
from pymongo.errors import DuplicateKeyError

from .models import Priority, RewardResult, UserRewardResponse

logger = logging.getLogger(__name__)

POINTS = {Priority.CRITICAL: 50, Priority.HIGH: 30}
DEFAULT_POINTS = 10

# (badge, counter, threshold)
BADGES = [
    ("First Reporter", "total_reports", 1),
    ("Active Citizen", "total_reports", 10),
    ("City Guardian", "total_reports", 25),
    ("Clean Hero", "valid_critical_reports", 5),
    ("Eco Champion", "points", 500),
]


def points_for(priority: Priority) -> int:
    return POINTS.get(Priority(priority), DEFAULT_POINTS)


def is_valid_critical(priority: Priority) -> bool:
    return Priority(priority) in (Priority.CRITICAL, Priority.HIGH)


def badges_for(totals: dict) -> List[str]:
    return [name for name, counter, threshold in BADGES if totals.get(counter, 0) >= threshold]


def reward_to_response(doc: dict) -> UserRewardResponse:
    return UserRewardResponse(
        user_id=doc["user_id"], points=doc.get("points", 0),
        total_reports=doc.get("total_reports", 0),
        valid_critical_reports=doc.get("valid_critical_reports", 0),
        badges=doc.get("badges", []), trust_score=doc.get("trust_score"),
        flagged_reports=doc.get("flagged_reports", 0),
        verified_contributor=doc.get("verified_contributor", False))


def award(db, user_id: str, priority: Priority, now: datetime,
          complaint_id: Optional[str] = None) -> RewardResult:
    """Credit one report. With ``complaint_id`` a repeated call for the same
    complaint leaves the counters untouched."""
    points = points_for(priority)
    query = {"user_id": user_id}
    update = {
        "$inc": {"points": points, "total_reports": 1,
                 "valid_critical_reports": 1 if is_valid_critical(priority) else 0},
        "$set": {"updated_at": now},
        # Schema-only fields; nothing in the ledger writes them afterwards
        "$setOnInsert": {"badges": [], "trust_score": None, "flagged_reports": 0,
                         "verified_contributor": False, "created_at": now},
    }
    if complaint_id:
        query["rewarded_complaints"] = {"$ne": complaint_id}
        update["$addToSet"] = {"rewarded_complaints": complaint_id}
    try:
        after = db.user_rewards.find_one_and_update(
            query, update, upsert=True, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        # The row exists and already lists this complaint
        logger.info("Reward for complaint %s already credited to %s", complaint_id, user_id)
        return RewardResult(points_awarded=points, badges_earned=[],
                            reward=reward_to_response(get_rewards(db, user_id)))

    earned = [b for b in badges_for(after) if b not in after.get("badges", [])]
    if earned:
        before = db.user_rewards.find_one_and_update(
            {"user_id": user_id}, {"$addToSet": {"badges": {"$each": earned}}},
            return_document=ReturnDocument.BEFORE)
        earned = [b for b in earned if b not in before.get("badges", [])]
        after = get_rewards(db, user_id)
        if earned:
            logger.info("User %s earned badges: %s", user_id, ", ".join(earned))
    return RewardResult(points_awarded=points, badges_earned=earned, reward=reward_to_response(after))


def get_rewards(db, user_id: str) -> Optional[dict]:
    return db.user_rewards.find_one({"user_id": user_id}, {"rewarded_complaints": 0})


def leaderboard(db, limit: int = 10) -> List[dict]:
    return list(db.user_rewards.find({}, {"rewarded_complaints": 0}).sort("points", DESCENDING).limit(limit))
