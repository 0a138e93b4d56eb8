# Escalation scheduler: promote overdue complaints up the responsibility chain
#
# Run periodically (HTTP trigger or ``python -m revocity.escalation`` from
# cron). Each promotion is a single conditional write, so overlapping sweeps
# and concurrent admin resolutions never regress a complaint.

import logging
from datetime import datetime, timedelta
from typing import Optional

from .database import as_utc
from .models import ComplaintStatus, Department, EscalationReport, Priority

logger = logging.getLogger(__name__)

MAX_LEVEL = 3

# Hours since creation before reaching levels 1, 2 and 3
THRESHOLDS = {
    Priority.CRITICAL: (4, 8, 12),
    Priority.HIGH: (12, 24, 48),
    Priority.MEDIUM: (24, 48, 72),
    Priority.LOW: (48, 96, 168),
}

DEPARTMENT_BY_LEVEL = {
    0: Department.SANITATION,
    1: Department.SANITATION_SUPERVISOR,
    2: Department.HEALTH_DEPARTMENT,
    3: Department.MUNICIPAL_COMMISSIONER,
}


def thresholds_for(priority: Optional[str]):
    try:
        return THRESHOLDS[Priority(priority)]
    except ValueError:
        return THRESHOLDS[Priority.MEDIUM]


def target_level(priority: Optional[str], created_at: datetime, now: datetime) -> int:
    """Highest escalation level whose age threshold has been reached."""
    hours = (now - as_utc(created_at)) / timedelta(hours=1)
    level = 0
    for i, threshold in enumerate(thresholds_for(priority), start=1):
        if hours >= threshold:
            level = i
    return level


def escalate_one(db, complaint: dict, now: datetime) -> Optional[int]:
    """Promote one complaint if it is due. Returns the new level, or None when nothing was written."""
    current = complaint.get("escalation_level") or 0
    new_level = target_level(complaint.get("priority"), complaint["created_at"], now)
    if new_level <= current:
        return None
    result = db.complaints.update_one(
        {"_id": complaint["_id"],
         "complaint_status": {"$ne": ComplaintStatus.RESOLVED.value},
         "escalation_level": {"$lt": new_level}},
        {"$set": {"escalation_level": new_level, "escalated_at": now,
                  "complaint_status": ComplaintStatus.ESCALATED.value,
                  "assigned_department": DEPARTMENT_BY_LEVEL[new_level].value,
                  "updated_at": now}})
    if result.matched_count == 0:
        return None
    return new_level


def run_escalation_sweep(db, now: datetime) -> EscalationReport:
    report = EscalationReport()
    pending = db.complaints.find(
        {"complaint_status": {"$ne": ComplaintStatus.RESOLVED.value},
         "escalation_level": {"$lt": MAX_LEVEL}})
    logger.info("Escalation sweep started at %s", now.isoformat())

    for complaint in pending:
        report.checked += 1
        try:
            new_level = escalate_one(db, complaint, now)
        except Exception as e:
            report.failed += 1
            logger.error("Failed to escalate complaint %s: %s", complaint.get("complaint_code"), e)
            continue
        if new_level is None:
            report.skipped += 1
            continue
        report.escalated += 1
        report.escalated_complaints.append(complaint["complaint_code"])
        logger.info("Escalated %s to level %d (%s)", complaint["complaint_code"], new_level,
                    DEPARTMENT_BY_LEVEL[new_level].value)

    logger.info("Escalation sweep complete: %d checked, %d escalated, %d failed",
                report.checked, report.escalated, report.failed)
    return report


if __name__ == "__main__":
    from .database import connect, now_utc

    client, database = connect()
    try:
        print(run_escalation_sweep(database, now_utc()).model_dump_json(indent=2))
    finally:
        client.close()
