# Demo data: an admin account and a handful of complaints across two areas
#
#   python -m revocity.seed

from datetime import datetime

from . import auth, complaints, config
from .models import ComplaintCreate, UserRole

# ---------------------------------------------------------------------------
# Raw definitions
# ---------------------------------------------------------------------------
DEMO_REPORTERS = [
    {"user_id": "demo-citizen-1", "email": "asha.verma@example.com", "display_name": "Asha Verma"},
    {"user_id": "demo-citizen-2", "email": "rohan.mehta@example.com", "display_name": "Rohan Mehta"},
]

DEMO_COMPLAINTS = [
    # ---- Sector 5: repeat overflows ----
    {"reporter": 0, "area_name": "Sector 5", "latitude": 28.5921, "longitude": 77.0460,
     "address": "Near community park gate", "fill_level": 95,
     "recommendation": "Immediate collection required", "odor_risk": "high", "pest_risk": "medium"},
    {"reporter": 1, "area_name": "Sector 5", "latitude": 28.5925, "longitude": 77.0466,
     "address": "Market lane, shop 14", "fill_level": 82,
     "recommendation": "Schedule collection today", "odor_risk": "medium"},
    {"reporter": 0, "area_name": "Sector 5", "latitude": 28.5918, "longitude": 77.0452,
     "address": "Bus stop, main road", "fill_level": 78,
     "recommendation": "Schedule collection today"},
    # ---- Old Town: light usage ----
    {"reporter": 1, "area_name": "Old Town", "latitude": 28.6562, "longitude": 77.2410,
     "address": "Clock tower square", "fill_level": 40,
     "recommendation": "Routine collection"},
    {"reporter": 0, "area_name": "Old Town", "latitude": 28.6570, "longitude": 77.2401,
     "address": "Temple street", "fill_level": 15,
     "recommendation": "No action needed"},
]


def seed_demo(db, now: datetime, admin_id: str = None) -> dict:
    admin_id = admin_id or config.SEED_ADMIN_ID
    created = skipped = 0

    auth.sync_user(db, admin_id, None, "Demo Admin", now)
    db.user_roles.update_one(
        {"user_id": admin_id},
        {"$set": {"role": UserRole.ADMIN.value, "updated_at": now}},
        upsert=True)

    for reporter in DEMO_REPORTERS:
        auth.sync_user(db, reporter["user_id"], reporter["email"], reporter["display_name"], now)

    reporter_ids = [r["user_id"] for r in DEMO_REPORTERS]
    if db.complaints.count_documents({"reporter_id": {"$in": reporter_ids}}):
        skipped = len(DEMO_COMPLAINTS)
    else:
        for raw in DEMO_COMPLAINTS:
            data = {k: v for k, v in raw.items() if k != "reporter"}
            reporter = DEMO_REPORTERS[raw["reporter"]]
            data["reporter_email"] = reporter["email"]
            complaints.submit(db, reporter["user_id"], ComplaintCreate(**data), now)
            created += 1
    return {"admin_id": admin_id, "created": created, "skipped": skipped}


if __name__ == "__main__":
    from .database import connect, init_db, now_utc

    print(f"Connecting to: {config.MONGODB_URL}")
    print(f"Database: {config.MONGODB_DB}\n")
    client, database = connect()
    try:
        init_db(database)
        summary = seed_demo(database, now_utc())
        print(f"  OK    admin role granted to {summary['admin_id']}")
        print(f"\nDone! Created: {summary['created']}, Skipped: {summary['skipped']}")
    finally:
        client.close()
