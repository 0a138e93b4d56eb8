# Identity, role lookup and the single authorization check for admin actions
#
# Callers authenticate with a bearer JWT issued by the external identity
# provider; its ``sub`` is the caller id. Roles live in ``user_roles``.

import asyncio
import logging
import secrets
from datetime import datetime
from typing import Optional, List

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pymongo import DESCENDING

from . import config
from .database import get_db, executor
from .errors import AuthorizationError, ValidationError
from .models import UserRole

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ACTIONS = {
    "complaint.update",
    "complaint.list",
    "cleanup.verify",
    "escalation.run",
    "roles.manage",
    "maintenance.run",
}

# ---------------------------------------------------------------------------
# Role lookup
# ---------------------------------------------------------------------------
def get_role(db, user_id: str) -> Optional[str]:
    row = db.user_roles.find_one({"user_id": user_id})
    return row["role"] if row else None


def is_admin(db, user_id: Optional[str]) -> bool:
    if not user_id:
        return False
    return db.user_roles.find_one({"user_id": user_id, "role": UserRole.ADMIN.value}) is not None


def authorize(db, caller_id: Optional[str], action: str) -> None:
    """Raise ``AuthorizationError`` unless ``caller_id`` may perform ``action``."""
    if action not in ADMIN_ACTIONS:
        raise AuthorizationError(f"Unknown action: {action}")
    if not is_admin(db, caller_id):
        logger.info("Denied %s for %s", action, caller_id)
        raise AuthorizationError("Unauthorized - admin access required")

# ---------------------------------------------------------------------------
# User profiles & role management
# ---------------------------------------------------------------------------
def sync_user(db, user_id: str, email: Optional[str], display_name: Optional[str],
              now: datetime) -> dict:
    """Upsert the profile on sign-in; first sight also grants the default role."""
    set_fields = {"last_login": now}
    if email:
        set_fields["email"] = email
    if display_name:
        set_fields["display_name"] = display_name
    result = db.users.update_one(
        {"_id": user_id},
        {"$set": set_fields, "$setOnInsert": {"created_at": now}},
        upsert=True)
    if result.upserted_id is not None:
        db.user_roles.update_one(
            {"user_id": user_id},
            {"$setOnInsert": {"user_id": user_id, "role": UserRole.USER.value, "created_at": now}},
            upsert=True)
        logger.info("Registered new user %s (%s)", user_id, email)
    return db.users.find_one({"_id": user_id})


def set_role(db, caller_id: str, target_user_id: str, role: UserRole, now: datetime) -> None:
    authorize(db, caller_id, "roles.manage")
    db.user_roles.update_one(
        {"user_id": target_user_id},
        {"$set": {"role": UserRole(role).value, "updated_at": now},
         "$setOnInsert": {"user_id": target_user_id, "created_at": now}},
        upsert=True)
    logger.info("Admin %s assigned role %s to %s", caller_id, UserRole(role).value, target_user_id)


def remove_role(db, caller_id: str, target_user_id: str) -> bool:
    authorize(db, caller_id, "roles.manage")
    if target_user_id == caller_id:
        raise ValidationError("Cannot remove your own admin role")
    result = db.user_roles.delete_one({"user_id": target_user_id})
    logger.info("Admin %s removed role for %s", caller_id, target_user_id)
    return result.deleted_count == 1


def list_users(db, caller_id: str) -> List[dict]:
    authorize(db, caller_id, "roles.manage")
    roles = {r["user_id"]: r["role"] for r in db.user_roles.find({})}
    users = []
    for u in db.users.find({}).sort("last_login", DESCENDING):
        users.append({"user_id": u["_id"], "email": u.get("email"),
                      "display_name": u.get("display_name"), "last_login": u.get("last_login"),
                      "role": roles.get(u["_id"])})
    return users

# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------
def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM],
                             options={"verify_aud": False})
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)):
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = decode_token(credentials.credentials)
    return {"id": str(payload["sub"]), "email": payload.get("email"), "name": payload.get("name")}


async def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)):
    if credentials is None:
        return None
    try:
        return await get_current_user(credentials)
    except HTTPException:
        return None


def require_action(action: str):
    async def action_checker(user=Depends(get_current_user), db=Depends(get_db)):
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(executor, authorize, db, user["id"], action)
        return user
    return action_checker


def require_scheduler(action: str = "escalation.run"):
    """Accept the cron shared key, or fall back to an admin bearer token."""
    async def scheduler_checker(x_scheduler_key: Optional[str] = Header(None),
                                user=Depends(get_optional_user), db=Depends(get_db)):
        if x_scheduler_key and config.SCHEDULER_KEY and \
                secrets.compare_digest(x_scheduler_key, config.SCHEDULER_KEY):
            return {"id": "scheduler", "email": None, "name": "scheduler"}
        if user is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(executor, authorize, db, user["id"], action)
        return user
    return scheduler_checker
