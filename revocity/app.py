# RevoCity HTTP API: citizen reporting, admin workflow and public transparency

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from . import analysis, areas, auth, complaints, config, database, escalation, rewards
from .auth import get_current_user, require_action, require_scheduler
from .database import get_db, executor
from .errors import RevoCityError, AuthorizationError
from .models import (
    AnalyzeResponse, AreaRisk, AreaStatisticResponse, CleanupRequest, CleanupResult,
    ComplaintCreate, ComplaintResponse, ComplaintStats, ComplaintStatus,
    ComplaintTrackResponse, ComplaintUpdate, EscalationReport, ImageRequest, Priority,
    RoleAssignment, ScanRecordResponse, SideEffectRetryReport, SubmitResponse,
    UserRewardResponse, UserSync, UserWithRole, ValidateResponse,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def run_db(fn, *args):
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fn, *args)

# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    database.db_client, database.db = database.connect()
    await run_db(database.init_db, database.db)
    logger.info("AI gateway: %s | Model: %s", config.AI_GATEWAY_URL, config.AI_MODEL)
    yield
    if database.db_client:
        database.db_client.close()

# ---------------------------------------------------------------------------
# App & Middleware
# ---------------------------------------------------------------------------
app = FastAPI(title="RevoCity - Smart Waste Complaint Platform", lifespan=lifespan)
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RevoCityError)
async def revocity_error_handler(request: Request, exc: RevoCityError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(self), camera=(self), microphone=()"
        return response


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials="*" not in config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Health & identity
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": utc_now().isoformat()}


@app.post("/users/sync", response_model=UserWithRole)
async def sync_user(data: UserSync, user=Depends(get_current_user), db=Depends(get_db)):
    profile = await run_db(auth.sync_user, db, user["id"], data.email or user["email"],
                           data.display_name or user["name"], utc_now())
    role = await run_db(auth.get_role, db, user["id"])
    return UserWithRole(user_id=profile["_id"], email=profile.get("email"),
                        display_name=profile.get("display_name"),
                        last_login=profile.get("last_login"), role=role)


@app.get("/auth/is-admin")
async def check_admin(user=Depends(get_current_user), db=Depends(get_db)):
    return {"is_admin": await run_db(auth.is_admin, db, user["id"])}

# ---------------------------------------------------------------------------
# AI image checks
# ---------------------------------------------------------------------------
@app.post("/images/validate", response_model=ValidateResponse)
@limiter.limit("10/minute")
async def validate_image(request: Request, data: ImageRequest, user=Depends(get_current_user)):
    verdict = await analysis.validate_image(data.image_base64, data.latitude, data.longitude)
    return ValidateResponse(validation=verdict, blocks_submission=verdict.blocks_submission,
                            authenticity_warning=verdict.authenticity_warning)


@app.post("/analyze", response_model=AnalyzeResponse)
@limiter.limit("10/minute")
async def analyze(request: Request, data: ImageRequest, user=Depends(get_current_user),
                  db=Depends(get_db)):
    verdict = await analysis.validate_image(data.image_base64, data.latitude, data.longitude)
    if verdict.blocks_submission:
        logger.info("Rejected image from %s: %s", user["id"], verdict.reason)
        raise HTTPException(status_code=422, detail={
            "message": "Image rejected", "reason": verdict.reason, "flags": verdict.flags})
    assessment = await analysis.analyze_bin(data.image_base64)
    await run_db(analysis.record_scan, db, user["id"], assessment, utc_now())
    return AnalyzeResponse(assessment=assessment, validation=verdict,
                           authenticity_warning=verdict.authenticity_warning)


@app.get("/scans/me", response_model=List[ScanRecordResponse])
async def my_scans(limit: int = Query(50, ge=1, le=200), user=Depends(get_current_user),
                   db=Depends(get_db)):
    scans = await run_db(analysis.list_scans, db, user["id"], limit)
    return [ScanRecordResponse(**s, id=s["_id"]) for s in scans]

# ---------------------------------------------------------------------------
# Complaints
# ---------------------------------------------------------------------------
@app.post("/complaints", response_model=SubmitResponse)
async def submit_complaint(data: ComplaintCreate, user=Depends(get_current_user), db=Depends(get_db)):
    if not data.reporter_email:
        data.reporter_email = user["email"]
    outcome = await run_db(complaints.submit, db, user["id"], data, utc_now())
    return SubmitResponse(complaint=complaints.complaint_to_response(outcome["complaint"]),
                          points_awarded=outcome["points_awarded"],
                          badges_earned=outcome["badges_earned"])


@app.get("/complaints", response_model=List[ComplaintResponse])
async def list_complaints(
    status: Optional[ComplaintStatus] = None, priority: Optional[Priority] = None,
    area_name: Optional[str] = None, reporter_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=complaints.MAX_LIST_LIMIT), skip: int = Query(0, ge=0),
    user=Depends(require_action("complaint.list")), db=Depends(get_db)):
    docs = await run_db(lambda: complaints.list_complaints(
        db, status=status, priority=priority, area_name=area_name,
        reporter_id=reporter_id, limit=limit, skip=skip))
    return [complaints.complaint_to_response(d) for d in docs]


@app.get("/complaints/mine", response_model=List[ComplaintResponse])
async def my_complaints(limit: int = Query(100, ge=1, le=complaints.MAX_LIST_LIMIT),
                        skip: int = Query(0, ge=0),
                        user=Depends(get_current_user), db=Depends(get_db)):
    docs = await run_db(lambda: complaints.list_complaints(
        db, reporter_id=user["id"], limit=limit, skip=skip))
    return [complaints.complaint_to_response(d) for d in docs]


@app.get("/complaints/stats", response_model=ComplaintStats)
async def complaint_stats(db=Depends(get_db)):
    return await run_db(complaints.complaint_stats, db)


@app.get("/complaints/track/{code}", response_model=ComplaintTrackResponse)
@limiter.limit("20/minute")
async def track_complaint(request: Request, code: str, db=Depends(get_db)):
    doc = await run_db(complaints.get_by_code, db, code.strip().upper())
    return complaints.complaint_to_track(doc)


@app.get("/complaints/{complaint_id}", response_model=ComplaintResponse)
async def get_complaint(complaint_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    doc = await run_db(complaints.get_complaint, db, complaint_id)
    if doc["reporter_id"] != user["id"] and not await run_db(auth.is_admin, db, user["id"]):
        raise AuthorizationError("Access denied")
    return complaints.complaint_to_response(doc)


@app.patch("/complaints/{complaint_id}", response_model=ComplaintResponse)
async def update_complaint(complaint_id: str, patch: ComplaintUpdate,
                           user=Depends(get_current_user), db=Depends(get_db)):
    doc = await run_db(complaints.update, db, complaint_id, user["id"], patch, utc_now())
    return complaints.complaint_to_response(doc)


@app.post("/complaints/{complaint_id}/verify-cleanup", response_model=CleanupResult)
@limiter.limit("10/minute")
async def verify_cleanup(request: Request, complaint_id: str, data: CleanupRequest,
                         user=Depends(require_action("cleanup.verify")), db=Depends(get_db)):
    await run_db(complaints.get_complaint, db, complaint_id)
    verdict = await analysis.verify_cleanup(data.image_base64, complaint_id)
    doc = await run_db(complaints.record_cleanup_verification, db, complaint_id, user["id"],
                       verdict, data.image_url, utc_now())
    return CleanupResult(verification=verdict, complaint=complaints.complaint_to_response(doc))

# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------
@app.post("/escalations/run", response_model=EscalationReport)
async def run_escalations(caller=Depends(require_scheduler()), db=Depends(get_db)):
    report = await run_db(escalation.run_escalation_sweep, db, utc_now())
    logger.info("Escalation sweep triggered by %s", caller["id"])
    return report


@app.post("/maintenance/retry-side-effects", response_model=SideEffectRetryReport)
async def retry_side_effects(caller=Depends(require_scheduler("maintenance.run")), db=Depends(get_db)):
    return SideEffectRetryReport(**await run_db(complaints.retry_pending_side_effects, db, utc_now()))

# ---------------------------------------------------------------------------
# Areas & rewards
# ---------------------------------------------------------------------------
@app.get("/areas", response_model=List[AreaStatisticResponse])
async def list_areas(risk: Optional[AreaRisk] = None, limit: int = Query(100, ge=1, le=500),
                     db=Depends(get_db)):
    rows = await run_db(areas.list_areas, db, risk, limit)
    return [AreaStatisticResponse(**r) for r in rows]


@app.get("/areas/{area_key}", response_model=AreaStatisticResponse)
async def get_area(area_key: str, db=Depends(get_db)):
    row = await run_db(areas.get_area, db, area_key)
    if not row:
        raise HTTPException(status_code=404, detail="Area not found")
    return AreaStatisticResponse(**row)


@app.get("/rewards/me", response_model=UserRewardResponse)
async def my_rewards(user=Depends(get_current_user), db=Depends(get_db)):
    row = await run_db(rewards.get_rewards, db, user["id"])
    if not row:
        return UserRewardResponse(user_id=user["id"])
    return rewards.reward_to_response(row)


@app.get("/rewards/leaderboard", response_model=List[UserRewardResponse])
async def leaderboard(db=Depends(get_db)):
    rows = await run_db(rewards.leaderboard, db)
    return [rewards.reward_to_response(r) for r in rows]

# ---------------------------------------------------------------------------
# Role administration
# ---------------------------------------------------------------------------
@app.get("/admin/roles", response_model=List[UserWithRole])
async def list_roles(user=Depends(get_current_user), db=Depends(get_db)):
    users = await run_db(auth.list_users, db, user["id"])
    return [UserWithRole(**u) for u in users]


@app.put("/admin/roles/{user_id}")
async def assign_role(user_id: str, data: RoleAssignment, user=Depends(get_current_user),
                      db=Depends(get_db)):
    await run_db(auth.set_role, db, user["id"], user_id, data.role, utc_now())
    return {"user_id": user_id, "role": data.role.value}


@app.delete("/admin/roles/{user_id}")
async def delete_role(user_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    removed = await run_db(auth.remove_role, db, user["id"], user_id)
    if not removed:
        raise HTTPException(status_code=404, detail="No role assigned to this user")
    return {"message": "Role removed"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
