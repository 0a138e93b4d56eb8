# AI-assisted image checks: bin analysis, authenticity validation, cleanup verification
#
# Each check sends the image to the gateway, parses whatever JSON comes back
# and converts it into one of the canonical models. A failed call or an
# unparseable reply degrades to a conservative verdict instead of raising.

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from pymongo import DESCENDING

from .database import new_id
from .gateway import vision_chat, extract_json
from .models import (
    BinAssessment, BinStatus, Priority, RiskLevel, ImageVerdict,
    CleanupVerdict, CleanupRecommendation,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------
# full, overflowing and hazardous all collapse into one internal state
STATUS_MAP = {
    "empty": BinStatus.EMPTY,
    "partial": BinStatus.HALF_FILLED,
    "full": BinStatus.OVERFLOWING,
    "overflowing": BinStatus.OVERFLOWING,
    "hazardous": BinStatus.OVERFLOWING,
    "half-filled": BinStatus.HALF_FILLED,
}

RISK_MAP = {
    "none": RiskLevel.LOW, "low": RiskLevel.LOW, "minor": RiskLevel.LOW,
    "medium": RiskLevel.MEDIUM, "concerning": RiskLevel.MEDIUM,
    "high": RiskLevel.HIGH, "severe": RiskLevel.HIGH, "dangerous": RiskLevel.HIGH,
}

DEFAULT_FILL = 50
DEFAULT_CONFIDENCE = 80
AUTHENTICITY_WARNING_THRESHOLD = 70


def status_for_fill(fill_level: float) -> BinStatus:
    if fill_level >= 75:
        return BinStatus.OVERFLOWING
    if fill_level >= 25:
        return BinStatus.HALF_FILLED
    return BinStatus.EMPTY


def derive_priority(status: BinStatus, fill_level: float) -> Priority:
    if status == BinStatus.OVERFLOWING:
        return Priority.CRITICAL if fill_level >= 90 else Priority.HIGH
    if status == BinStatus.HALF_FILLED:
        return Priority.MEDIUM
    return Priority.LOW

# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------
def _section(payload: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def _number(value, default: Optional[float] = None) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def _risk(value) -> RiskLevel:
    if isinstance(value, str):
        return RISK_MAP.get(value.strip().lower(), RiskLevel.LOW)
    return RiskLevel.LOW


def _priority(value) -> Optional[Priority]:
    if isinstance(value, str) and value.strip().lower() in [p.value for p in Priority]:
        return Priority(value.strip().lower())
    return None


def _strings(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def _flag(value, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return default

# ---------------------------------------------------------------------------
# Analyzer adapter
# ---------------------------------------------------------------------------
def classify_payload(payload: Dict[str, Any]) -> str:
    """Return ``"comprehensive"`` or ``"legacy"`` for a raw analysis payload."""
    return "comprehensive" if isinstance(payload.get("bin_status"), dict) else "legacy"


def _normalize_comprehensive(payload: Dict[str, Any]) -> Dict[str, Any]:
    bin_status = _section(payload, "bin_status")
    hygiene = _section(payload, "hygiene_assessment")
    environment = _section(payload, "environmental_impact")
    urgency = _section(payload, "priority_urgency")
    confidence = payload.get("confidence")
    if isinstance(confidence, dict):
        confidence = confidence.get("score")
    return {
        "raw_status": bin_status.get("status"),
        "fill": _number(bin_status.get("fill_percentage")),
        "priority": _priority(urgency.get("priority_level")),
        "urgency_hours": _number(urgency.get("urgency_hours")),
        "confidence": _number(confidence),
        "odor_risk": hygiene.get("odor_risk"),
        "pest_risk": hygiene.get("pest_risk"),
        "disease_risk": hygiene.get("public_health_threat"),
        "public_hygiene_impact": environment.get("impact_level"),
    }


def _normalize_legacy(payload: Dict[str, Any]) -> Dict[str, Any]:
    risks = _section(payload, "health_risks")
    fill = _number(payload.get("percentage"))
    if fill is None:
        fill = _number(payload.get("fill_level"))
    confidence = _number(payload.get("ai_confidence"))
    if confidence is None:
        confidence = _number(payload.get("confidence"))
    return {
        "raw_status": payload.get("status"),
        "fill": fill,
        "priority": _priority(payload.get("priority")),
        "urgency_hours": None,
        "confidence": confidence,
        "odor_risk": risks.get("odor_risk"),
        "pest_risk": risks.get("pest_risk", risks.get("mosquito_risk")),
        "disease_risk": risks.get("disease_risk"),
        "public_hygiene_impact": risks.get("public_hygiene_impact"),
    }


def normalize_analysis(payload: Dict[str, Any]) -> BinAssessment:
    """Convert either analysis response shape into a ``BinAssessment``.

    Every downstream field is populated; missing optional values take the
    documented defaults (low risk, confidence 80, empty recommendation).
    """
    shape = classify_payload(payload)
    fields = _normalize_comprehensive(payload) if shape == "comprehensive" else _normalize_legacy(payload)

    fill = fields["fill"]
    fill_level = int(round(_clamp(fill if fill is not None else DEFAULT_FILL)))
    raw_status = fields["raw_status"]
    status = STATUS_MAP.get(raw_status.strip().lower()) if isinstance(raw_status, str) else None
    if status is None:
        status = status_for_fill(fill_level)
    priority = fields["priority"] or derive_priority(status, fill_level)

    actions = _strings(payload.get("suggested_actions"))
    recommendation = payload.get("recommendation")
    if not isinstance(recommendation, str) or not recommendation:
        recommendation = actions[0] if actions else ""
    confidence = fields["confidence"]
    details = payload.get("details")

    return BinAssessment(
        status=status, fill_level=fill_level, priority=priority,
        recommendation=recommendation,
        confidence=_clamp(confidence if confidence is not None else DEFAULT_CONFIDENCE),
        odor_risk=_risk(fields["odor_risk"]), pest_risk=_risk(fields["pest_risk"]),
        disease_risk=_risk(fields["disease_risk"]),
        public_hygiene_impact=_risk(fields["public_hygiene_impact"]),
        suggested_actions=actions,
        urgency_hours=fields["urgency_hours"],
        details=details if isinstance(details, str) else None,
        source_shape=shape,
    )


def fallback_assessment(details: Optional[str] = None) -> BinAssessment:
    return BinAssessment(
        status=BinStatus.HALF_FILLED, fill_level=DEFAULT_FILL, priority=Priority.MEDIUM,
        recommendation="Unable to fully analyze the image. Please try again with a clearer image.",
        confidence=0, details=details, needs_review=True, source_shape="fallback",
    )


ANALYZE_PROMPT = (
    "You are an expert waste management and public health analyst. Assess the garbage bin "
    "in the image and respond with ONLY a JSON object of this shape:\n"
    '{"bin_status": {"status": "empty|partial|full|overflowing|hazardous", "fill_percentage": 0-100},\n'
    ' "hygiene_assessment": {"odor_risk": "low|medium|high", "pest_risk": "none|low|medium|high",\n'
    '   "public_health_threat": "low|medium|severe", "surrounding_cleanliness": "clean|litter_present|dirty"},\n'
    ' "environmental_impact": {"impact_level": "minor|concerning|dangerous"},\n'
    ' "priority_urgency": {"priority_level": "low|medium|high|critical", "urgency_hours": <number>},\n'
    ' "suggested_actions": ["..."], "confidence": {"score": 0-100},\n'
    ' "recommendation": "...", "details": "..."}\n'
    "Status guide: empty 0-25%, partial 26-50%, full 51-90%, overflowing 90%+ or spilling, "
    "hazardous when medical or chemical waste is visible."
)

VALIDATE_PROMPT = (
    "You validate photos submitted as garbage bin complaints to a municipal waste service. "
    "Decide whether the image is a genuine photo of a bin or waste area, whether it shows signs "
    "of manipulation or AI generation, and whether it is a stock image or spam. Respond with ONLY "
    'a JSON object: {"is_valid": bool, "is_garbage_bin_related": bool, "authenticity_score": 0-100, '
    '"manipulation_detected": bool, "is_stock_image": bool, "is_ai_generated": bool, '
    '"content_type": "garbage_bin|waste_area|irrelevant|spam|unclear", "flags": ["..."], '
    '"confidence": 0-100, "reason": "..."}'
)

CLEANUP_PROMPT = (
    "You verify that a garbage bin area has been properly cleaned. Look at the after-cleanup "
    "photo for remaining waste, spillage or litter and for signs of a staged photo. Respond with "
    'ONLY a JSON object: {"cleanliness_score": 0-100, "bin_status": "clean|partially_clean|still_dirty", '
    '"surrounding_cleanliness": "clean|needs_attention|dirty", "issues_found": ["..."], '
    '"confidence": 0-100, "recommendation": "approve|reject|needs_reinspection", '
    '"rejection_reason": "...", "summary": "..."}'
)


async def analyze_bin(image_base64: str) -> BinAssessment:
    try:
        reply = await vision_chat(ANALYZE_PROMPT, "Analyze this garbage bin image.", image_base64)
    except Exception as e:
        logger.error("Bin analysis call failed: %s", e)
        return fallback_assessment()
    if reply is None:
        return fallback_assessment()
    try:
        payload = extract_json(reply)
    except ValueError as e:
        logger.error("Failed to parse bin analysis: %s", e)
        return fallback_assessment(details=reply[:1000])
    return normalize_analysis(payload)

# ---------------------------------------------------------------------------
# Intake validator
# ---------------------------------------------------------------------------
def unvalidated_verdict() -> ImageVerdict:
    return ImageVerdict(
        is_valid=True, is_garbage_bin_related=True, authenticity_score=70,
        content_type="unclear", flags=["Could not fully validate"], confidence=50,
        reason="Unable to fully analyze, defaulting to accept", validated=False,
    )


def parse_image_verdict(data: Dict[str, Any]) -> ImageVerdict:
    return ImageVerdict(
        is_valid=_flag(data.get("is_valid"), True),
        is_garbage_bin_related=_flag(data.get("is_garbage_bin_related"), True),
        authenticity_score=_clamp(_number(data.get("authenticity_score"), 70)),
        manipulation_detected=_flag(data.get("manipulation_detected"), False),
        is_stock_image=_flag(data.get("is_stock_image"), False),
        is_ai_generated=_flag(data.get("is_ai_generated"), False),
        content_type=str(data.get("content_type") or "unclear"),
        flags=_strings(data.get("flags")),
        confidence=_clamp(_number(data.get("confidence"), 50)),
        reason=str(data.get("reason") or ""),
    )


async def validate_image(image_base64: str, latitude: Optional[float] = None,
                         longitude: Optional[float] = None) -> ImageVerdict:
    """Authenticity check. Fails open: the complaint pipeline never depends on it."""
    user_text = "Validate this complaint image."
    if latitude is not None and longitude is not None:
        user_text += f" Reported location: {latitude:.5f}, {longitude:.5f}."
    try:
        reply = await vision_chat(VALIDATE_PROMPT, user_text, image_base64)
        if reply is None:
            return unvalidated_verdict()
        return parse_image_verdict(extract_json(reply))
    except Exception as e:
        logger.error("Image validation failed, accepting unvalidated: %s", e)
        return unvalidated_verdict()

# ---------------------------------------------------------------------------
# Cleanup verifier
# ---------------------------------------------------------------------------
def reinspection_verdict() -> CleanupVerdict:
    return CleanupVerdict(
        cleanliness_score=50, bin_status="partially_clean",
        surrounding_cleanliness="needs_attention",
        issues_found=["Could not fully analyze image"], confidence=50,
        recommendation=CleanupRecommendation.NEEDS_REINSPECTION,
        rejection_reason="Unable to fully verify cleanup",
        summary="Manual inspection recommended",
    )


def parse_cleanup_verdict(data: Dict[str, Any]) -> CleanupVerdict:
    recommendation = data.get("recommendation")
    if recommendation not in [r.value for r in CleanupRecommendation]:
        recommendation = CleanupRecommendation.NEEDS_REINSPECTION
    return CleanupVerdict(
        cleanliness_score=_clamp(_number(data.get("cleanliness_score"), 50)),
        bin_status=str(data.get("bin_status") or "partially_clean"),
        surrounding_cleanliness=str(data.get("surrounding_cleanliness") or "needs_attention"),
        issues_found=_strings(data.get("issues_found")),
        confidence=_clamp(_number(data.get("confidence"), 50)),
        recommendation=recommendation,
        rejection_reason=str(data.get("rejection_reason") or ""),
        summary=str(data.get("summary") or ""),
    )


async def verify_cleanup(image_base64: str, complaint_id: str) -> CleanupVerdict:
    logger.info("Verifying cleanup for complaint %s", complaint_id)
    try:
        reply = await vision_chat(CLEANUP_PROMPT, "Verify this after-cleanup image.", image_base64)
        if reply is None:
            return reinspection_verdict()
        return parse_cleanup_verdict(extract_json(reply))
    except Exception as e:
        logger.error("Cleanup verification failed for %s: %s", complaint_id, e)
        return reinspection_verdict()

# ---------------------------------------------------------------------------
# Scan history
# ---------------------------------------------------------------------------
def record_scan(db, user_id: str, assessment: BinAssessment, now: datetime) -> dict:
    doc = {
        "_id": new_id(), "user_id": user_id,
        "fill_level": assessment.fill_level, "status": assessment.status.value,
        "priority": assessment.priority.value, "recommendation": assessment.recommendation,
        "ai_confidence": assessment.confidence, "needs_review": assessment.needs_review,
        "odor_risk": assessment.odor_risk.value, "pest_risk": assessment.pest_risk.value,
        "disease_risk": assessment.disease_risk.value,
        "public_hygiene_impact": assessment.public_hygiene_impact.value,
        "created_at": now,
    }
    db.scan_history.insert_one(doc)
    return doc


def list_scans(db, user_id: str, limit: int = 50) -> List[dict]:
    return list(db.scan_history.find({"user_id": user_id}).sort("created_at", DESCENDING).limit(limit))
