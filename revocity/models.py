# Enums and Pydantic models shared by the core logic and the HTTP API

from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class BinStatus(str, Enum):
    EMPTY = "empty"
    HALF_FILLED = "half-filled"
    OVERFLOWING = "overflowing"

class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class AreaRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

class ComplaintStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    ESCALATED = "escalated"
    RESOLVED = "resolved"

class Department(str, Enum):
    SANITATION = "sanitation"
    SANITATION_SUPERVISOR = "sanitation_supervisor"
    HEALTH_DEPARTMENT = "health_department"
    MUNICIPAL_COMMISSIONER = "municipal_commissioner"

class CleanupRecommendation(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    NEEDS_REINSPECTION = "needs_reinspection"

class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"

# ---------------------------------------------------------------------------
# AI results (canonical shapes; raw gateway payloads never leave analysis.py)
# ---------------------------------------------------------------------------
class BinAssessment(BaseModel):
    status: BinStatus
    fill_level: int = Field(..., ge=0, le=100)
    priority: Priority
    recommendation: str = ""
    confidence: float = Field(80, ge=0, le=100)
    odor_risk: RiskLevel = RiskLevel.LOW
    pest_risk: RiskLevel = RiskLevel.LOW
    disease_risk: RiskLevel = RiskLevel.LOW
    public_hygiene_impact: RiskLevel = RiskLevel.LOW
    suggested_actions: List[str] = Field(default_factory=list)
    urgency_hours: Optional[float] = None
    details: Optional[str] = None
    needs_review: bool = False
    source_shape: str = "comprehensive"

class ImageVerdict(BaseModel):
    is_valid: bool = True
    is_garbage_bin_related: bool = True
    authenticity_score: float = Field(70, ge=0, le=100)
    manipulation_detected: bool = False
    is_stock_image: bool = False
    is_ai_generated: bool = False
    content_type: str = "unclear"
    flags: List[str] = Field(default_factory=list)
    confidence: float = Field(50, ge=0, le=100)
    reason: str = ""
    validated: bool = True

    @property
    def blocks_submission(self) -> bool:
        return not self.is_valid or not self.is_garbage_bin_related

    @property
    def authenticity_warning(self) -> bool:
        return self.authenticity_score < 70

class CleanupVerdict(BaseModel):
    cleanliness_score: float = Field(50, ge=0, le=100)
    bin_status: str = "partially_clean"
    surrounding_cleanliness: str = "needs_attention"
    issues_found: List[str] = Field(default_factory=list)
    confidence: float = Field(50, ge=0, le=100)
    recommendation: CleanupRecommendation = CleanupRecommendation.NEEDS_REINSPECTION
    rejection_reason: str = ""
    summary: str = ""

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
class ImageRequest(BaseModel):
    image_base64: str = Field(..., min_length=1, max_length=15_000_000)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

class CleanupRequest(BaseModel):
    image_base64: str = Field(..., min_length=1, max_length=15_000_000)
    image_url: Optional[str] = Field(None, max_length=2000)

class ComplaintCreate(BaseModel):
    # Coordinates are checked by the complaint store so a missing value gets a
    # clear rejection reason instead of a schema error.
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)
    area_name: Optional[str] = Field(None, max_length=200)
    image_url: Optional[str] = Field(None, max_length=2000)
    fill_level: int = Field(0, ge=0, le=100)
    priority: Optional[Priority] = None
    recommendation: str = Field("", max_length=2000)
    suggested_actions: List[str] = Field(default_factory=list)
    ai_confidence: float = Field(0, ge=0, le=100)
    odor_risk: RiskLevel = RiskLevel.LOW
    pest_risk: RiskLevel = RiskLevel.LOW
    disease_risk: RiskLevel = RiskLevel.LOW
    public_hygiene_impact: RiskLevel = RiskLevel.LOW
    needs_review: bool = False
    reporter_email: Optional[str] = Field(None, max_length=320)
    reporter_notes: Optional[str] = Field(None, max_length=2000)

class ComplaintUpdate(BaseModel):
    complaint_status: Optional[ComplaintStatus] = None
    assigned_to: Optional[str] = Field(None, max_length=200)
    admin_notes: Optional[str] = Field(None, max_length=5000)
    cleanup_image_url: Optional[str] = Field(None, max_length=2000)
    cleanup_verified: Optional[bool] = None

class UserSync(BaseModel):
    email: Optional[str] = Field(None, max_length=320)
    display_name: Optional[str] = Field(None, max_length=200)

class RoleAssignment(BaseModel):
    role: UserRole

# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class ComplaintResponse(BaseModel):
    id: str
    complaint_code: str
    reporter_id: str
    reporter_email: Optional[str] = None
    reporter_notes: Optional[str] = None
    latitude: float
    longitude: float
    address: Optional[str] = None
    area_name: Optional[str] = None
    image_url: Optional[str] = None
    fill_level: int
    status: BinStatus
    priority: Priority
    recommendation: str = ""
    suggested_actions: List[str] = Field(default_factory=list)
    ai_confidence: float = 0
    odor_risk: RiskLevel
    pest_risk: RiskLevel
    disease_risk: RiskLevel
    public_hygiene_impact: RiskLevel
    needs_review: bool = False
    complaint_status: ComplaintStatus
    escalation_level: int = Field(0, ge=0, le=3)
    escalated_at: Optional[datetime] = None
    assigned_department: Department
    is_high_risk_area: bool = False
    overflow_frequency: int = 0
    assigned_to: Optional[str] = None
    admin_notes: Optional[str] = None
    cleanup_image_url: Optional[str] = None
    cleanup_verified: bool = False
    cleanup_verification: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None

class ComplaintTrackResponse(BaseModel):
    complaint_code: str
    status: BinStatus
    priority: Priority
    complaint_status: ComplaintStatus
    escalation_level: int
    assigned_department: Department
    area_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None

class SubmitResponse(BaseModel):
    complaint: ComplaintResponse
    points_awarded: int
    badges_earned: List[str] = Field(default_factory=list)

class ComplaintStats(BaseModel):
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    escalated: int = 0
    resolved: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    area_stats: Dict[str, int] = Field(default_factory=dict)

class AreaStatisticResponse(BaseModel):
    area_name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    total_complaints: int
    overflow_count: int
    avg_fill_level: float
    risk_level: AreaRisk
    last_complaint_at: Optional[datetime] = None
    predicted_next_overflow: Optional[datetime] = None

class UserRewardResponse(BaseModel):
    user_id: str
    points: int = 0
    total_reports: int = 0
    valid_critical_reports: int = 0
    badges: List[str] = Field(default_factory=list)
    trust_score: Optional[float] = None
    flagged_reports: int = 0
    verified_contributor: bool = False

class RewardResult(BaseModel):
    points_awarded: int
    badges_earned: List[str] = Field(default_factory=list)
    reward: UserRewardResponse

class EscalationReport(BaseModel):
    checked: int = 0
    escalated: int = 0
    skipped: int = 0
    failed: int = 0
    escalated_complaints: List[str] = Field(default_factory=list)

class AnalyzeResponse(BaseModel):
    assessment: BinAssessment
    validation: ImageVerdict
    authenticity_warning: bool = False

class ValidateResponse(BaseModel):
    validation: ImageVerdict
    blocks_submission: bool
    authenticity_warning: bool

class ScanRecordResponse(BaseModel):
    id: str
    fill_level: int
    status: BinStatus
    priority: Priority
    recommendation: str = ""
    ai_confidence: float = 0
    needs_review: bool = False
    created_at: datetime

class UserWithRole(BaseModel):
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    last_login: Optional[datetime] = None
    role: Optional[UserRole] = None

class CleanupResult(BaseModel):
    verification: CleanupVerdict
    complaint: ComplaintResponse

class SideEffectRetryReport(BaseModel):
    checked: int = 0
    applied: int = 0
    failed: int = 0
