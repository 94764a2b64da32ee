"""
Pydantic models for citizen sanitation reports.

A report carries three disjoint attribute groups:
- submission fields, written once by the citizen submission path
- enrichment fields (ai_*), written only by the enrichment pipeline
- resolution fields, written by the staff workflow and citizen feedback
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict
from enum import Enum


class IssueCategory(str, Enum):
    """Closed set of categories the vision classifier may return."""
    GARBAGE_DUMP = "garbage_dump"
    DUSTBIN_NOT_CLEANED = "dustbin_not_cleaned"
    BURNING_GARBAGE = "burning_garbage"
    OPEN_MANHOLE = "open_manhole"
    STAGNANT_WATER = "stagnant_water"
    DEAD_ANIMAL = "dead_animal"
    SEWAGE_OVERFLOW = "sewage_overflow"
    SWEEPING_NOT_DONE = "sweeping_not_done"
    OTHER = "other"

    @classmethod
    def normalize(cls, value) -> "IssueCategory":
        """Map any value onto the enumeration; unknown values become OTHER."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PipelineStatus(str, Enum):
    """
    Enrichment state machine.

    pending → processing → completed | failed
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ResolutionStatus(str, Enum):
    """Staff workflow status (owned by the admin dashboard, not the pipeline)."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    DUPLICATE = "duplicate"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Submission-time priority per category
CATEGORY_PRIORITY: Dict[IssueCategory, Priority] = {
    IssueCategory.GARBAGE_DUMP: Priority.MEDIUM,
    IssueCategory.DUSTBIN_NOT_CLEANED: Priority.MEDIUM,
    IssueCategory.BURNING_GARBAGE: Priority.CRITICAL,
    IssueCategory.OPEN_MANHOLE: Priority.HIGH,
    IssueCategory.STAGNANT_WATER: Priority.HIGH,
    IssueCategory.DEAD_ANIMAL: Priority.CRITICAL,
    IssueCategory.SEWAGE_OVERFLOW: Priority.CRITICAL,
    IssueCategory.SWEEPING_NOT_DONE: Priority.LOW,
    IssueCategory.OTHER: Priority.MEDIUM,
}


def priority_for(category: Optional[IssueCategory]) -> Priority:
    if category is None:
        return Priority.MEDIUM
    return CATEGORY_PRIORITY[IssueCategory.normalize(category)]


class ClassificationResult(BaseModel):
    """Normalized output of the vision classifier."""
    category: IssueCategory
    confidence: float = Field(..., ge=0.0, le=1.0)
    description: str = ""

    class Config:
        frozen = True


class EnrichmentResult(BaseModel):
    """
    Derived classification/scoring/routing for one report.

    Carries no timestamp so that identical inputs produce identical results;
    ai_enriched_at is stamped by the store at write time.
    """
    severity_score: int = Field(..., ge=1, le=5)
    risk_level: RiskLevel
    health_hazard: bool
    environment_hazard: bool
    ward: str
    department: str

    class Config:
        frozen = True

    def to_store_fields(self) -> Dict:
        """Persisted column names for the enrichment attribute group."""
        return {
            "ai_risk_level": self.risk_level.value,
            "ai_health_flag": self.health_hazard,
            "ai_environment_flag": self.environment_hazard,
            "ai_severity_score": self.severity_score,
            "ai_ward": self.ward,
            "ai_department": self.department,
        }


ENRICHMENT_FIELDS = (
    "ai_risk_level",
    "ai_health_flag",
    "ai_environment_flag",
    "ai_severity_score",
    "ai_ward",
    "ai_department",
    "ai_enriched_at",
)


class Report(BaseModel):
    """Persisted report record as read through the store gateway."""
    id: str = Field(..., description="Opaque report identifier")

    # Submission attributes
    category: Optional[IssueCategory] = None
    ai_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    ai_description: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = None
    before_image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    user_id: Optional[str] = None

    # Enrichment attributes (pipeline-owned)
    ai_risk_level: Optional[RiskLevel] = None
    ai_health_flag: Optional[bool] = None
    ai_environment_flag: Optional[bool] = None
    ai_severity_score: Optional[int] = Field(None, ge=1, le=5)
    ai_ward: Optional[str] = None
    ai_department: Optional[str] = None
    ai_enriched_at: Optional[datetime] = None
    ai_pipeline_status: PipelineStatus = PipelineStatus.PENDING
    ai_pipeline_updated_at: Optional[datetime] = None

    # Resolution attributes (staff workflow / citizen feedback)
    status: ResolutionStatus = ResolutionStatus.PENDING
    priority: Optional[Priority] = None
    assigned_at: Optional[datetime] = None
    in_progress_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    after_image_url: Optional[str] = None
    citizen_verified: Optional[bool] = None
    citizen_feedback: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        extra = "ignore"

    def has_enrichment(self) -> bool:
        return all(getattr(self, field) is not None for field in ENRICHMENT_FIELDS)

    def enrichment_result(self) -> Optional[EnrichmentResult]:
        if not self.has_enrichment():
            return None
        return EnrichmentResult(
            severity_score=self.ai_severity_score,
            risk_level=self.ai_risk_level,
            health_hazard=self.ai_health_flag,
            environment_hazard=self.ai_environment_flag,
            ward=self.ai_ward,
            department=self.ai_department,
        )


class ReportCreate(BaseModel):
    """
    Incoming citizen submission.
    category/ai_confidence come from the /reports/analyze step on the client.
    """
    category: Optional[IssueCategory] = None
    ai_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    ai_description: Optional[str] = Field(None, max_length=1000)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)
    before_image_url: str = Field(..., min_length=1)
    user_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "category": "burning_garbage",
                "ai_confidence": 0.9,
                "ai_description": "Smoke rising from a pile of burning waste",
                "latitude": 18.53,
                "longitude": 73.85,
                "address": "Shivajinagar, Pune",
                "before_image_url": "https://example.com/before.jpg",
            }
        }
        extra = "ignore"


class AnalyzeRequest(BaseModel):
    image_base64: str = Field("", description="Raw base64 or data URI of the photo")


class FeedbackRequest(BaseModel):
    """Citizen confirms or contests a resolution."""
    verified: bool
    feedback: Optional[str] = Field(None, max_length=1000)


class TriggerRequest(BaseModel):
    """Enrichment trigger payload. classification is optional and, if present, skips the classifier."""
    report_id: str = Field(..., min_length=1)
    classification: Optional[ClassificationResult] = None


class StatusUpdateRequest(BaseModel):
    """Staff resolution workflow change."""
    status: ResolutionStatus
    after_image_url: Optional[str] = None
    note: Optional[str] = Field(None, max_length=500)


class PipelineStatusResponse(BaseModel):
    report_id: str
    pipeline_status: PipelineStatus
    enriched_at: Optional[datetime] = None
    enrichment: Optional[EnrichmentResult] = None


class ReportListResponse(BaseModel):
    count: int
    reports: List[Report] = Field(default_factory=list)
