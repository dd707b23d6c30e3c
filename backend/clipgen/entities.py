"""
Domain records shared by the ledger, the job orchestrator and the stores.
Plain dataclasses so they can be held in memory or mapped to ORM rows.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional


BILLING_CYCLE_DAYS = 30


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.utcnow()


def new_id() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


class JobStatus(str, enum.Enum):
    """Generation job status, in pipeline order."""
    QUEUED = "queued"
    UPLOADING = "uploading"
    GENERATING = "generating"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Rank used to reject out-of-order status updates
JOB_STATUS_ORDER = {
    JobStatus.QUEUED: 0,
    JobStatus.UPLOADING: 1,
    JobStatus.GENERATING: 2,
    JobStatus.DOWNLOADING: 3,
    JobStatus.COMPLETED: 4,
    JobStatus.FAILED: 4,
}


class GenerationKind(str, enum.Enum):
    """What the provider is asked to do with the source asset."""
    IMAGE_TO_VIDEO = "image-to-video"
    VIDEO_TO_VIDEO = "video-to-video"
    MOTION = "motion"


class CreditSource(str, enum.Enum):
    """Credit pool charged or credited."""
    SUBSCRIPTION = "subscription"
    TOPUP = "topup"


class TransactionType(str, enum.Enum):
    """Ledger entry type."""
    GENERATION = "generation"
    REFUND = "refund"
    TOPUP_PURCHASE = "topup_purchase"
    SUBSCRIPTION_REFRESH = "subscription_refresh"
    AUTO_BUY = "auto_buy"
    PLAN_CHANGE = "plan_change"


@dataclass
class CreditAccount:
    """Per-user two-pool credit balance."""
    account_id: str
    plan: str = "free"
    subscription_credits: int = 0
    topup_credits: int = 0
    billing_cycle_start: datetime = field(default_factory=utcnow)
    billing_cycle_end: datetime = field(
        default_factory=lambda: utcnow() + timedelta(days=BILLING_CYCLE_DAYS)
    )
    auto_buy_enabled: bool = False
    total_used_this_cycle: int = 0
    total_used_all_time: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0  # Bumped on every save; 0 means never stored

    @property
    def total(self) -> int:
        return self.subscription_credits + self.topup_credits


@dataclass
class CreditTransaction:
    """Append-only ledger entry. Never mutated after insert."""
    account_id: str
    type: TransactionType
    amount: int  # Signed: negative for charges
    source: CreditSource
    balance_after: int
    job_id: Optional[str] = None
    model_id: Optional[str] = None
    preset_id: Optional[str] = None
    description: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class DeductionResult:
    """Outcome of CreditLedger.deduct. A failed deduction is not an exception."""
    success: bool
    source: Optional[CreditSource] = None
    subscription_part: int = 0
    topup_part: int = 0
    auto_bought: bool = False
    balance_after: int = 0
    credits_available: int = 0


@dataclass
class CreditBalance:
    """Read-only balance view returned to callers."""
    subscription_credits: int
    topup_credits: int
    total: int
    plan: str
    auto_buy_enabled: bool
    billing_cycle_start: Optional[datetime]
    billing_cycle_end: Optional[datetime]
    plan_credits_total: int
    total_used_this_cycle: int
    total_used_all_time: int


@dataclass
class GenerationCost:
    """Estimated provider spend of one completed generation."""
    job_id: str
    model: str
    provider: str
    duration_seconds: int
    cost_usd: float
    resolution: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Job:
    """One generation request's lifecycle record."""
    account_id: str
    source_ref: str
    prompt: str
    provider: str
    model: str
    kind: GenerationKind
    duration: int
    source_path: Optional[str] = None
    in_point: Optional[float] = None
    out_point: Optional[float] = None
    resolution: Optional[str] = None
    aspect_ratio: Optional[str] = None
    preset_id: Optional[str] = None
    template_id: Optional[str] = None
    template_props: Dict[str, Any] = field(default_factory=dict)

    # Run state
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    result_location: Optional[str] = None
    error_message: Optional[str] = None
    cost_estimate_usd: Optional[float] = None

    # Billing bookkeeping
    credits_charged: int = 0
    credit_source: Optional[CreditSource] = None
    refunded: bool = False

    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
