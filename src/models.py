from typing import TypedDict, Optional, Literal
from pydantic import BaseModel, Field


# Shared constants: imported by nodes/, src/triage.py and main.py
CATEGORIES = ["Bugs", "FeatureRequests", "Billing"]
DEFAULT_CATEGORY = "Bugs"
OPERATIONAL_CATEGORIES = ("Bugs", "Billing")

PRIORITY_TIERS = ["CRITICAL", "HIGH", "MEDIUM", "LOW"]  # most to least urgent
NEUTRAL_SENTIMENT = 0.5

RUN_STATUSES = ["pending", "categorizing", "scoring", "persisting", "complete", "failed"]
TERMINAL_STATUSES = ("complete", "failed")

# Graph node name -> run status while that node is executing
STEP_STATUS = {
    "categorize": "categorizing",
    "score": "scoring",
    "persist": "persisting",
}
STEPS = list(STEP_STATUS)

Category = Literal["Bugs", "FeatureRequests", "Billing"]
PriorityTier = Literal["CRITICAL", "HIGH", "MEDIUM", "LOW"]
RunStatus = Literal["pending", "categorizing", "scoring", "persisting", "complete", "failed"]


class AnalysisState(TypedDict):
    # Input
    run_id: str
    text: str

    # Step results (cached in the checkpoint once a step succeeds)
    category: Optional[str]       # from categorize node
    sentiment: Optional[float]    # from score node
    record_id: Optional[int]      # from persist node


class FeedbackSubmission(BaseModel):
    """Inbound body of POST /api/feedback."""
    text: str = Field(min_length=1, strict=True, description="Free-text user feedback")


class FeedbackRecord(BaseModel):
    """Persisted, immutable result of a completed analysis run."""
    id: int
    raw_text: str
    category: Category
    sentiment: float = Field(ge=0.0, le=1.0)
    created_at: str


class AnalysisRun(BaseModel):
    """Bookkeeping for one durable execution of the pipeline."""
    run_id: str
    input_text: str
    status: RunStatus = "pending"

    # Only populated together with record_id, when the run completes
    category: Optional[Category] = None
    sentiment: Optional[float] = None
    record_id: Optional[int] = None

    attempts: dict[str, int] = Field(default_factory=lambda: {step: 0 for step in STEPS})

    # Failure details (status == "failed")
    failed_step: Optional[str] = None
    error: Optional[str] = None

    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TriageResult(BaseModel):
    """Derived urgency of one record. Never written back to the store."""
    tier: PriorityTier
    derivation: str     # "(category: Bugs, sentiment: 0.10) = CRITICAL"
    urgent: bool        # sentiment below the summary threshold, any category
    operational: bool   # category is Bugs or Billing


class Summary(BaseModel):
    """Counters for the dashboard summary tiles."""
    total: int
    critical_count: int
    bug_count: int


class DashboardRow(BaseModel):
    record: FeedbackRecord
    triage: TriageResult


class DashboardView(BaseModel):
    summary: Summary
    rows: list[DashboardRow]
    order: Literal["recent", "priority"] = "recent"
