"""Pydantic models for the mirrored screen graph of a product."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class AuthState(str, Enum):
    """How the crawler reaches a product's screens."""

    PUBLIC = "public"
    AUTHENTICATED = "authenticated"


class FlowStatus(str, Enum):
    """Lifecycle status of a Flow."""

    PENDING = "pending"
    RECORDING = "recording"
    COMPLETED = "completed"


class SessionStatus(str, Enum):
    """Lifecycle status of a RecordingSession."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Product(BaseModel):
    """A product registered for mirroring. Read only from this engine's side."""

    id: str
    name: str
    staging_url: str = Field(..., description="Base URL the browser starts from")
    auth_state: AuthState = AuthState.PUBLIC
    login_email: Optional[str] = None
    login_password: Optional[str] = None

    class Config:
        use_enum_values = True

    @property
    def base_url(self) -> str:
        return self.staging_url.rstrip("/")


class Screen(BaseModel):
    """One discovered page instance (stored in the ``routes`` table)."""

    id: Optional[str] = None
    product_id: str
    path: str
    name: str
    flow_name: Optional[str] = Field(default=None, description="Classification label")
    flow_id: Optional[str] = None
    session_id: Optional[str] = None
    step_number: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Capture(BaseModel):
    """One screenshot of a Screen at a point in time."""

    id: Optional[str] = None
    route_id: str
    screenshot_url: str
    captured_at: datetime = Field(default_factory=datetime.utcnow)
    has_changes: Optional[bool] = None
    change_summary: Optional[str] = None


class Connection(BaseModel):
    """Directed edge: a link on the source Screen leads to the destination Screen."""

    id: Optional[str] = None
    product_id: str
    source_route_id: str
    destination_route_id: str

    @property
    def key(self) -> tuple:
        return (self.source_route_id, self.destination_route_id)


class Flow(BaseModel):
    """Named, product-scoped task grouping of Screens."""

    id: Optional[str] = None
    product_id: str
    name: str
    status: FlowStatus = FlowStatus.PENDING
    step_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True


class FlowTemplate(BaseModel):
    """Default flow name seeded into a product when recording starts."""

    name: str
    sort_order: int = 0


class RecordingSession(BaseModel):
    """One interactive recording run."""

    id: Optional[str] = None
    product_id: str
    status: SessionStatus = SessionStatus.IN_PROGRESS
    started_at: datetime = Field(default_factory=datetime.utcnow)
    ended_at: Optional[datetime] = None

    class Config:
        use_enum_values = True


# ── Results returned to callers ───────────────────────────────────────────────


class CapturePlacement(BaseModel):
    """Where a recording-mode capture belongs."""

    session_id: str
    flow_id: str
    flow_name: Optional[str] = None
    product_id: str
    step_number: int = Field(..., ge=1)


class CaptureResult(BaseModel):
    route_id: str
    screenshot_url: str
    path: str
    title: str = ""


class CrawlSummary(BaseModel):
    """Outcome of one crawl run."""

    product_id: str
    screens_discovered: int = 0
    screens_skipped: int = 0
    failed_paths: List[str] = Field(default_factory=list)
    links_recorded: int = 0
    connections_saved: int = 0


class FlowView(BaseModel):
    id: str
    name: str
    status: FlowStatus
    screen_count: int = 0

    class Config:
        use_enum_values = True


class SessionStatusView(BaseModel):
    """Status of a recording session as reported to callers."""

    session_id: str
    status: SessionStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    browser_connected: bool = False
    active_flow: Optional[FlowView] = None
    flows: List[FlowView] = Field(default_factory=list)
    total_screens: int = 0

    class Config:
        use_enum_values = True


class DiffResult(BaseModel):
    """Pixel comparison of the two latest Captures of a Screen."""

    route_id: str
    capture_id: str
    diff_pixels: int
    total_pixels: int
    diff_percentage: float
    summary: str
    has_changes: bool


class DiffRunSummary(BaseModel):
    product_id: str
    checked: int = 0
    changed: int = 0
    skipped: int = 0

    @property
    def unchanged(self) -> int:
        return self.checked - self.changed
