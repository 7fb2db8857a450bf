from .errors import (
    FlowNotFoundError,
    InvalidRequestError,
    MirrorError,
    NotFoundError,
    ProductNotFoundError,
    SessionNotFoundError,
    StoreError,
)
from .mirror import (
    AuthState,
    Capture,
    CapturePlacement,
    CaptureResult,
    Connection,
    CrawlSummary,
    DiffResult,
    DiffRunSummary,
    Flow,
    FlowStatus,
    FlowTemplate,
    FlowView,
    Product,
    RecordingSession,
    Screen,
    SessionStatus,
    SessionStatusView,
)

__all__ = [
    "AuthState",
    "Capture",
    "CapturePlacement",
    "CaptureResult",
    "Connection",
    "CrawlSummary",
    "DiffResult",
    "DiffRunSummary",
    "Flow",
    "FlowStatus",
    "FlowTemplate",
    "FlowView",
    "Product",
    "RecordingSession",
    "Screen",
    "SessionStatus",
    "SessionStatusView",
    "MirrorError",
    "StoreError",
    "NotFoundError",
    "ProductNotFoundError",
    "SessionNotFoundError",
    "FlowNotFoundError",
    "InvalidRequestError",
]
