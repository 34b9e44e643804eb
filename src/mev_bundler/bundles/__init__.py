"""
Bundle construction.

Bundle models with their lifecycle state machine, and the builder that turns
an optimized execution order into a validated bundle.
"""
from .models import (
    ALLOWED_TRANSITIONS,
    Bundle,
    BundleMetrics,
    BundleStatus,
    BundleValidationReport,
    ExecutionPlan,
    ExecutionStep,
    RejectionReason
)
from .builder import (
    BuilderConfig,
    BundleBuilder,
    ROLLBACK_STRATEGIES
)

__all__ = [
    # Models
    "ALLOWED_TRANSITIONS",
    "Bundle",
    "BundleMetrics",
    "BundleStatus",
    "BundleValidationReport",
    "ExecutionPlan",
    "ExecutionStep",
    "RejectionReason",

    # Builder
    "BuilderConfig",
    "BundleBuilder",
    "ROLLBACK_STRATEGIES"
]
