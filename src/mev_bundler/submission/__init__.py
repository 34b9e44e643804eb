"""Bundle submission endpoints."""
from .simulator import (
    BundleSubmitter,
    SimulatedBlockEngine,
    SimulatorConfig,
    SubmissionHandle,
    SubmissionStatus
)

__all__ = [
    "BundleSubmitter",
    "SimulatedBlockEngine",
    "SimulatorConfig",
    "SubmissionHandle",
    "SubmissionStatus"
]
