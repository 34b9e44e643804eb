"""Exceptions raised by the bundle construction engine."""
from typing import List, Optional, Sequence


class BundlerError(Exception):
    """Base exception for bundle engine errors."""
    pass


class OpportunityValidationError(BundlerError):
    """Raised when an inbound opportunity cannot be accepted into the pool."""

    def __init__(self, message: str, opportunity_id: Optional[str] = None):
        """
        Initialize validation error.

        Args:
            message: Error message
            opportunity_id: Identifier of the rejected opportunity, if known
        """
        self.opportunity_id = opportunity_id
        super().__init__(message)

    def __str__(self) -> str:
        """String representation of the error."""
        base_msg = super().__str__()
        if self.opportunity_id:
            return f"[{self.opportunity_id}] {base_msg}"
        return base_msg


class MissingFieldError(OpportunityValidationError):
    """A required opportunity field is absent."""

    def __init__(self, fields: Sequence[str], opportunity_id: Optional[str] = None):
        self.fields: List[str] = list(fields)
        super().__init__(
            f"Missing required field(s): {', '.join(self.fields)}",
            opportunity_id=opportunity_id
        )


class InvalidOpportunityError(OpportunityValidationError):
    """Opportunity fields are present but malformed or out of range."""
    pass


class DependencyCycleError(BundlerError):
    """The dependency graph of a candidate group contains a cycle."""

    def __init__(self, cycle: Sequence[int]):
        self.cycle: List[int] = list(cycle)
        path = " -> ".join(str(node) for node in self.cycle)
        super().__init__(f"Dependency cycle detected: {path}")


class CategoryModelError(BundlerError):
    """A single risk category model failed to produce a score."""

    def __init__(self, category: str, message: str):
        self.category = category
        super().__init__(f"{category} risk model failed: {message}")


class BundleStateError(BundlerError):
    """Illegal bundle status transition or mutation of a submitted bundle."""
    pass


class SubmissionError(BundlerError):
    """Errors raised by the bundle submission endpoint."""
    pass
