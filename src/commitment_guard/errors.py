"""
Error taxonomy for the execution guard.

Every rejection a cycle can produce is a CommitmentGuardError. The driver
never terminates on one of these; it logs and moves on to the next cycle.

    ValidationError             policy violation, do not retry the same input
    PreSubmitValidationError    retryable, raised before anything is submitted
        QuoteUnavailableError   every quoter candidate failed
        InsufficientBalanceError
    LockEngagedError            single-fire lock refuses a new proposal
    MalformedTriggerInputError  one trigger is skipped, the cycle continues
    ReconciliationIOError       log scan / receipt fetch failed, guard unchanged
    TriggerInferenceError       inference collaborator failed
"""
from __future__ import annotations

from typing import Optional, Sequence


class CommitmentGuardError(Exception):
    """Base class for all guard errors."""

    retryable: bool = False


class ValidationError(CommitmentGuardError):
    """Raised when a proposed action violates the security policy."""

    retryable = False


class PreSubmitValidationError(CommitmentGuardError):
    """
    Base class for errors that occur BEFORE anything is submitted.

    These are safe to retry on a later cycle.
    """

    retryable = True


class QuoteUnavailableError(PreSubmitValidationError):
    """Raised when no quoter candidate produced a usable quote."""

    def __init__(self, message: str, failures: Optional[Sequence[str]] = None):
        self.failures = list(failures or [])
        super().__init__(message)


class InsufficientBalanceError(PreSubmitValidationError):
    """Raised when the commitment account cannot fund the swap."""

    def __init__(self, token: str, required: int, available: int):
        self.token = token
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance of {token}: required {required}, available {available}"
        )


class LockEngagedError(CommitmentGuardError):
    """Raised when the single-fire lock is engaged or closed."""

    retryable = False

    def __init__(self, state: str, proposal_ref: Optional[str] = None):
        self.state = state
        self.proposal_ref = proposal_ref
        detail = f" (proposal {proposal_ref})" if proposal_ref else ""
        super().__init__(f"Single-fire lock engaged: state={state}{detail}")


class MalformedTriggerInputError(CommitmentGuardError):
    """Raised when a trigger specification fails validation."""

    def __init__(self, message: str, trigger_id: Optional[str] = None):
        self.trigger_id = trigger_id
        super().__init__(message)


class ReconciliationIOError(CommitmentGuardError):
    """Raised when a ledger log scan or receipt fetch fails."""

    retryable = True


class TriggerInferenceError(CommitmentGuardError):
    """Raised when the trigger inference collaborator fails."""

    retryable = True
