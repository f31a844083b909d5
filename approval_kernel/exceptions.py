"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval decisions are compliance evidence. Callers (the API surface, the
SLA monitor, operational tooling) must be able to react to a failure by its
TYPE, never by parsing a message string:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way:
    try:
        service.approve(instance_id, ...)
    except Exception as e:
        if "not allowed" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        service.approve(instance_id, ...)
    except InvalidStateTransitionError as e:
        api_response(code=e.code, status=e.current_status, action=e.action)
    except OptimisticLockError:
        retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- StateError
    |   +-- InvalidStateTransitionError
    |
    +-- ValidationError
    |
    +-- AuthorityError
    |   +-- NoEligibleApproverError
    |
    +-- OperationNotAllowedError
    |   +-- EscalationChainExceededError
    |
    +-- ConfigurationError
    |
    +-- NotFoundError
    |   +-- ApprovalNotFoundError
    |   +-- WorkflowNotFoundError
    |
    +-- DuplicateApprovalRequestError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
State           | INVALID_STATE_TRANSITION    | Action not legal from current status
Validation      | VALIDATION_ERROR            | Missing mandatory input (reject reason)
Authority       | NO_ELIGIBLE_APPROVER        | No primary or delegate pool at a level
Escalation      | OPERATION_NOT_ALLOWED       | No next level / disallowed by flags
                | ESCALATION_CHAIN_EXCEEDED   | Chain too long or level not increasing
Configuration   | CONFIGURATION_ERROR         | Template activated without steps/matrix
Not found       | APPROVAL_NOT_FOUND          | Instance ID doesn't exist
                | WORKFLOW_NOT_FOUND          | Template ID/version doesn't exist
Duplicate       | DUPLICATE_APPROVAL_REQUEST  | Open instance already exists for validation
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Version check-and-set lost the race
Immutability    | IMMUTABILITY_VIOLATION      | History/comment UPDATE or DELETE

===============================================================================
HANDLING PATTERNS
===============================================================================

1. State-machine errors are local and recoverable: the caller retries with
   correct input or re-reads the instance.
2. ConcurrencyError means another actor won the race. Re-read and decide;
   the SLA monitor simply skips the instance.
3. ConfigurationError is reported to the administrator, never to the end
   user resolving an approval.
"""

from __future__ import annotations


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# State-machine exceptions


class StateError(ApprovalKernelError):
    """Base exception for approval lifecycle errors."""

    code: str = "STATE_ERROR"


class InvalidStateTransitionError(StateError):
    """The requested action is not legal from the instance's current status."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, instance_id: str, current_status: str, action: str):
        self.instance_id = instance_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} approval {instance_id}: status is {current_status}"
        )


class ValidationError(ApprovalKernelError):
    """Caller input is missing or malformed (e.g. blank rejection reason)."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


# Authority exceptions


class AuthorityError(ApprovalKernelError):
    """Base exception for approval-matrix authority errors."""

    code: str = "AUTHORITY_ERROR"


class NoEligibleApproverError(AuthorityError):
    """Matrix resolution found neither a primary nor a delegate pool."""

    code: str = "NO_ELIGIBLE_APPROVER"

    def __init__(self, level: str, reason: str):
        self.level = level
        self.reason = reason
        super().__init__(f"No eligible approver at level {level}: {reason}")


# Escalation exceptions


class OperationNotAllowedError(ApprovalKernelError):
    """The operation is disallowed by configuration (template or matrix flags)."""

    code: str = "OPERATION_NOT_ALLOWED"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Operation '{operation}' not allowed: {reason}")


class EscalationChainExceededError(OperationNotAllowedError):
    """Escalation would exceed the chain limit or not raise the level."""

    code: str = "ESCALATION_CHAIN_EXCEEDED"

    def __init__(self, instance_id: str, depth: int, reason: str):
        self.instance_id = instance_id
        self.depth = depth
        super().__init__("escalate", reason)


# Configuration exceptions


class ConfigurationError(ApprovalKernelError):
    """A workflow template is not in a usable shape.

    Raised on activation, and by escalation when an older policy snapshot
    cannot produce a valid successor.
    """

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, workflow_code: str, reason: str):
        self.workflow_code = workflow_code
        self.reason = reason
        super().__init__(f"Workflow {workflow_code} misconfigured: {reason}")


# Lookup exceptions


class NotFoundError(ApprovalKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ApprovalNotFoundError(NotFoundError):
    """Approval instance with given ID was not found."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Approval instance not found: {instance_id}")


class WorkflowNotFoundError(NotFoundError):
    """Workflow template with given ID (and version) was not found."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str, version: int | None = None):
        self.workflow_id = workflow_id
        self.version = version
        suffix = f" v{version}" if version is not None else ""
        super().__init__(f"Workflow template not found: {workflow_id}{suffix}")


class DuplicateApprovalRequestError(ApprovalKernelError):
    """An open approval already exists for the validation."""

    code: str = "DUPLICATE_APPROVAL_REQUEST"

    def __init__(self, validation_id: str, existing_instance_id: str):
        self.validation_id = validation_id
        self.existing_instance_id = existing_instance_id
        super().__init__(
            f"Validation {validation_id} already has open approval "
            f"{existing_instance_id}"
        )


# Concurrency exceptions


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability exceptions


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Approval history entries and comments are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
