"""
Typed Exception Hierarchy for the Progress Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The engine is consumed by controllers, reporting jobs and maintenance
scripts that each map failures to their own surface (HTTP status, exit
code, log alert).  Matching on message text is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (ids, offending values)

Example:
    try:
        engine.set_stage_status(instance_id, "done", actor_id)
    except InvalidStageStatusError as e:
        api_response(code=e.code, status=e.status, allowed=e.allowed)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProgressKernelError (base)
    |
    +-- NotFoundError
    |   +-- ServiceNotFoundError
    |   +-- StageDefinitionNotFoundError
    |   +-- ContractServiceNotFoundError
    |   +-- StageInstanceNotFoundError
    |   +-- ContractNotFoundError
    |   +-- ClientNotFoundError
    |
    +-- ValidationError
    |   +-- InvalidStageStatusError
    |   +-- InvalidContractServiceStatusError
    |   +-- InvalidStageDefinitionError
    |   +-- EmptyBatchError
    |   +-- DefaultStagesExistError
    |   +-- StageDeletionNotAllowedError
    |
    +-- SyncError
    |   +-- SyncConflictError
    |
    +-- StoreError
    |   +-- TransientStoreError
    |   +-- ProgressUpdateError
    |
    +-- ConcurrencyError
        +-- OptimisticLockError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                              | When Raised
-------------|-----------------------------------|-------------------------------------
NotFound     | SERVICE_NOT_FOUND                 | Service id doesn't exist
             | STAGE_DEFINITION_NOT_FOUND        | Template stage id doesn't exist
             | CONTRACT_SERVICE_NOT_FOUND        | Contract service id doesn't exist
             | STAGE_INSTANCE_NOT_FOUND          | Stage instance id doesn't exist
             | CONTRACT_NOT_FOUND                | Contract id doesn't exist
             | CLIENT_NOT_FOUND                  | Client id doesn't exist
-------------|-----------------------------------|-------------------------------------
Validation   | INVALID_STAGE_STATUS              | Not "pending" / "completed"
             | INVALID_CONTRACT_SERVICE_STATUS   | Unknown contract service status
             | INVALID_STAGE_DEFINITION          | Empty name, bad sort order, ...
             | EMPTY_BATCH                       | Batch update with no items
             | DEFAULT_STAGES_EXIST              | Service already has stages
             | STAGE_DELETION_NOT_ALLOWED        | Hard delete by non-admin
-------------|-----------------------------------|-------------------------------------
Sync         | SYNC_CONFLICT                     | Contract service vanished mid-sync
-------------|-----------------------------------|-------------------------------------
Store        | TRANSIENT_STORE_ERROR             | Infrastructure failure (retryable)
             | PROGRESS_UPDATE_FAILED            | Write-side persistence failure
-------------|-----------------------------------|-------------------------------------
Concurrency  | OPTIMISTIC_LOCK_CONFLICT          | Concurrent modification detected

===============================================================================
HANDLING PATTERNS
===============================================================================

1. NotFound and Validation errors are raised BEFORE any store mutation.
   The caller may map them directly to 404 / 400.

2. SyncConflictError is never raised out of a reconcile run; it is
   recorded in ``SyncReport.conflicts`` and the run continues with the
   remaining contract services.

3. Store errors on the write path abort the whole unit of work:

    try:
        result = engine.set_stage_statuses(updates, actor_id)
    except ProgressUpdateError as e:
        # nothing was written; e.transient says whether a retry may help
        ...
"""


class ProgressKernelError(Exception):
    """
    Base exception for all progress kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "PROGRESS_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(ProgressKernelError):
    """Base exception for missing referenced entities."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ServiceNotFoundError(NotFoundError):
    """Catalog service with given ID was not found."""

    code: str = "SERVICE_NOT_FOUND"
    entity_type = "Service"


class StageDefinitionNotFoundError(NotFoundError):
    """Template stage definition with given ID was not found."""

    code: str = "STAGE_DEFINITION_NOT_FOUND"
    entity_type = "Stage definition"


class ContractServiceNotFoundError(NotFoundError):
    """Contract service with given ID was not found."""

    code: str = "CONTRACT_SERVICE_NOT_FOUND"
    entity_type = "Contract service"


class StageInstanceNotFoundError(NotFoundError):
    """Stage instance with given ID was not found."""

    code: str = "STAGE_INSTANCE_NOT_FOUND"
    entity_type = "Stage instance"


class ContractNotFoundError(NotFoundError):
    """Contract with given ID was not found."""

    code: str = "CONTRACT_NOT_FOUND"
    entity_type = "Contract"


class ClientNotFoundError(NotFoundError):
    """Client with given ID was not found."""

    code: str = "CLIENT_NOT_FOUND"
    entity_type = "Client"


# Validation exceptions


class ValidationError(ProgressKernelError):
    """Base exception for malformed input rejected before any mutation."""

    code: str = "VALIDATION_ERROR"


class InvalidStageStatusError(ValidationError):
    """Stage instance status is not one of the allowed values."""

    code: str = "INVALID_STAGE_STATUS"

    def __init__(self, status: object, allowed: tuple[str, ...]):
        self.status = status
        self.allowed = allowed
        super().__init__(
            f"Invalid stage status {status!r}; expected one of {', '.join(allowed)}"
        )


class InvalidContractServiceStatusError(ValidationError):
    """Contract service status is not one of the allowed values."""

    code: str = "INVALID_CONTRACT_SERVICE_STATUS"

    def __init__(self, status: object, allowed: tuple[str, ...]):
        self.status = status
        self.allowed = allowed
        super().__init__(
            f"Invalid contract service status {status!r}; "
            f"expected one of {', '.join(allowed)}"
        )


class InvalidStageDefinitionError(ValidationError):
    """Stage definition input failed validation."""

    code: str = "INVALID_STAGE_DEFINITION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid stage definition field '{field}': {reason}")


class EmptyBatchError(ValidationError):
    """Batch stage update was submitted without any items."""

    code: str = "EMPTY_BATCH"

    def __init__(self):
        super().__init__("Batch update must contain at least one item")


class DefaultStagesExistError(ValidationError):
    """Default stages requested for a service that already has stages."""

    code: str = "DEFAULT_STAGES_EXIST"

    def __init__(self, service_id: str, existing_count: int):
        self.service_id = service_id
        self.existing_count = existing_count
        super().__init__(
            f"Service {service_id} already has {existing_count} active stage(s)"
        )


class StageDeletionNotAllowedError(ValidationError):
    """Permanent deletion of a stage definition requires admin rights."""

    code: str = "STAGE_DELETION_NOT_ALLOWED"

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(
            f"Only administrators may permanently delete stage {definition_id}"
        )


# Sync exceptions


class SyncError(ProgressKernelError):
    """Base exception for stage synchronization errors."""

    code: str = "SYNC_ERROR"


class SyncConflictError(SyncError):
    """
    A contract service disappeared while its stages were being reconciled.

    Recorded in the sync report; the reconcile run skips the contract
    service and continues with the others.
    """

    code: str = "SYNC_CONFLICT"

    def __init__(self, service_id: str, contract_service_id: str):
        self.service_id = service_id
        self.contract_service_id = contract_service_id
        super().__init__(
            f"Contract service {contract_service_id} was removed while "
            f"syncing stages of service {service_id}"
        )


# Store exceptions


class StoreError(ProgressKernelError):
    """Base exception for persistence failures."""

    code: str = "STORE_ERROR"


class TransientStoreError(StoreError):
    """Underlying persistence call failed for infrastructure reasons."""

    code: str = "TRANSIENT_STORE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Transient store failure during {operation}: {detail}")


class ProgressUpdateError(StoreError):
    """Could not update progress; the unit of work was rolled back."""

    code: str = "PROGRESS_UPDATE_FAILED"

    def __init__(self, operation: str, detail: str, transient: bool = False):
        self.operation = operation
        self.detail = detail
        self.transient = transient
        super().__init__(f"Could not update progress ({operation}): {detail}")


# Concurrency exceptions


class ConcurrencyError(ProgressKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )
