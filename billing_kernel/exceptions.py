"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the HTTP layer, batch tooling, tests) must decide what to do with
an error without parsing its message:

  - ValidationError  -> caller must fix the input, do not retry
  - ConflictError    -> re-fetch state, then retry or switch to append mode
  - NotFoundError    -> the referenced row does not exist

Every exception carries a class-level ``code`` (machine-readable, API-safe)
and stores its context as attributes so it survives logging and
serialization.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- ValidationError
    |   +-- MissingFieldError
    |   +-- InvalidInvoiceTypeError
    |
    +-- ConflictError
    |   +-- RecordAlreadyLinkedError
    |   +-- DuplicateIdentifierError
    |
    +-- NotFoundError
        +-- InvoiceNotFoundError
        +-- MovementRecordNotFoundError
        +-- CounterpartyNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                     | When Raised
------------|--------------------------|---------------------------------------
Validation  | VALIDATION_ERROR         | Invalid value for a field
            | MISSING_FIELD            | Required field absent for this type
            | INVALID_INVOICE_TYPE     | Type not Inward/Outward/Transporter
------------|--------------------------|---------------------------------------
Conflict    | RECORD_ALREADY_LINKED    | Movement record billed by another invoice
            | DUPLICATE_IDENTIFIER     | Unique number collided at flush time
------------|--------------------------|---------------------------------------
Not found   | INVOICE_NOT_FOUND        | Invoice id/number does not exist
            | MOVEMENT_RECORD_NOT_FOUND| Movement record id does not exist
            | COUNTERPARTY_NOT_FOUND   | Company/transporter id does not exist

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        service.create_invoice(request)
    except RecordAlreadyLinkedError as e:
        # offer append mode on e.invoice_number
        ...
    except ConflictError as e:
        if e.retryable:
            ...  # run_in_transaction() does this automatically

Services raise these directly and never swallow them; the transaction
scope rolls back and re-raises.
"""


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must set a ``code`` class attribute.
    """

    code: str = "BILLING_KERNEL_ERROR"
    retryable: bool = False


# Validation


class ValidationError(BillingKernelError):
    """Invalid or missing input. Not retryable: the caller must fix it."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class MissingFieldError(ValidationError):
    """A field required for this invoice type or record was not supplied."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str, context: str):
        self.context = context
        super().__init__(f"{field} is required for {context}", field=field)


class InvalidInvoiceTypeError(ValidationError):
    """Invoice type is not one of the three counterparty classes."""

    code: str = "INVALID_INVOICE_TYPE"

    def __init__(self, invoice_type: str, allowed: tuple[str, ...]):
        self.invoice_type = invoice_type
        self.allowed = allowed
        super().__init__(
            f"Invalid invoice type {invoice_type!r}. "
            f"Must be one of: {', '.join(allowed)}",
            field="type",
        )


# Conflicts


class ConflictError(BillingKernelError):
    """
    State conflict with another invoice or a concurrent writer.

    Retryable after the caller re-fetches current state.
    """

    code: str = "CONFLICT"
    retryable: bool = True


class RecordAlreadyLinkedError(ConflictError):
    """
    A movement record is already billed by a different invoice.

    The message names the manifest number and the invoice number holding
    it so the operator can switch to append mode.
    """

    code: str = "RECORD_ALREADY_LINKED"

    def __init__(self, record_id: str, manifest_no: str, invoice_id: str, invoice_number: str):
        self.record_id = record_id
        self.manifest_no = manifest_no
        self.invoice_id = invoice_id
        self.invoice_number = invoice_number
        super().__init__(
            f"Manifest {manifest_no} is already linked to invoice {invoice_number}"
        )


class DuplicateIdentifierError(ConflictError):
    """
    A generated or supplied unique identifier already exists.

    Raised when the unique constraint fires at flush time, i.e. a
    concurrent writer committed the same number first.
    """

    code: str = "DUPLICATE_IDENTIFIER"

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} already exists")


# Not found


class NotFoundError(BillingKernelError):
    """Referenced row does not exist."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_ref: str):
        self.invoice_ref = invoice_ref
        super().__init__(f"Invoice not found: {invoice_ref}")


class MovementRecordNotFoundError(NotFoundError):
    code: str = "MOVEMENT_RECORD_NOT_FOUND"

    def __init__(self, record_ids: list[str]):
        self.record_ids = record_ids
        super().__init__(f"Movement record(s) not found: {', '.join(record_ids)}")


class CounterpartyNotFoundError(NotFoundError):
    code: str = "COUNTERPARTY_NOT_FOUND"

    def __init__(self, counterparty_id: str, kind: str):
        self.counterparty_id = counterparty_id
        self.kind = kind
        super().__init__(f"{kind.capitalize()} not found: {counterparty_id}")
