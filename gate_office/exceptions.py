"""
Typed exceptions for the gate office.

Every class carries a machine-readable ``code`` plus structured attributes so
callers catch by type and render from data, never by parsing messages.

    GateOfficeError
    +-- RecordStoreError
    |   +-- NotFoundError        RECORD_NOT_FOUND      expected record is absent
    |   +-- ValidationError      VALIDATION_FAILED     field-level rejections
    |   +-- ServerError          SERVER_ERROR          5xx or network failure
    +-- WizardError
    |   +-- StepOrderError       STEP_OUT_OF_ORDER
    |   +-- StepLockedError      STEP_LOCKED
    |   +-- StepActionError      STEP_ACTION_CONFLICT
    |   +-- ReceiptFormError     RECEIPT_FORM_INVALID
    +-- MalformedLineError       MALFORMED_LINE        PO line without an item code

RecordStoreError subclasses are raised by record-store implementations and
absorbed by the wizard engine into structured results. WizardError subclasses
signal misuse of the engine and propagate to the caller.
"""

from __future__ import annotations


class GateOfficeError(Exception):
    code: str = 'GATE_OFFICE_ERROR'

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RecordStoreError(GateOfficeError):
    code = 'RECORD_STORE_ERROR'


class NotFoundError(RecordStoreError):
    code = 'RECORD_NOT_FOUND'

    def __init__(self, detail: str = 'Record not found') -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(RecordStoreError):
    code = 'VALIDATION_FAILED'

    def __init__(self, field_errors: dict[str, str], message: str = 'Validation failed') -> None:
        super().__init__(message)
        self.field_errors = dict(field_errors)


class ServerError(RecordStoreError):
    code = 'SERVER_ERROR'

    def __init__(self, message: str = 'Server error', *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WizardError(GateOfficeError):
    code = 'WIZARD_ERROR'


class StepOrderError(WizardError):
    code = 'STEP_OUT_OF_ORDER'

    def __init__(self, message: str, *, index: int) -> None:
        super().__init__(message)
        self.index = index


class StepLockedError(WizardError):
    code = 'STEP_LOCKED'


class StepActionError(WizardError):
    code = 'STEP_ACTION_CONFLICT'


class ReceiptFormError(WizardError):
    code = 'RECEIPT_FORM_INVALID'

    def __init__(self, message: str, *, form_id: str | None = None) -> None:
        super().__init__(message)
        self.form_id = form_id


class MalformedLineError(GateOfficeError):
    code = 'MALFORMED_LINE'

    def __init__(self, message: str, *, index: int) -> None:
        super().__init__(message)
        self.index = index
