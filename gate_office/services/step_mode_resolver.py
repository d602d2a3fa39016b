"""Editability of a wizard step.

resolve_step_mode() replaces the per-screen fill-data / update / navigating
flags with one projection over the facts a screen has when a step is shown:

    no session                         -> CREATE
    record found, no action            -> VIEW_LOCKED
    record found, edit requested       -> EDIT_ACTIVE (VIEW_LOCKED when COMPLETED)
    record missing while creating      -> CREATE
    record missing, no fill requested  -> VIEW_LOCKED + missing_record
    record missing, fill requested     -> FILL_MISSING
    fetch failed on the server         -> previous mode + blocking
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from gate_office.models import EntryStatus


class StepMode(str, Enum):
    CREATE = 'CREATE'
    VIEW_LOCKED = 'VIEW_LOCKED'
    FILL_MISSING = 'FILL_MISSING'
    EDIT_ACTIVE = 'EDIT_ACTIVE'


class UserAction(str, Enum):
    NONE = 'none'
    REQUESTED_FILL_DATA = 'requestedFillData'
    REQUESTED_EDIT = 'requestedEdit'


@dataclass(frozen=True)
class RecordFound:
    data: dict[str, Any]


@dataclass(frozen=True)
class RecordNotFound:
    detail: str = 'Record not found'


@dataclass(frozen=True)
class FetchFailed:
    message: str = 'Server error'


FetchOutcome = Union[RecordFound, RecordNotFound, FetchFailed]


@dataclass(frozen=True)
class StepModeResolution:
    mode: StepMode
    missing_record: bool = False
    blocking: bool = False
    can_request_edit: bool = False

    @property
    def editable(self) -> bool:
        return not self.blocking and self.mode != StepMode.VIEW_LOCKED

    @property
    def can_fill_data(self) -> bool:
        return self.missing_record and not self.blocking

    @property
    def submit_verb(self) -> str | None:
        """'create', 'update', or None when submitting only advances the pointer."""
        if self.mode in (StepMode.CREATE, StepMode.FILL_MISSING):
            return 'create'
        if self.mode == StepMode.EDIT_ACTIVE:
            return 'update'
        return None


def resolve_step_mode(
    *,
    session_exists: bool,
    fetch_outcome: FetchOutcome | None,
    prior_action: UserAction,
    session_status: EntryStatus | None,
    previous_mode: StepMode | None = None,
    creating: bool = False,
) -> StepModeResolution:
    if not session_exists:
        return StepModeResolution(mode=StepMode.CREATE)

    if isinstance(fetch_outcome, FetchFailed) or fetch_outcome is None:
        # Nothing is known about the record; keep whatever the screen showed.
        return StepModeResolution(mode=previous_mode or StepMode.VIEW_LOCKED, blocking=True)

    if isinstance(fetch_outcome, RecordNotFound):
        if creating:
            return StepModeResolution(mode=StepMode.CREATE)
        if prior_action == UserAction.REQUESTED_FILL_DATA:
            return StepModeResolution(mode=StepMode.FILL_MISSING)
        return StepModeResolution(mode=StepMode.VIEW_LOCKED, missing_record=True)

    completed = session_status == EntryStatus.COMPLETED
    if prior_action == UserAction.REQUESTED_EDIT and not completed:
        return StepModeResolution(mode=StepMode.EDIT_ACTIVE)
    return StepModeResolution(
        mode=StepMode.VIEW_LOCKED,
        can_request_edit=not completed and prior_action == UserAction.NONE,
    )
