from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from gate_office.exceptions import (
    NotFoundError,
    RecordStoreError,
    ServerError,
    StepActionError,
    StepOrderError,
    ValidationError,
    WizardError,
)
from gate_office.logging_config import LogContext, get_logger
from gate_office.models import EntryStatus, StepKind
from gate_office.services.entry_flows import EntryFlowConfig
from gate_office.services.receipt_session_coordinator import FormSubmissionStatus, ReceiptSessionCoordinator
from gate_office.services.record_store import RecordStore, SessionRecord
from gate_office.services.step_mode_resolver import (
    FetchFailed,
    FetchOutcome,
    RecordFound,
    RecordNotFound,
    StepModeResolution,
    UserAction,
    resolve_step_mode,
)

logger = get_logger('services.session_state_machine')

SERVER_ERROR_BANNER = 'Cannot reach the server at the moment. Please try again later.'


@dataclass(frozen=True)
class StepRoute:
    path: str
    done: bool = False


@dataclass(frozen=True)
class StepView:
    index: int
    kind: StepKind
    resolution: StepModeResolution
    data: dict[str, Any] | None


@dataclass(frozen=True)
class SubmitResult:
    ok: bool
    route: StepRoute | None = None
    field_errors: dict[str, str] = field(default_factory=dict)
    banner: str | None = None
    form_statuses: list[FormSubmissionStatus] = field(default_factory=list)
    cancelled: bool = False


class SessionStateMachine:
    """Progression of one gate entry through the steps of its flow.

    The machine holds the session id, the cached step records, and the mode of
    the step currently shown. Record-store failures never escape a submit;
    they come back as a SubmitResult for the screen to render.
    """

    def __init__(
        self,
        flow: EntryFlowConfig,
        store: RecordStore,
        *,
        session_id: int | None = None,
        status: EntryStatus | None = None,
        resuming: bool = False,
    ) -> None:
        self.flow = flow
        self.store = store
        self.session_id = session_id
        self.status = status
        self.resuming = resuming
        self.current_step_index = 1
        self.receipts: ReceiptSessionCoordinator | None = None
        self._records: dict[StepKind, dict[str, Any]] = {}
        self._entered_index: int | None = None
        self._outcome: FetchOutcome | None = None
        self._action = UserAction.NONE
        self._resolution: StepModeResolution | None = None
        self._generation = 0

    @classmethod
    def resume(cls, flow: EntryFlowConfig, store: RecordStore, session_id: int) -> SessionStateMachine:
        record = store.fetch_session(session_id=session_id)
        if record.entry_type != flow.entry_type:
            raise WizardError(f'Gate entry {session_id} is a {record.entry_type.value} entry, not {flow.entry_type.value}')
        return cls(flow, store, session_id=record.id, status=record.status, resuming=True)

    @property
    def resolution(self) -> StepModeResolution:
        if self._resolution is None:
            raise StepOrderError('No step has been entered', index=self.current_step_index)
        return self._resolution

    def route_for(self, index: int) -> StepRoute:
        prefix = self.flow.route_prefix
        if self.session_id is None:
            return StepRoute(f'{prefix}/new/step{index}')
        if self.resuming:
            return StepRoute(f'{prefix}/edit/{self.session_id}/step{index}')
        return StepRoute(f'{prefix}/new/step{index}?entryId={self.session_id}')

    def previous_route(self) -> StepRoute:
        index = self._entered_index or self.current_step_index
        if index <= 1:
            return StepRoute(self.flow.route_prefix)
        return self.route_for(index - 1)

    def _kind_for(self, index: int) -> StepKind:
        try:
            return self.flow.step_kind(index)
        except IndexError as exc:
            raise StepOrderError(str(exc), index=index) from exc

    def _log_context(self, kind: StepKind) -> Any:
        return LogContext.bind(session_id=self.session_id, entry_type=self.flow.entry_type.value, step_kind=kind.value)

    def _fetch(self, kind: StepKind) -> FetchOutcome | None:
        if self.session_id is None:
            return None
        cached = self._records.get(kind)
        if cached is not None and kind != StepKind.REVIEW:
            return RecordFound(cached)
        try:
            data = self.store.fetch_step_record(session_id=self.session_id, step_kind=kind)
        except NotFoundError as exc:
            return RecordNotFound(exc.detail)
        except ServerError as exc:
            logger.warning('step_fetch_failed', extra={'error_code': exc.code, 'status_code': exc.status_code})
            return FetchFailed(exc.message)
        self._records[kind] = data
        return RecordFound(data)

    def _resolve(self) -> StepView:
        previous = self._resolution.mode if self._resolution is not None else None
        self._resolution = resolve_step_mode(
            session_exists=self.session_id is not None,
            fetch_outcome=self._outcome,
            prior_action=self._action,
            session_status=self.status,
            previous_mode=previous,
            creating=not self.resuming,
        )
        if self.receipts is not None:
            self.receipts.on_mode_changed()
        return self.view()

    def view(self) -> StepView:
        if self._entered_index is None:
            raise StepOrderError('No step has been entered', index=self.current_step_index)
        data = self._outcome.data if isinstance(self._outcome, RecordFound) else None
        return StepView(
            index=self._entered_index,
            kind=self._kind_for(self._entered_index),
            resolution=self.resolution,
            data=data,
        )

    def _load_receipts(self) -> None:
        if self.receipts is None or not isinstance(self._outcome, RecordFound):
            return
        try:
            self.receipts.load_existing(self._outcome.data.get('receipts') or [])
        except RecordStoreError as exc:
            # Saved receipts cannot be shown without their purchase orders.
            logger.warning('receipt_po_lookup_failed', extra={'error_code': exc.code})
            self._outcome = FetchFailed(exc.message)

    def enter_step(self, index: int) -> StepView:
        kind = self._kind_for(index)
        if index > 1 and self.session_id is None:
            raise StepOrderError(f'Step {index} needs a gate entry created by step 1', index=index)

        self._entered_index = index
        self._action = UserAction.NONE
        self._resolution = None
        self.receipts = None
        with self._log_context(kind):
            self._outcome = self._fetch(kind)
            if kind == StepKind.PO_RECEIPT:
                self.receipts = ReceiptSessionCoordinator(self)
                self._load_receipts()
            view = self._resolve()
            logger.info('step_entered', extra={'index': index, 'mode': view.resolution.mode.value})
        return view

    def _request(self, action: UserAction) -> StepView:
        if self._entered_index is None:
            raise StepOrderError('No step has been entered', index=self.current_step_index)
        if self._kind_for(self._entered_index) == StepKind.REVIEW:
            raise StepActionError('The review step has no record of its own')
        if self._action == action:
            return self.view()
        resolution = self.resolution
        allowed = resolution.can_request_edit if action == UserAction.REQUESTED_EDIT else resolution.can_fill_data
        if not allowed:
            raise StepActionError(f'{action.value} is not available for this step')
        self._action = action
        return self._resolve()

    def request_edit(self) -> StepView:
        return self._request(UserAction.REQUESTED_EDIT)

    def request_fill_data(self) -> StepView:
        return self._request(UserAction.REQUESTED_FILL_DATA)

    def retry_fetch(self) -> StepView:
        if self._entered_index is None:
            raise StepOrderError('No step has been entered', index=self.current_step_index)
        kind = self._kind_for(self._entered_index)
        self._records.pop(kind, None)
        with self._log_context(kind):
            self._outcome = self._fetch(kind)
            self._load_receipts()
            return self._resolve()

    def _write(self, kind: StepKind, payload: dict[str, Any]) -> tuple[dict[str, Any] | None, SessionRecord | None]:
        verb = self.resolution.submit_verb
        if verb is None:
            return None, None
        if verb == 'update':
            return self.store.update_step_record(session_id=self.session_id, step_kind=kind, payload=payload), None
        if self.session_id is None:
            record = self.store.create_session(entry_type=self.flow.entry_type, payload=payload)
            return dict(payload), record
        return self.store.create_step_record(session_id=self.session_id, step_kind=kind, payload=payload), None

    def _failure(self, exc: RecordStoreError) -> SubmitResult:
        if isinstance(exc, ValidationError):
            return SubmitResult(ok=False, field_errors=exc.field_errors)
        if isinstance(exc, ServerError):
            return SubmitResult(ok=False, banner=SERVER_ERROR_BANNER)
        return SubmitResult(ok=False, banner=exc.message)

    def _submit_receipts(self) -> SubmitResult | None:
        coordinator = self.receipts
        validation = coordinator.validate_all()
        if not validation.ok:
            return SubmitResult(ok=False, field_errors=validation.errors)
        statuses = coordinator.submit_all()
        if any(status.failed for status in statuses):
            banner = next((status.message for status in statuses if status.message), None)
            return SubmitResult(ok=False, banner=banner, form_statuses=statuses)
        return None

    def submit_step(self, index: int, payload: dict[str, Any] | None = None) -> SubmitResult:
        if self._entered_index != index:
            raise StepOrderError(f'Step {index} is not the step being shown', index=index)
        kind = self._kind_for(index)
        if self.resolution.blocking:
            return SubmitResult(ok=False, banner=SERVER_ERROR_BANNER)

        generation = self._generation
        with self._log_context(kind):
            try:
                if kind == StepKind.PO_RECEIPT and self.receipts is not None and (
                    self.resolution.submit_verb is not None or self.receipts.pending_forms()
                ):
                    failure = self._submit_receipts()
                    if failure is not None:
                        return failure
                    # Saved receipts are read back from the store on the next visit.
                    self._records.pop(kind, None)
                    data, created, wrote = None, None, True
                else:
                    data, created = self._write(kind, payload or {})
                    wrote = data is not None
            except RecordStoreError as exc:
                if generation != self._generation:
                    return SubmitResult(ok=False, cancelled=True)
                logger.warning('step_submit_failed', extra={'index': index, 'error_code': exc.code})
                return self._failure(exc)

            if generation != self._generation:
                # Cancelled while the request was outstanding; the write stands but is ignored here.
                logger.info('step_submit_ignored_after_cancel', extra={'index': index})
                return SubmitResult(ok=False, cancelled=True)

            if created is not None:
                self.session_id = created.id
                self.status = created.status
            elif wrote and self.status == EntryStatus.DRAFT:
                self.status = EntryStatus.IN_PROGRESS
            if data is not None:
                self._records[kind] = data

            if self.flow.is_last(index):
                if self.status != EntryStatus.COMPLETED:
                    try:
                        record = self.store.complete_session(session_id=self.session_id)
                    except RecordStoreError as exc:
                        logger.warning('session_complete_failed', extra={'error_code': exc.code})
                        return self._failure(exc)
                    self.status = record.status
                route = StepRoute(self.flow.route_prefix, done=True)
            else:
                self.current_step_index = index + 1
                route = self.route_for(index + 1)

            logger.info(
                'step_submitted',
                extra={'index': index, 'mode': self.resolution.mode.value, 'route': route.path, 'done': route.done},
            )
        self._entered_index = None
        self.receipts = None
        return SubmitResult(ok=True, route=route)

    def cancel(self, *, mark_cancelled: bool = False) -> None:
        """Drop all local state. Already persisted records are left to the store."""
        session_id = self.session_id
        self._generation += 1
        self.session_id = None
        self.status = None
        self.resuming = False
        self.current_step_index = 1
        self.receipts = None
        self._records.clear()
        self._entered_index = None
        self._outcome = None
        self._action = UserAction.NONE
        self._resolution = None
        if mark_cancelled and session_id is not None:
            try:
                self.store.cancel_session(session_id=session_id)
            except RecordStoreError as exc:
                logger.warning('session_cancel_failed', extra={'session_id': session_id, 'error_code': exc.code})
        logger.info('session_cancelled', extra={'session_id': session_id, 'mark_cancelled': mark_cancelled})
