from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from gate_office.config import settings
from gate_office.exceptions import NotFoundError, ServerError, ValidationError
from gate_office.logging_config import get_logger
from gate_office.models import EntryType, StepKind
from gate_office.services.record_store import (
    PurchaseOrderRecord,
    SessionRecord,
    purchase_order_from_row,
    purchase_orders_from_rows,
    session_from_row,
)

logger = get_logger('services.http_record_store')

VALIDATION_STATUSES = {400, 409, 422}


def _field_errors(body: dict[str, Any]) -> dict[str, str]:
    errors: dict[str, str] = {}
    for field, messages in (body.get('errors') or {}).items():
        if isinstance(messages, list):
            if messages:
                errors[field] = str(messages[0])
        elif messages:
            errors[field] = str(messages)
    if not errors and body.get('detail'):
        errors['general'] = str(body['detail'])
    return errors


class HttpRecordStore:
    """Record store reached over the gate office JSON API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout_seconds: int | None = None,
    ) -> None:
        base_url = base_url or settings.record_store_base_url
        if not base_url:
            raise ValueError('RECORD_STORE_BASE_URL is required when RECORD_STORE=http')
        self.base_url = base_url.rstrip('/')
        self.timeout_seconds = timeout_seconds or settings.record_store_timeout_seconds
        self.headers = {'Content-Type': 'application/json', 'Accept': 'application/json'}
        token = token or settings.record_store_token
        if token:
            self.headers['Authorization'] = f'Bearer {token}'

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        data = json.dumps(payload, default=str).encode('utf-8') if payload is not None else None
        req = Request(url=f'{self.base_url}{path}', data=data, headers=self.headers, method=method)
        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                raw = response.read().decode('utf-8')
        except HTTPError as exc:
            raw_body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            try:
                body = json.loads(raw_body) if raw_body else {}
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            detail = str(body.get('detail') or raw_body or exc.reason)
            if exc.code == 404:
                raise NotFoundError(detail) from exc
            if exc.code in VALIDATION_STATUSES:
                raise ValidationError(_field_errors(body) or {'general': detail}, detail) from exc
            logger.warning('record_store_request_failed', extra={'method': method, 'path': path, 'status_code': exc.code})
            raise ServerError(f'Record store error {exc.code} on {path}', status_code=exc.code) from exc
        except (URLError, TimeoutError) as exc:
            reason = getattr(exc, 'reason', exc)
            logger.warning('record_store_unreachable', extra={'method': method, 'path': path, 'reason': str(reason)})
            raise ServerError(f'Record store network error on {path}: {reason}') from exc

        if not raw:
            return {}
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise ServerError(f'Record store returned invalid JSON on {path}') from exc

    def _step_path(self, session_id: int, step_kind: StepKind) -> str:
        return f'/gate-entries/{session_id}/steps/{StepKind(step_kind).value}'

    def create_session(self, *, entry_type: EntryType, payload: dict[str, Any]) -> SessionRecord:
        body = self._request('POST', '/gate-entries', {'entry_type': EntryType(entry_type).value, 'payload': payload})
        return session_from_row(body)

    def fetch_session(self, *, session_id: int) -> SessionRecord:
        return session_from_row(self._request('GET', f'/gate-entries/{session_id}'))

    def fetch_step_record(self, *, session_id: int, step_kind: StepKind) -> dict[str, Any]:
        return self._request('GET', self._step_path(session_id, step_kind))

    def create_step_record(self, *, session_id: int, step_kind: StepKind, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request('POST', self._step_path(session_id, step_kind), payload)

    def update_step_record(self, *, session_id: int, step_kind: StepKind, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request('PUT', self._step_path(session_id, step_kind), payload)

    def fetch_purchase_orders(self, *, supplier_code: str) -> list[PurchaseOrderRecord]:
        rows = self._request('GET', f"/po/open-pos?{urlencode({'supplier_code': supplier_code})}")
        return purchase_orders_from_rows(rows)

    def fetch_purchase_order(self, *, po_number: str) -> PurchaseOrderRecord:
        path = '/po/purchase-orders/' + quote(po_number, safe='')
        return purchase_order_from_row(self._request('GET', path))

    def complete_session(self, *, session_id: int) -> SessionRecord:
        return session_from_row(self._request('POST', f'/gate-entries/{session_id}/complete', {}))

    def cancel_session(self, *, session_id: int) -> SessionRecord:
        return session_from_row(self._request('POST', f'/gate-entries/{session_id}/cancel', {}))
