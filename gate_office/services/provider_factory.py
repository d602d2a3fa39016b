from __future__ import annotations

from functools import lru_cache

from gate_office.config import settings
from gate_office.services.http_record_store import HttpRecordStore
from gate_office.services.sql_record_store import SqlRecordStore


@lru_cache(maxsize=1)
def get_record_store():
    provider = settings.record_store.strip().lower()
    if provider == 'http':
        return HttpRecordStore()
    return SqlRecordStore()
