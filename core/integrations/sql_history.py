# core/integrations/sql_history.py
"""История выполненных SQL запросов по проектам Supabase"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from core.integrations.management_api import IntegrationError

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
HISTORY_TABLE = 'sql_query_history'


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SqlHistoryEntry:
    user_id: str
    project_ref: str
    query: str
    success: bool = True
    row_count: Optional[int] = None
    execution_time_ms: Optional[int] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'query': self.query,
            'success': self.success,
            'row_count': self.row_count,
            'execution_time_ms': self.execution_time_ms,
            'created_at': self.created_at,
        }


class SqlHistoryStore(ABC):
    @abstractmethod
    async def list(self, user_id: str, project_ref: str, limit: int = HISTORY_LIMIT) -> List[Dict[str, Any]]:
        """Последние запросы, новые первыми"""

    @abstractmethod
    async def add(self, entry: SqlHistoryEntry):
        ...

    @abstractmethod
    async def clear(self, user_id: str, project_ref: str):
        ...


class InMemorySqlHistoryStore(SqlHistoryStore):
    """Хранилище в памяти процесса (по умолчанию и для тестов)"""

    def __init__(self, max_entries_per_project: int = HISTORY_LIMIT):
        self.max_entries_per_project = max_entries_per_project
        self._entries: Dict[tuple, List[SqlHistoryEntry]] = {}

    async def list(self, user_id, project_ref, limit=HISTORY_LIMIT):
        entries = self._entries.get((user_id, project_ref), [])
        return [entry.to_dict() for entry in reversed(entries[-limit:])]

    async def add(self, entry):
        entries = self._entries.setdefault((entry.user_id, entry.project_ref), [])
        entries.append(entry)
        # Старые записи вытесняются
        if len(entries) > self.max_entries_per_project:
            del entries[:len(entries) - self.max_entries_per_project]

    async def clear(self, user_id, project_ref):
        self._entries.pop((user_id, project_ref), None)


class SupabaseSqlHistoryStore(SqlHistoryStore):
    """Таблица sql_query_history через PostgREST (service role key)"""

    def __init__(self, supabase_url: str, service_key: str, http_client: httpx.AsyncClient):
        self.table_url = f"{supabase_url.rstrip('/')}/rest/v1/{HISTORY_TABLE}"
        self.service_key = service_key
        self.http_client = http_client

    def _headers(self) -> dict:
        return {
            'Authorization': f"Bearer {self.service_key}",
            'apikey': self.service_key,
            'Accept': 'application/json',
        }

    @staticmethod
    def _check(response: httpx.Response, action: str):
        if response.is_error:
            logger.error(f"[SQL] Failed to {action} history: {response.status_code} {response.text}")
            raise IntegrationError(f"Failed to {action} history", 500)

    async def list(self, user_id, project_ref, limit=HISTORY_LIMIT):
        response = await self.http_client.get(
            self.table_url,
            headers=self._headers(),
            params={
                'select': 'id,query,success,row_count,execution_time_ms,created_at',
                'user_id': f"eq.{user_id}",
                'project_ref': f"eq.{project_ref}",
                'order': 'created_at.desc',
                'limit': str(limit),
            }
        )
        self._check(response, 'fetch')
        return response.json()

    async def add(self, entry):
        headers = self._headers()
        headers['Prefer'] = 'return=minimal'
        response = await self.http_client.post(
            self.table_url,
            headers=headers,
            json={
                'user_id': entry.user_id,
                'project_ref': entry.project_ref,
                'query': entry.query,
                'success': entry.success,
                'row_count': entry.row_count,
                'execution_time_ms': entry.execution_time_ms,
            }
        )
        self._check(response, 'save')

    async def clear(self, user_id, project_ref):
        response = await self.http_client.delete(
            self.table_url,
            headers=self._headers(),
            params={'user_id': f"eq.{user_id}", 'project_ref': f"eq.{project_ref}"}
        )
        self._check(response, 'clear')
