# core/integrations/management_api.py
"""Клиенты GitHub Contents API и Supabase Management API (только то, что нужно мостику миграций)"""

import base64
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

GITHUB_API_URL = 'https://api.github.com'
SUPABASE_API_URL = 'https://api.supabase.com'

_SQL_ERROR_CODE_PATTERN = re.compile(r'ERROR:\s*([0-9A-Z]{5}):')
_SQL_ERROR_PREFIX_PATTERN = re.compile(r'^ERROR:\s*(?:[0-9A-Z]{5}:\s*)?')


class IntegrationError(Exception):
    """Ошибка обращения к внешнему API, которую маршрут отдаёт клиенту как JSON"""

    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.message = message
        self.status = status


@dataclass
class QueryResult:
    status: int
    payload: Any = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def extract_results(data: Any) -> List[Dict[str, Any]]:
    """Достаёт строки из ответа Management API (форматы бывают разные)"""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ('result', 'rows', 'data'):
            if isinstance(data.get(key), list):
                return data[key]
    return []


def normalize_query_results(data: Any) -> List[Any]:
    """Как extract_results, но одиночный объект превращается в список из одного элемента"""
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []
    if data.get('result') is not None:
        result = data['result']
        return result if isinstance(result, list) else [result]
    if data.get('rows') is not None:
        return data['rows']
    return data.get('data') or [data]


def parse_sql_error(payload: Any) -> Dict[str, Optional[str]]:
    """
    Разбирает ошибку SQL из ответа Management API

    Returns:
        dict: message (без префикса "ERROR: 42710:"), code, hint, detail
    """
    if not isinstance(payload, dict):
        payload = {}

    message = str(payload.get('message') or payload.get('error') or 'Unknown SQL error')
    code_match = _SQL_ERROR_CODE_PATTERN.search(message)

    return {
        'message': _SQL_ERROR_PREFIX_PATTERN.sub('', message),
        'code': code_match.group(1) if code_match else None,
        'hint': str(payload['hint']) if payload.get('hint') else None,
        'detail': str(payload['detail']) if payload.get('detail') else None,
    }


def sql_literal(value: str) -> str:
    """Строковый литерал SQL с экранированием одинарных кавычек"""
    return "'" + str(value).replace("'", "''") + "'"


def _json_or_empty(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


class GitHubClient:
    def __init__(self, token: str, http_client: httpx.AsyncClient, api_url: str = GITHUB_API_URL):
        self.token = token
        self.http_client = http_client
        self.api_url = api_url.rstrip('/')

    def _headers(self) -> dict:
        return {
            'Authorization': f"Bearer {self.token}",
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': '2022-11-28',
        }

    async def list_directory(self, owner: str, repo: str, path: str,
                             ref: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Содержимое каталога репозитория

        Returns:
            list: Элементы каталога; пустой список если каталога нет (404)
        """
        params = {'ref': ref} if ref else None
        response = await self.http_client.get(
            f"{self.api_url}/repos/{owner}/{repo}/contents/{path}",
            headers=self._headers(),
            params=params
        )

        if response.status_code == 404:
            return []
        if response.is_error:
            logger.error(f"GitHub API error: {response.status_code} for {owner}/{repo}/{path}")
            return []

        contents = _json_or_empty(response)
        return contents if isinstance(contents, list) else []

    async def get_file_content(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> str:
        """Текст файла из репозитория (Contents API отдаёт его в base64)"""
        params = {'ref': ref} if ref else None
        response = await self.http_client.get(
            f"{self.api_url}/repos/{owner}/{repo}/contents/{path}",
            headers=self._headers(),
            params=params
        )

        if response.is_error:
            raise IntegrationError('Failed to fetch migration file from GitHub', response.status_code)

        file_data = _json_or_empty(response)
        content = file_data.get('content') if isinstance(file_data, dict) else None
        if content is None:
            raise IntegrationError(f"{path} is not a file", 400)

        return base64.b64decode(content).decode('utf-8')


class SupabaseManagementClient:
    def __init__(self, token: str, http_client: httpx.AsyncClient, api_url: str = SUPABASE_API_URL):
        self.token = token
        self.http_client = http_client
        self.api_url = api_url.rstrip('/')

    async def run_query(self, project_ref: str, query: str) -> QueryResult:
        """Выполняет SQL через POST /v1/projects/{ref}/database/query"""
        response = await self.http_client.post(
            f"{self.api_url}/v1/projects/{project_ref}/database/query",
            headers={
                'Authorization': f"Bearer {self.token}",
                'Content-Type': 'application/json',
            },
            json={'query': query}
        )
        return QueryResult(status=response.status_code, payload=_json_or_empty(response))
