# core/integrations/routes.py
import logging
import time
from typing import Optional

import httpx
from aiohttp import web

from core.integrations.management_api import (
    GitHubClient,
    IntegrationError,
    SupabaseManagementClient,
    normalize_query_results,
)
from core.integrations.migrations import MigrationBridge
from core.integrations.sql_history import (
    InMemorySqlHistoryStore,
    SqlHistoryEntry,
    SqlHistoryStore,
    SupabaseSqlHistoryStore,
)

logger = logging.getLogger(__name__)

RUN_MIGRATION_FIELDS = ('owner', 'repo', 'projectRef', 'migrationPath', 'migrationVersion')


async def _read_json(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise IntegrationError('Invalid JSON body', 400)
    if not isinstance(body, dict):
        raise IntegrationError('Invalid JSON body', 400)
    return body


def _error_response(error: IntegrationError) -> web.Response:
    return web.json_response({'error': error.message}, status=error.status)


class IntegrationRoutes:
    def __init__(self, integrations_config: dict, http_client: Optional[httpx.AsyncClient] = None,
                 history_store: Optional[SqlHistoryStore] = None):
        """
        Args:
            integrations_config: Секция integrations из ConfigManager
            http_client: Общий httpx клиент (по умолчанию создаётся в initialize)
            history_store: Хранилище истории SQL (по умолчанию выбирается по конфигу)
        """
        self.config = integrations_config
        self.user_id = integrations_config.get('user_id') or 'local'
        self.http_client = http_client
        self._owns_client = http_client is None
        self.history_store = history_store
        self.bridge = None

    async def initialize(self):
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=30.0)
            self._owns_client = True

        github_token = self.config.get('github_token')
        supabase_token = self.config.get('supabase_access_token')

        self.bridge = MigrationBridge(
            github=GitHubClient(github_token, self.http_client) if github_token else None,
            supabase=SupabaseManagementClient(supabase_token, self.http_client) if supabase_token else None,
        )

        if self.history_store is None:
            supabase_url = self.config.get('supabase_url')
            service_key = self.config.get('supabase_service_key')
            if supabase_url and service_key:
                self.history_store = SupabaseSqlHistoryStore(supabase_url, service_key, self.http_client)
                logger.info("📜 SQL history: Supabase table")
            else:
                self.history_store = InMemorySqlHistoryStore()
                logger.info("📜 SQL history: in-memory")

    async def cleanup(self):
        if self.http_client is not None and self._owns_client:
            await self.http_client.aclose()
            self.http_client = None

    def register_routes(self, app: web.Application):
        app.router.add_get('/api/ide/migrations', self.handle_list_migrations)
        app.router.add_post('/api/ide/migrations/run', self.handle_run_migration)
        app.router.add_post('/api/integrations/supabase/projects/{ref}/sql', self.handle_execute_sql)
        app.router.add_get('/api/sql/history', self.handle_get_history)
        app.router.add_post('/api/sql/history', self.handle_add_history)
        app.router.add_delete('/api/sql/history', self.handle_clear_history)

    async def handle_list_migrations(self, request: web.Request) -> web.Response:
        owner = request.query.get('owner')
        repo = request.query.get('repo')

        if self.bridge.github is None:
            return web.json_response({'error': 'Not authenticated'}, status=401)
        if not owner or not repo:
            return web.json_response({'error': 'Owner and repo required'}, status=400)

        try:
            data = await self.bridge.list_migrations(
                owner,
                repo,
                project_ref=request.query.get('projectRef'),
                ref=request.query.get('ref'),
            )
        except IntegrationError as e:
            return _error_response(e)
        except httpx.HTTPError as e:
            logger.error(f"[Migrations] Error fetching migrations: {e}")
            return web.json_response({'error': 'Failed to fetch migrations'}, status=500)

        return web.json_response(data)

    async def handle_run_migration(self, request: web.Request) -> web.Response:
        if self.bridge.github is None:
            return web.json_response({'error': 'Not authenticated'}, status=401)

        try:
            body = await _read_json(request)
        except IntegrationError as e:
            return _error_response(e)

        if not all(body.get(name) for name in RUN_MIGRATION_FIELDS):
            return web.json_response(
                {'error': 'Owner, repo, projectRef, migrationPath, and migrationVersion are required'},
                status=400
            )

        try:
            result = await self.bridge.run_migration(
                body['owner'],
                body['repo'],
                body['projectRef'],
                body['migrationPath'],
                str(body['migrationVersion']),
            )
        except IntegrationError as e:
            return _error_response(e)
        except httpx.HTTPError as e:
            logger.error(f"[Migrations] Error running migration: {e}")
            return web.json_response(
                {'success': False, 'error': 'Failed to run migration', 'message': str(e) or 'Unknown error occurred'},
                status=500
            )

        return web.json_response(result)

    async def handle_execute_sql(self, request: web.Request) -> web.Response:
        """Выполняет SQL в проекте Supabase и пишет запрос в историю"""
        project_ref = request.match_info['ref']
        supabase = self.bridge.supabase

        if supabase is None:
            return web.json_response({'error': 'Not authenticated with Supabase'}, status=401)

        try:
            body = await _read_json(request)
        except IntegrationError as e:
            return _error_response(e)

        query = body.get('query')
        if not query:
            return web.json_response({'error': 'Query is required'}, status=400)

        started = time.monotonic()
        try:
            result = await supabase.run_query(project_ref, query)
        except httpx.HTTPError as e:
            logger.error(f"[SQL] Supabase SQL execution error: {e}")
            return web.json_response({'error': 'Failed to execute query'}, status=500)
        execution_time_ms = int((time.monotonic() - started) * 1000)

        if not result.ok:
            payload = result.payload if isinstance(result.payload, dict) else {}
            await self._record_history(project_ref, query, False, None, execution_time_ms)

            if result.status == 400:
                return web.json_response(
                    {'error': payload.get('message') or 'Invalid SQL query', 'hint': payload.get('hint')},
                    status=400
                )
            if result.status == 403:
                return web.json_response(
                    {
                        'error': 'Permission denied. Your access token may not have database access.',
                        'hint': 'Make sure your Supabase access token has the necessary permissions.',
                    },
                    status=403
                )
            return web.json_response(
                {'error': payload.get('message') or 'Failed to execute query', 'hint': payload.get('hint')},
                status=result.status
            )

        results = normalize_query_results(result.payload)
        await self._record_history(project_ref, query, True, len(results), execution_time_ms)

        return web.json_response({'success': True, 'results': results, 'rowCount': len(results)})

    async def _record_history(self, project_ref, query, success, row_count, execution_time_ms):
        """История не должна ломать выполнение запроса: ошибки только логируются"""
        entry = SqlHistoryEntry(
            user_id=self.user_id,
            project_ref=project_ref,
            query=query,
            success=success,
            row_count=row_count,
            execution_time_ms=execution_time_ms,
        )
        try:
            await self.history_store.add(entry)
        except (IntegrationError, httpx.HTTPError) as e:
            logger.warning(f"[SQL] Could not record query history: {e}")

    async def handle_get_history(self, request: web.Request) -> web.Response:
        project_ref = request.query.get('projectRef')
        if not project_ref:
            return web.json_response({'error': 'projectRef parameter required'}, status=400)

        try:
            history = await self.history_store.list(self.user_id, project_ref)
        except (IntegrationError, httpx.HTTPError) as e:
            logger.error(f"[SQL] Error fetching SQL history: {e}")
            return web.json_response({'error': 'Failed to fetch history'}, status=500)

        return web.json_response({'history': history or []})

    async def handle_add_history(self, request: web.Request) -> web.Response:
        try:
            body = await _read_json(request)
        except IntegrationError as e:
            return _error_response(e)

        project_ref = body.get('projectRef')
        query = body.get('query')
        if not project_ref or not query:
            return web.json_response({'error': 'projectRef and query are required'}, status=400)

        success = body.get('success')
        entry = SqlHistoryEntry(
            user_id=self.user_id,
            project_ref=project_ref,
            query=query,
            success=True if success is None else bool(success),
            row_count=body.get('rowCount'),
            execution_time_ms=body.get('executionTimeMs'),
        )

        try:
            await self.history_store.add(entry)
        except (IntegrationError, httpx.HTTPError) as e:
            logger.error(f"[SQL] Error saving SQL history: {e}")
            return web.json_response({'error': 'Failed to save history'}, status=500)

        return web.json_response({'success': True})

    async def handle_clear_history(self, request: web.Request) -> web.Response:
        project_ref = request.query.get('projectRef')
        if not project_ref:
            return web.json_response({'error': 'projectRef parameter required'}, status=400)

        try:
            await self.history_store.clear(self.user_id, project_ref)
        except (IntegrationError, httpx.HTTPError) as e:
            logger.error(f"[SQL] Error clearing SQL history: {e}")
            return web.json_response({'error': 'Failed to clear history'}, status=500)

        return web.json_response({'success': True})
