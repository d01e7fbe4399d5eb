# core/integrations/migrations.py
"""
Миграции Supabase из репозитория GitHub

Файлы лежат в supabase/migrations и называются YYYYMMDDHHMMSS_name.sql.
Применённые версии берутся из supabase_migrations.schema_migrations.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from core.integrations.management_api import (
    GitHubClient,
    IntegrationError,
    SupabaseManagementClient,
    extract_results,
    parse_sql_error,
    sql_literal,
)

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = 'supabase/migrations'

_MIGRATION_NAME_PATTERN = re.compile(r'^(\d{14})_(.+)\.sql$')

# duplicate_object, duplicate_table
ALREADY_EXISTS_CODES = {'42710', '42P07'}

STATUS_APPLIED = 'applied'
STATUS_PENDING = 'pending'


@dataclass(frozen=True)
class MigrationName:
    version: str
    timestamp: str
    name: str


@dataclass
class MigrationFile:
    name: str
    path: str
    timestamp: str
    version: str
    status: str = STATUS_PENDING
    applied_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'name': self.name,
            'path': self.path,
            'timestamp': self.timestamp,
            'version': self.version,
            'status': self.status,
        }
        if self.applied_at:
            data['appliedAt'] = self.applied_at
        return data


def parse_migration_name(filename: str) -> Optional[MigrationName]:
    """
    Разбирает имя файла миграции

    Args:
        filename: Например 20240101120000_create_users.sql

    Returns:
        MigrationName или None, если имя не в формате миграции
    """
    match = _MIGRATION_NAME_PATTERN.match(filename)
    if not match:
        return None

    version = match.group(1)
    timestamp = (
        f"{version[0:4]}-{version[4:6]}-{version[6:8]}"
        f"T{version[8:10]}:{version[10:12]}:{version[12:14]}Z"
    )
    return MigrationName(version=version, timestamp=timestamp, name=match.group(2).replace('_', ' '))


def migration_file_from_entry(entry: Dict[str, Any]) -> MigrationFile:
    parsed = parse_migration_name(entry['name'])
    return MigrationFile(
        name=entry['name'],
        path=entry.get('path', entry['name']),
        timestamp=parsed.timestamp if parsed else '',
        version=parsed.version if parsed else entry['name'],
    )


def sort_migrations(migrations: List[MigrationFile]) -> List[MigrationFile]:
    """Сначала pending, затем applied; внутри группы по версии"""
    return sorted(migrations, key=lambda m: (m.status != STATUS_PENDING, m.version))


def summarize(migrations: List[MigrationFile]) -> Dict[str, int]:
    pending = sum(1 for m in migrations if m.status == STATUS_PENDING)
    return {
        'total': len(migrations),
        'applied': len(migrations) - pending,
        'pending': pending,
    }


def is_already_exists_error(parsed_error: Dict[str, Optional[str]]) -> bool:
    return (
        parsed_error.get('code') in ALREADY_EXISTS_CODES
        or 'already exists' in (parsed_error.get('message') or '').lower()
    )


class MigrationBridge:
    def __init__(self, github: Optional[GitHubClient], supabase: Optional[SupabaseManagementClient]):
        """
        Args:
            github: Клиент GitHub (None - токен не настроен)
            supabase: Клиент Management API (None - токен не настроен)
        """
        self.github = github
        self.supabase = supabase

    def _require_github(self) -> GitHubClient:
        if self.github is None:
            raise IntegrationError('Not authenticated', 401)
        return self.github

    def _require_supabase(self) -> SupabaseManagementClient:
        if self.supabase is None:
            raise IntegrationError('Supabase not connected', 401)
        return self.supabase

    async def list_migrations(self, owner: str, repo: str, project_ref: Optional[str] = None,
                              ref: Optional[str] = None) -> Dict[str, Any]:
        """
        Список миграций репозитория со статусом применения

        Returns:
            dict: {'migrations': [...], 'summary': {'total', 'applied', 'pending'}}
        """
        github = self._require_github()

        contents = await github.list_directory(owner, repo, MIGRATIONS_DIR, ref=ref)
        migrations = [
            migration_file_from_entry(entry)
            for entry in contents
            if entry.get('type') == 'file' and entry.get('name', '').endswith('.sql')
        ]

        if project_ref and self.supabase is not None:
            try:
                applied = await self.fetch_applied_versions(project_ref)
            except httpx.HTTPError as e:
                logger.error(f"[Migrations] Failed to fetch applied migrations: {e}")
                applied = {}
            for migration in migrations:
                applied_at = applied.get(migration.version)
                if applied_at:
                    migration.status = STATUS_APPLIED
                    migration.applied_at = applied_at

        migrations = sort_migrations(migrations)
        return {
            'migrations': [m.to_dict() for m in migrations],
            'summary': summarize(migrations),
        }

    async def fetch_applied_versions(self, project_ref: str) -> Dict[str, str]:
        """
        Версии из schema_migrations

        Ошибки только логируются: тогда все миграции остаются pending.
        """
        query = (
            'SELECT version, name, inserted_at FROM supabase_migrations.schema_migrations '
            'ORDER BY version'
        )
        result = await self._require_supabase().run_query(project_ref, query)

        if not result.ok:
            logger.error(f"[Migrations] Failed to query schema_migrations: {result.status} {result.payload}")
            return {}

        applied = {}
        for row in extract_results(result.payload):
            version = str(row.get('version') or '')
            if version:
                applied[version] = str(row.get('inserted_at') or '')
        return applied

    async def is_applied(self, project_ref: str, version: str) -> bool:
        query = (
            'SELECT version FROM supabase_migrations.schema_migrations '
            f"WHERE version = {sql_literal(version)}"
        )
        result = await self._require_supabase().run_query(project_ref, query)
        return result.ok and len(extract_results(result.payload)) > 0

    async def record_migration(self, project_ref: str, version: str, migration_path: str) -> bool:
        """Записывает версию в schema_migrations; повторная запись ничего не меняет"""
        migration_name = migration_path.split('/')[-1]
        query = (
            'INSERT INTO supabase_migrations.schema_migrations (version, statements, name) '
            f"VALUES ({sql_literal(version)}, ARRAY[]::text[], {sql_literal(migration_name)}) "
            'ON CONFLICT (version) DO NOTHING'
        )
        result = await self._require_supabase().run_query(project_ref, query)
        if not result.ok:
            logger.warning(f"[Migrations] Migration {version} applied but not recorded: {result.status}")
        return result.ok

    async def run_migration(self, owner: str, repo: str, project_ref: str,
                            migration_path: str, migration_version: str) -> Dict[str, Any]:
        """
        Применяет одну миграцию

        Returns:
            dict: Результат для клиента (success, alreadyApplied, message, ...)
        """
        github = self._require_github()
        supabase = self._require_supabase()

        if await self.is_applied(project_ref, migration_version):
            return {
                'success': False,
                'alreadyApplied': True,
                'error': 'Migration already applied',
                'message': f"Migration {migration_version} has already been applied to this database.",
            }

        migration_sql = await github.get_file_content(owner, repo, migration_path)

        logger.info(f"[Migrations] Applying {migration_version} to {project_ref}")
        result = await supabase.run_query(project_ref, migration_sql)

        if not result.ok:
            parsed = parse_sql_error(result.payload)
            already_exists = is_already_exists_error(parsed)
            logger.error(f"[Migrations] {migration_version} failed: {parsed['message']}")
            return {
                'success': False,
                'alreadyApplied': already_exists,
                'error': parsed['message'],
                'errorCode': parsed['code'],
                'hint': parsed['hint'],
                'detail': parsed['detail'],
                'message': (
                    'This migration appears to have already been applied (objects already exist in database).'
                    if already_exists else f"SQL Error: {parsed['message']}"
                ),
            }

        recorded = await self.record_migration(project_ref, migration_version, migration_path)

        return {
            'success': True,
            'recorded': recorded,
            'message': f"Migration {migration_version} applied successfully",
            'version': migration_version,
        }
