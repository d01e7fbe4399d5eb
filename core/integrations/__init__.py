"""
Migration-history / SQL execution bridge.

GitHub holds the migration files, the Supabase Management API executes SQL
and keeps supabase_migrations.schema_migrations.
"""

from core.integrations.routes import IntegrationRoutes

__all__ = ['IntegrationRoutes']
