import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests
from aiohttp.test_utils import AioHTTPTestCase

from core.config_manager import ConfigManager
from core.server_manager import ServerManager


def make_config(tmp_dir, **environ):
    return ConfigManager(config_path=Path(tmp_dir) / 'config.json', environ=environ)


class ServerAppTests(AioHTTPTestCase):
    async def get_application(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.manager = ServerManager(make_config(self.tmp_dir.name, BACKEND_URL='http://127.0.0.1:1'))
        return self.manager.create_app()

    async def asyncTearDown(self):
        await super().asyncTearDown()
        self.tmp_dir.cleanup()

    async def test_routes_registered(self):
        paths = {resource.canonical for resource in self.app.router.resources()}
        self.assertTrue({
            '/api/preview/proxy',
            '/api/preview/ports',
            '/api/preview/vercel',
            '/api/ide/migrations',
            '/api/ide/migrations/run',
            '/api/integrations/supabase/projects/{ref}/sql',
            '/api/sql/history',
        } <= paths)

    async def test_proxy_uses_configured_backend(self):
        self.assertEqual(self.manager.proxy.backend_url, 'http://127.0.0.1:1')
        self.assertIsNone(self.manager.proxy.api_key)

    async def test_unreachable_backend_renders_error_page(self):
        resp = await self.client.get('/api/preview/proxy', params={'sessionId': 'S', 'port': '3000'})
        self.assertEqual(resp.status, 502)
        self.assertEqual(resp.headers['Content-Type'], 'text/html; charset=utf-8')
        self.assertIn('3000', await resp.text())


class ServerManagerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.manager = ServerManager(make_config(self.tmp_dir.name, BACKEND_API_KEY='k'))

    def tearDown(self) -> None:
        self.tmp_dir.cleanup()

    async def test_start_refuses_busy_port(self):
        with patch('core.server_manager.check_port_availability', return_value=(False, 'Port 3100 is in use')):
            started = await self.manager.start()

        self.assertFalse(started)
        self.assertFalse(self.manager.is_running)
        self.assertEqual(self.manager.last_error_type, 'port')
        self.assertEqual(self.manager.get_status()['last_error']['details'], 'Port 3100 is in use')

    def test_backend_health_check(self):
        response = MagicMock(status_code=200)
        with patch('core.server_manager.requests.get', return_value=response) as get:
            self.assertTrue(self.manager.check_backend_status())

        self.assertEqual(get.call_args[0][0], 'http://localhost:4000/health')
        self.assertEqual(get.call_args[1]['headers'], {'X-API-Key': 'k'})

    def test_backend_health_check_failure_is_not_fatal(self):
        with patch('core.server_manager.requests.get', side_effect=requests.ConnectionError('refused')):
            self.assertFalse(self.manager.check_backend_status())


if __name__ == "__main__":
    unittest.main()
