# core/server_manager.py
import asyncio
import logging
from typing import Optional

import requests
from aiohttp import web

from core.config_manager import ConfigManager, get_config
from core.integrations.routes import IntegrationRoutes
from core.preview.preview_proxy import PreviewProxy
from utils.port_utils import check_port_availability

logger = logging.getLogger(__name__)


class ServerManager:
    def __init__(self, config: Optional[ConfigManager] = None):
        self.config = config or get_config()
        self.is_running = False
        self.host = self.config.get('server.host', '127.0.0.1')
        self.port = int(self.config.get('server.port', 3100))
        self.proxy = None
        self.integrations = None
        self.runner = None
        self.site = None
        self._stop_event = None

        # Error tracking
        self.last_error_type = None  # 'port', 'server'
        self.last_error_details = None

    def create_app(self, preview_proxy: Optional[PreviewProxy] = None,
                   integrations: Optional[IntegrationRoutes] = None) -> web.Application:
        """
        Собирает aiohttp приложение со всеми маршрутами

        Args:
            preview_proxy: Готовый прокси (для тестов), иначе создаётся из конфига
            integrations: Готовые маршруты интеграций (для тестов)
        """
        backend = self.config.get_backend_config()

        self.proxy = preview_proxy or PreviewProxy(
            backend_url=backend.get('url') or 'http://localhost:4000',
            api_key=backend.get('api_key') or None,
            timeout=backend.get('timeout'),
            max_rewrite_bytes=self.config.get('preview.max_rewrite_bytes'),
        )
        self.integrations = integrations or IntegrationRoutes(self.config.get_integrations_config())

        app = web.Application()
        self.proxy.register_routes(app)
        self.integrations.register_routes(app)

        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app):
        await self.proxy.initialize()
        await self.integrations.initialize()

    async def _on_cleanup(self, app):
        await self.proxy.cleanup()
        await self.integrations.cleanup()

    async def start(self) -> bool:
        """
        Запуск HTTP сервера

        Returns:
            bool: True если успешно запущен
        """
        if self.is_running:
            logger.warning("⚠️ Server already running")
            return False

        port_available, port_message = check_port_availability(self.port, self.host)
        if not port_available:
            logger.error(f"❌ {port_message}")
            self.last_error_type = 'port'
            self.last_error_details = port_message
            return False

        try:
            app = self.create_app()

            self.runner = web.AppRunner(app, access_log=None)
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, host=self.host, port=self.port)
            await self.site.start()
        except OSError as e:
            logger.error(f"❌ Failed to start server: {e}")
            self.last_error_type = 'server'
            self.last_error_details = str(e)
            await self.stop()
            return False

        self.is_running = True
        self._stop_event = asyncio.Event()
        logger.info(f"✅ Preview gateway listening on http://{self.host}:{self.port}")
        logger.info(f"🌐 Backend: {self.proxy.backend_url}")
        return True

    async def stop(self):
        """Остановка сервера и закрытие клиентских сессий"""
        if self.runner:
            logger.info("🛑 Stopping server...")
            await self.runner.cleanup()
            self.runner = None
            self.site = None
            logger.info("✅ Server stopped")

        self.is_running = False
        if self._stop_event:
            self._stop_event.set()

    async def serve_forever(self) -> bool:
        """Запускает сервер и ждёт вызова stop()"""
        if not await self.start():
            return False

        await asyncio.get_running_loop().run_in_executor(None, self.check_backend_status)
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()
        return True

    def check_backend_status(self) -> bool:
        """
        Проверяет доступность backend через GET /health

        Ошибка не мешает работе: превью просто покажет страницу ошибки.

        Returns:
            bool: True если backend ответил 200
        """
        backend = self.config.get_backend_config()
        backend_url = (backend.get('url') or '').rstrip('/')
        if not backend_url:
            return False

        health_url = f"{backend_url}/health"
        headers = {'X-API-Key': backend['api_key']} if backend.get('api_key') else {}

        try:
            response = requests.get(
                health_url,
                headers=headers,
                timeout=5,
                proxies={"http": None, "https": None}  # Отключаем системный прокси для localhost
            )
        except requests.RequestException as e:
            logger.warning(
                f"⚠️ Cannot reach backend!\n"
                f"   URL: {health_url}\n"
                f"   Error: {e}"
            )
            return False

        if response.status_code == 200:
            logger.info(f"✅ Backend is healthy: {health_url}")
            return True

        logger.warning(f"⚠️ Backend health check returned HTTP {response.status_code}")
        return False

    def get_status(self) -> dict:
        """Возвращает статус сервера"""
        status = {
            'running': self.is_running,
            'host': self.host,
            'port': self.port,
            'backend_url': self.proxy.backend_url if self.proxy else self.config.get('backend.url'),
        }
        if self.last_error_type:
            status['last_error'] = {'type': self.last_error_type, 'details': self.last_error_details}
        return status


# Синглтон для глобального доступа
_server_manager = None


def get_server_manager() -> ServerManager:
    """Возвращает глобальный экземпляр ServerManager"""
    global _server_manager
    if _server_manager is None:
        _server_manager = ServerManager()
    return _server_manager
