# core/preview/preview_proxy.py
import json
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from aiohttp import web, ClientSession, TCPConnector, ClientTimeout
from multidict import CIMultiDict

from core.preview.content_classifier import (
    HTML_CONTENT_TYPE,
    forwarded_headers,
    is_html,
    looks_like_html,
    resolve_content_type,
    should_rewrite,
)
from core.preview.content_rewriter import insert_base_tag, rewrite_urls
from core.preview.error_page import error_message, render_error_page
from core.preview.models import (
    PREVIEW_PROXY_PATH,
    VERCEL_PROXY_PATH,
    InvalidPreviewRequest,
    ProxyRequest,
    RewriteContext,
    UpstreamResponse,
)
from utils.url_utils import encode_uri_component

logger = logging.getLogger(__name__)

PORTS_PATH = '/api/preview/ports'

FRAME_HEADERS = {'X-Frame-Options': 'SAMEORIGIN'}

VERCEL_DEFAULT_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'User-Agent': 'Mozilla/5.0 PreviewGateway',
}


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _is_vercel_host(url: str) -> bool:
    return (urlparse(url).hostname or '').endswith('.vercel.app')


class PreviewProxy:
    def __init__(self, backend_url: str, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, max_rewrite_bytes: Optional[int] = None):
        """
        Args:
            backend_url: URL backend сервера, на котором крутятся dev-серверы
            api_key: Значение X-API-Key (если не задан, заголовок не отправляется)
            timeout: Общий таймаут запроса к backend в секундах (None - таймаут aiohttp по умолчанию)
            max_rewrite_bytes: HTML больше этого размера отдаётся без перезаписи (None/0 - без лимита)
        """
        self.backend_url = backend_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.max_rewrite_bytes = max_rewrite_bytes

        # Connection pool для переиспользования соединений
        self.connector = None
        self.session = None

    async def initialize(self):
        """Инициализация connection pool"""
        if self.connector is None:
            self.connector = TCPConnector(
                limit=100,
                ttl_dns_cache=300,
                enable_cleanup_closed=True
            )

        if self.session is None:
            if self.timeout:
                self.session = ClientSession(connector=self.connector, timeout=ClientTimeout(total=self.timeout))
            else:
                self.session = ClientSession(connector=self.connector)

    async def cleanup(self):
        """Очистка ресурсов"""
        if self.session:
            await self.session.close()
            self.session = None
        if self.connector:
            await self.connector.close()
            self.connector = None

    def register_routes(self, app: web.Application):
        app.router.add_get(PREVIEW_PROXY_PATH, self.handle_proxy)
        app.router.add_get(PORTS_PATH, self.handle_ports)
        app.router.add_get(VERCEL_PROXY_PATH, self.handle_vercel)

    def build_target_url(self, proxy_request: ProxyRequest) -> str:
        return (
            f"{self.backend_url}{PREVIEW_PROXY_PATH}"
            f"?sessionId={encode_uri_component(proxy_request.session_id)}"
            f"&port={proxy_request.port}"
            f"&path={encode_uri_component(proxy_request.path)}"
        )

    def build_backend_headers(self, extra: Optional[dict] = None) -> dict:
        headers = {}
        if self.api_key:
            headers['X-API-Key'] = self.api_key
        if extra:
            headers.update(extra)
        return headers

    async def fetch_upstream(self, url: str, headers: dict) -> UpstreamResponse:
        """
        Выполняет GET и полностью читает тело ответа в память

        Returns:
            UpstreamResponse: статус, заголовки (case-insensitive) и тело
        """
        await self.initialize()

        async with self.session.get(url, headers=headers) as response:
            body = await response.read()
            return UpstreamResponse(
                status_code=response.status,
                headers=CIMultiDict(response.headers),
                body_bytes=body
            )

    async def handle_proxy(self, request: web.Request) -> web.Response:
        """Проксирует запрос превью на dev-сервер через backend"""
        try:
            proxy_request = ProxyRequest.from_query(request.query)
        except InvalidPreviewRequest as e:
            return web.json_response({'error': str(e)}, status=400)

        target_url = self.build_target_url(proxy_request)
        # Без сжатия: тело HTML нужно переписывать как текст
        headers = self.build_backend_headers({'Accept-Encoding': 'identity'})

        try:
            upstream = await self.fetch_upstream(target_url, headers)
        except Exception as e:
            logger.error(f"[Preview Proxy] Error: {error_message(e)}")
            return self.error_response(e, proxy_request.port)

        return self.build_response(proxy_request, upstream)

    def build_response(self, proxy_request: ProxyRequest, upstream: UpstreamResponse) -> web.Response:
        """Выбирает способ отдачи ответа upstream клиенту"""
        headers = dict(FRAME_HEADERS)

        if not upstream.ok:
            error_text = upstream.text()
            logger.error(f"[Preview Proxy] Backend error: {upstream.status_code} {error_text[:500]}")
            if looks_like_html(error_text):
                headers['Content-Type'] = HTML_CONTENT_TYPE
            else:
                headers['Content-Type'] = resolve_content_type(upstream.headers)
            return web.Response(body=upstream.body_bytes, status=upstream.status_code, headers=headers)

        content_type = resolve_content_type(upstream.headers)
        headers.update(forwarded_headers(upstream.headers))

        if should_rewrite(content_type, len(upstream.body_bytes), self.max_rewrite_bytes):
            context = RewriteContext.for_session(proxy_request.session_id, proxy_request.port)
            html = rewrite_urls(upstream.text(), context)
            headers['Content-Type'] = HTML_CONTENT_TYPE
            return web.Response(body=html.encode('utf-8'), status=upstream.status_code, headers=headers)

        if is_html(content_type):
            logger.warning(
                f"[Preview Proxy] HTML body of {len(upstream.body_bytes)} bytes exceeds rewrite limit, "
                f"passing through unmodified: {proxy_request.path}"
            )

        headers['Content-Type'] = content_type
        return web.Response(body=upstream.body_bytes, status=upstream.status_code, headers=headers)

    @staticmethod
    def error_response(error, port) -> web.Response:
        return web.Response(
            body=render_error_page(error, port).encode('utf-8'),
            status=502,
            headers={**FRAME_HEADERS, 'Content-Type': HTML_CONTENT_TYPE}
        )

    async def handle_ports(self, request: web.Request) -> web.Response:
        """Список портов dev-серверов сессии (запрашивается у backend)"""
        session_id = request.query.get('sessionId')
        if not session_id:
            return web.json_response({'error': 'Session ID required'}, status=400)

        url = f"{self.backend_url}{PORTS_PATH}?sessionId={encode_uri_component(session_id)}"

        try:
            upstream = await self.fetch_upstream(url, self.build_backend_headers())
            data = json.loads(upstream.body_bytes)
        except Exception as e:
            logger.error(f"[Preview Ports] Error: {error_message(e)}")
            return web.json_response({'ports': [], 'scannedAt': _utc_timestamp()})

        return web.json_response(data, status=upstream.status_code)

    async def handle_vercel(self, request: web.Request) -> web.Response:
        """
        Превью деплоя Vercel

        Ответ отдаётся без X-Frame-Options, чтобы деплой можно было встроить в iframe.
        """
        url = request.query.get('url')
        path = request.query.get('path') or '/'

        if not url:
            return web.json_response({'error': 'URL parameter required'}, status=400)

        target_url = url if url.startswith('https://') else f"https://{url.replace('http://', '', 1)}"
        if not _is_vercel_host(target_url):
            return web.json_response({'error': 'Only Vercel URLs are supported'}, status=400)
        if not path.startswith('/'):
            return web.json_response({'error': 'Invalid path'}, status=400)

        target_url = target_url.rstrip('/')
        # Итоговый URL проверяется повторно: path не должен менять хост
        if not _is_vercel_host(f"{target_url}{path}"):
            return web.json_response({'error': 'Only Vercel URLs are supported'}, status=400)

        request_headers = {
            name: request.headers.get(name) or default
            for name, default in VERCEL_DEFAULT_HEADERS.items()
        }

        logger.info(f"[Vercel Preview] Proxying: {target_url}{path}")

        try:
            upstream = await self.fetch_upstream(f"{target_url}{path}", request_headers)
        except Exception as e:
            logger.error(f"[Vercel Preview] Error: {error_message(e)}")
            return web.json_response(
                {'error': f"Failed to fetch deployment: {error_message(e)}"},
                status=502
            )

        content_type = upstream.headers.get('content-type') or 'text/html'
        headers = forwarded_headers(upstream.headers)

        if is_html(content_type):
            html = rewrite_urls(upstream.text(), RewriteContext.for_vercel(url))
            html = insert_base_tag(html, f"{target_url}/")
            headers['Content-Type'] = HTML_CONTENT_TYPE
            return web.Response(body=html.encode('utf-8'), status=upstream.status_code, headers=headers)

        headers['Content-Type'] = content_type
        return web.Response(body=upstream.body_bytes, status=upstream.status_code, headers=headers)
