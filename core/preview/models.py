# core/preview/models.py
"""Per-request entities of the preview proxy. Nothing here is persisted."""

from dataclasses import dataclass, field
from typing import Mapping

from multidict import CIMultiDict

from utils.url_utils import encode_uri_component

DEFAULT_PORT = 3000
DEFAULT_PATH = '/'

PREVIEW_PROXY_PATH = '/api/preview/proxy'
VERCEL_PROXY_PATH = '/api/preview/vercel'


class InvalidPreviewRequest(ValueError):
    """Параметры запроса не прошли валидацию (ответ 400 без обращения к backend)"""


@dataclass(frozen=True)
class ProxyRequest:
    session_id: str
    port: int = DEFAULT_PORT
    path: str = DEFAULT_PATH

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> 'ProxyRequest':
        """
        Собирает запрос из query-параметров sessionId / port / path

        Raises:
            InvalidPreviewRequest: нет sessionId или порт вне диапазона 1-65535
        """
        session_id = query.get('sessionId')
        if not session_id:
            raise InvalidPreviewRequest('Session ID required')

        raw_port = query.get('port') or str(DEFAULT_PORT)
        try:
            port = int(raw_port)
        except ValueError:
            raise InvalidPreviewRequest('Invalid port')
        if not 1 <= port <= 65535:
            raise InvalidPreviewRequest('Invalid port')

        path = query.get('path') or DEFAULT_PATH
        return cls(session_id=session_id, port=port, path=path)


@dataclass
class UpstreamResponse:
    status_code: int
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body_bytes: bytes = b''

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def text(self) -> str:
        return self.body_bytes.decode('utf-8', errors='replace')


@dataclass(frozen=True)
class RewriteContext:
    proxy_base: str
    inject_interceptor: bool = True

    @classmethod
    def for_session(cls, session_id: str, port) -> 'RewriteContext':
        return cls(proxy_base=build_proxy_base(session_id, port))

    @classmethod
    def for_vercel(cls, deployment_url: str) -> 'RewriteContext':
        proxy_base = f"{VERCEL_PROXY_PATH}?url={encode_uri_component(deployment_url)}&path="
        return cls(proxy_base=proxy_base, inject_interceptor=False)


def build_proxy_base(session_id: str, port) -> str:
    """Префикс, к которому дописывается закодированный исходный путь"""
    return (
        f"{PREVIEW_PROXY_PATH}?sessionId={encode_uri_component(session_id)}"
        f"&port={encode_uri_component(port)}&path="
    )
