# core/preview/content_classifier.py
"""Выбор пути обработки ответа по Content-Type"""

from typing import Mapping, Optional

DEFAULT_CONTENT_TYPE = 'text/html; charset=utf-8'
HTML_CONTENT_TYPE = 'text/html; charset=utf-8'

# Заголовки upstream, которые пробрасываются клиенту (всё остальное, включая CSP, отбрасывается)
FORWARDED_HEADERS = {
    'cache-control': 'Cache-Control',
    'etag': 'ETag',
    'last-modified': 'Last-Modified',
}


def resolve_content_type(headers: Mapping[str, str]) -> str:
    """
    Возвращает Content-Type ответа

    Если заголовок отсутствует совсем, ответ считается HTML.
    """
    content_type = headers.get('content-type')
    if content_type is None:
        return DEFAULT_CONTENT_TYPE
    return content_type


def is_html(content_type: str) -> bool:
    return 'text/html' in content_type


def looks_like_html(text: str) -> bool:
    """Эвристика для тел ошибок: показываем их как HTML, если похоже на документ"""
    head = text.lstrip()[:5].lower()
    return head.startswith('<!') or head.startswith('<html')


def should_rewrite(content_type: str, body_size: int, max_rewrite_bytes: Optional[int] = None) -> bool:
    """
    Решает, нужно ли переписывать тело

    Args:
        content_type: Итоговый Content-Type (см. resolve_content_type)
        body_size: Размер тела в байтах
        max_rewrite_bytes: Порог размера; None или 0 - без ограничения

    Returns:
        bool: True если тело уходит в HTML rewriter
    """
    if not is_html(content_type):
        return False
    if max_rewrite_bytes and body_size > max_rewrite_bytes:
        return False
    return True


def forwarded_headers(upstream_headers: Mapping[str, str]) -> dict:
    """Копирует только разрешённые заголовки upstream"""
    headers = {}
    for key, name in FORWARDED_HEADERS.items():
        value = upstream_headers.get(key)
        if value:
            headers[name] = value
    return headers
