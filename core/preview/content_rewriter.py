# core/preview/content_rewriter.py
"""Модуль для перезаписи URL в HTML, отдаваемом dev-сервером через preview proxy"""

import json
import logging
import re

from core.preview.models import RewriteContext
from utils.url_utils import encode_uri_component, is_root_relative

logger = logging.getLogger(__name__)

_SKIPPED_PREFIXES = ('data:', 'http:', 'https:')

# Скрипт перехвата fetch/XMLHttpRequest. __PROXY_BASE__ заменяется JSON-строкой
_INTERCEPTOR_TEMPLATE = r"""<script>(function () {
  var PROXY_BASE = __PROXY_BASE__;
  function rewrite(url) {
    if (typeof url !== 'string') return url;
    if (url.charAt(0) !== '/' || url.charAt(1) === '/' || url.length < 2) return url;
    if (url.indexOf(PROXY_BASE) === 0) return url;
    return PROXY_BASE + encodeURIComponent(url);
  }
  function samePath(absolute) {
    try {
      var parsed = new URL(absolute, window.location.href);
      if (parsed.origin === window.location.origin) {
        return parsed.pathname + parsed.search + parsed.hash;
      }
    } catch (e) {}
    return null;
  }
  function rewriteRequest(input) {
    if (typeof URL !== 'undefined' && input instanceof URL) input = input.toString();
    if (typeof input === 'string') {
      if (/^https?:\/\//i.test(input)) {
        var path = samePath(input);
        return path === null ? input : rewrite(path);
      }
      return rewrite(input);
    }
    if (input && typeof input.url === 'string') {
      var requestPath = samePath(input.url);
      if (requestPath !== null) {
        var rewritten = rewrite(requestPath);
        if (rewritten !== requestPath) return new Request(rewritten, input);
      }
    }
    return input;
  }
  if (window.fetch) {
    var originalFetch = window.fetch;
    window.fetch = function (input, init) {
      return originalFetch.call(this, rewriteRequest(input), init);
    };
  }
  if (window.XMLHttpRequest) {
    var OriginalXHR = window.XMLHttpRequest;
    var originalOpen = OriginalXHR.prototype.open;
    var PatchedXHR = function () {
      var xhr = new OriginalXHR();
      xhr.open = function (method, url) {
        var args = Array.prototype.slice.call(arguments);
        args[1] = rewriteRequest(url);
        return originalOpen.apply(xhr, args);
      };
      return xhr;
    };
    PatchedXHR.prototype = OriginalXHR.prototype;
    ['UNSENT', 'OPENED', 'HEADERS_RECEIVED', 'LOADING', 'DONE'].forEach(function (name) {
      PatchedXHR[name] = OriginalXHR[name];
    });
    window.XMLHttpRequest = PatchedXHR;
  }
})();</script>"""


class ContentRewriter:
    """Класс для перезаписи root-relative URL в HTML контенте"""

    # Предкомпилированные регулярные выражения
    _DOUBLE_QUOTED_ATTR_PATTERN = re.compile(r'(href|src|action)="/([^"]*)"')
    _SINGLE_QUOTED_ATTR_PATTERN = re.compile(r"(href|src|action)='/([^']*)'")
    _SRCSET_PATTERN = re.compile(r'srcset=(["\'])(.*?)\1', re.DOTALL)
    _SRCSET_URL_PATTERN = re.compile(r'\s*(\S+)')

    # Точки вставки скрипта в порядке приоритета
    _INJECTION_PATTERNS = (
        re.compile(r'<head>'),
        re.compile(r'<head\s[^>]*>', re.IGNORECASE),
        re.compile(r'<html(?:\s[^>]*)?>', re.IGNORECASE),
    )

    def __init__(self, context: RewriteContext):
        """
        Args:
            context: Контекст перезаписи (proxy_base и нужен ли скрипт перехвата)
        """
        self.context = context
        self.proxy_base = context.proxy_base

    def rewrite(self, html: str) -> str:
        """
        Перезаписывает URL в HTML документе

        Args:
            html: Декодированный HTML

        Returns:
            str: HTML со ссылками через прокси и (опционально) скриптом перехвата
        """
        html = self._rewrite_attributes(html)
        html = self._rewrite_srcset(html)
        if self.context.inject_interceptor:
            html = self.inject_script(html, self.build_interceptor_script())
        return html

    def proxied(self, url: str) -> str:
        return f"{self.proxy_base}{encode_uri_component(url)}"

    def _rewrite_attributes(self, html: str) -> str:
        """Замена href/src/action со значениями вида /path"""

        def replace(match, quote):
            attr, rest = match.group(1), match.group(2)
            # "/" целиком, "//host" и встроенные/абсолютные URL не трогаем
            if not rest or rest.startswith('/') or rest.startswith(_SKIPPED_PREFIXES):
                return match.group(0)
            return f"{attr}={quote}{self.proxied('/' + rest)}{quote}"

        html = self._DOUBLE_QUOTED_ATTR_PATTERN.sub(lambda m: replace(m, '"'), html)
        html = self._SINGLE_QUOTED_ATTR_PATTERN.sub(lambda m: replace(m, "'"), html)
        return html

    def _rewrite_srcset(self, html: str) -> str:
        """Замена URL в srcset: меняется только первый токен кандидата, дескрипторы (1x, 480w ...) как есть"""

        def replace(match):
            quote, value = match.group(1), match.group(2)
            candidates = []
            changed = False
            for candidate in value.split(','):
                token = self._SRCSET_URL_PATTERN.match(candidate)
                if token and is_root_relative(token.group(1)):
                    candidate = self.proxied(token.group(1)) + candidate[token.end():]
                    changed = True
                candidate = candidate.strip()
                if candidate:
                    candidates.append(candidate)
            if not changed:
                return match.group(0)
            return f"srcset={quote}{', '.join(candidates)}{quote}"

        return self._SRCSET_PATTERN.sub(replace, html)

    def build_interceptor_script(self) -> str:
        return _INTERCEPTOR_TEMPLATE.replace('__PROXY_BASE__', json.dumps(self.proxy_base))

    @classmethod
    def inject_script(cls, html: str, script: str) -> str:
        """
        Вставляет скрипт сразу после <head>, <head ...>, <html ...>
        или в самое начало документа, если таких тегов нет
        """
        for pattern in cls._INJECTION_PATTERNS:
            match = pattern.search(html)
            if match:
                return f"{html[:match.end()]}{script}{html[match.end():]}"

        logger.debug("ContentRewriter: no <head>/<html> tag, prepending interceptor")
        return script + html


def rewrite_urls(html: str, context: RewriteContext) -> str:
    """Точка расширения: заменить regex-реализацию можно, не трогая вызывающий код"""
    return ContentRewriter(context).rewrite(html)


def insert_base_tag(html: str, base_href: str) -> str:
    """Добавляет <base href> после первого <head>, если в документе ещё нет <base"""
    if '<base' in html:
        return html
    return html.replace('<head>', f'<head><base href="{base_href}">', 1)
