# utils/url_utils.py
from urllib.parse import quote

# Characters left unescaped by JavaScript's encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"


def encode_uri_component(value) -> str:
    """Кодирует значение так же, как encodeURIComponent в браузере"""
    return quote(str(value), safe=_URI_COMPONENT_SAFE)


def is_root_relative(url: str) -> bool:
    """True для путей вида /foo, но не для //host/foo и не для голого /"""
    return url.startswith('/') and len(url) > 1 and not url.startswith('//')
