# core/preview/error_page.py
"""HTML-страница ошибки для iframe превью"""

from html import escape
from typing import Union

_ERROR_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Preview unavailable</title>
<style>
  body {{ margin: 0; padding: 32px; background: #0d1117; color: #c9d1d9;
         font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Helvetica, Arial, sans-serif; }}
  h1 {{ margin: 0 0 12px; font-size: 20px; color: #f85149; }}
  p {{ margin: 0 0 16px; color: #8b949e; }}
  code {{ color: #c9d1d9; background: #161b22; padding: 2px 6px; border-radius: 4px; }}
  pre {{ margin: 0; padding: 16px; background: #161b22; border: 1px solid #30363d; border-radius: 6px;
        color: #f0883e; white-space: pre-wrap; word-break: break-word; }}
</style>
</head>
<body>
<h1>Unable to reach the dev server</h1>
<p>Make sure the dev server is running on port <code>{port}</code>.</p>
<pre>{message}</pre>
</body>
</html>
"""


def error_message(error: Union[BaseException, str]) -> str:
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    return str(error)


def render_error_page(error: Union[BaseException, str], port) -> str:
    """
    Собирает HTML документ с описанием ошибки

    Args:
        error: Исключение или текст ошибки
        port: Порт dev-сервера, на который шёл запрос

    Returns:
        str: Готовый HTML (отдаётся со статусом 502)
    """
    return _ERROR_PAGE_TEMPLATE.format(
        port=escape(str(port)),
        message=escape(error_message(error)),
    )
