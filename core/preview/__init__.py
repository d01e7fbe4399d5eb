"""
Dev-server preview proxy.

Requests are forwarded to the backend, HTML responses are rewritten so that
root-relative links keep working inside the preview iframe.
"""

from core.preview.content_rewriter import ContentRewriter, rewrite_urls
from core.preview.models import ProxyRequest, RewriteContext, UpstreamResponse
from core.preview.preview_proxy import PreviewProxy

__all__ = [
    'ContentRewriter',
    'PreviewProxy',
    'ProxyRequest',
    'RewriteContext',
    'UpstreamResponse',
    'rewrite_urls',
]
