import unittest

from multidict import CIMultiDict

from core.preview.content_classifier import (
    DEFAULT_CONTENT_TYPE,
    forwarded_headers,
    is_html,
    looks_like_html,
    resolve_content_type,
    should_rewrite,
)
from core.preview.error_page import render_error_page
from core.preview.models import InvalidPreviewRequest, ProxyRequest


class ContentClassifierTests(unittest.TestCase):
    def test_missing_content_type_defaults_to_html(self) -> None:
        content_type = resolve_content_type(CIMultiDict())
        self.assertEqual(content_type, DEFAULT_CONTENT_TYPE)
        self.assertTrue(is_html(content_type))

    def test_declared_content_type_kept(self) -> None:
        headers = CIMultiDict({'Content-Type': 'application/javascript'})
        self.assertEqual(resolve_content_type(headers), 'application/javascript')
        self.assertFalse(is_html('application/javascript'))

    def test_html_like_error_bodies(self) -> None:
        self.assertTrue(looks_like_html('  \n<!DOCTYPE html><html></html>'))
        self.assertTrue(looks_like_html('<html><body>boom</body></html>'))
        self.assertFalse(looks_like_html('{"error": "boom"}'))
        self.assertFalse(looks_like_html('Internal Server Error'))

    def test_rewrite_threshold(self) -> None:
        self.assertTrue(should_rewrite('text/html', 10, None))
        self.assertTrue(should_rewrite('text/html', 10, 0))
        self.assertTrue(should_rewrite('text/html', 10, 10))
        self.assertFalse(should_rewrite('text/html', 11, 10))
        self.assertFalse(should_rewrite('text/css', 10, None))

    def test_only_allow_listed_headers_forwarded(self) -> None:
        upstream = CIMultiDict({
            'Cache-Control': 'no-cache',
            'etag': '"abc"',
            'Last-Modified': 'Wed, 21 Oct 2015 07:28:00 GMT',
            'Content-Security-Policy': "default-src 'self'",
            'X-Custom': 'foo',
            'Set-Cookie': 'a=b',
        })
        self.assertEqual(forwarded_headers(upstream), {
            'Cache-Control': 'no-cache',
            'ETag': '"abc"',
            'Last-Modified': 'Wed, 21 Oct 2015 07:28:00 GMT',
        })


class ProxyRequestTests(unittest.TestCase):
    def test_defaults(self) -> None:
        request = ProxyRequest.from_query({'sessionId': 'abc'})
        self.assertEqual(request, ProxyRequest(session_id='abc', port=3000, path='/'))

    def test_missing_session_rejected(self) -> None:
        with self.assertRaises(InvalidPreviewRequest) as ctx:
            ProxyRequest.from_query({'port': '3000'})
        self.assertEqual(str(ctx.exception), 'Session ID required')

    def test_invalid_ports_rejected(self) -> None:
        for port in ('abc', '0', '65536', '-1'):
            with self.subTest(port=port):
                with self.assertRaises(InvalidPreviewRequest):
                    ProxyRequest.from_query({'sessionId': 'abc', 'port': port})


class ErrorPageTests(unittest.TestCase):
    def test_page_contains_port_and_message(self) -> None:
        html = render_error_page(ConnectionRefusedError('ECONNREFUSED'), 5173)
        self.assertTrue(html.startswith('<!DOCTYPE html>'))
        self.assertIn('5173', html)
        self.assertIn('<pre>ECONNREFUSED</pre>', html)

    def test_message_is_escaped(self) -> None:
        html = render_error_page('<script>alert(1)</script>', 3000)
        self.assertNotIn('<script>alert(1)</script>', html)
        self.assertIn('&lt;script&gt;', html)


if __name__ == "__main__":
    unittest.main()
