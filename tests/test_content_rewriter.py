import unittest
import warnings
from pathlib import Path

from core.preview import content_rewriter
from core.preview.content_rewriter import ContentRewriter, insert_base_tag, rewrite_urls
from core.preview.models import RewriteContext, build_proxy_base

SESSION = 'S'
PORT = 'P'
BASE = '/api/preview/proxy?sessionId=S&port=P&path='


def rewrite(html, inject_interceptor=False):
    context = RewriteContext(proxy_base=build_proxy_base(SESSION, PORT), inject_interceptor=inject_interceptor)
    return rewrite_urls(html, context)


class AttributeRewriteTests(unittest.TestCase):
    def test_proxy_base_format(self) -> None:
        self.assertEqual(build_proxy_base(SESSION, PORT), BASE)
        self.assertEqual(build_proxy_base('abc-123', 3000), '/api/preview/proxy?sessionId=abc-123&port=3000&path=')

    def test_root_relative_href_goes_through_proxy(self) -> None:
        result = rewrite('<a href="/x">x</a>')
        self.assertNotIn('href="/x"', result)
        self.assertIn(f'href="{BASE}%2Fx"', result)

    def test_src_and_action_rewritten(self) -> None:
        result = rewrite('<script src="/app.js"></script><form action="/login?next=/a"></form>')
        self.assertIn(f'src="{BASE}%2Fapp.js"', result)
        self.assertIn(f'action="{BASE}%2Flogin%3Fnext%3D%2Fa"', result)

    def test_single_quoted_attributes_keep_their_quotes(self) -> None:
        result = rewrite("<link rel='stylesheet' href='/style.css'>")
        self.assertIn(f"href='{BASE}%2Fstyle.css'", result)

    def test_protocol_relative_untouched(self) -> None:
        html = '<script src="//cdn.example.com/a.js"></script>'
        self.assertEqual(rewrite(html), html)

    def test_absolute_and_data_urls_untouched(self) -> None:
        html = (
            '<a href="https://example.com">e</a>'
            '<img src="data:image/png;base64,AAAA">'
            "<a href='http://example.com/x'>h</a>"
        )
        self.assertEqual(rewrite(html), html)

    def test_bare_slash_untouched(self) -> None:
        html = '<a href="/">home</a>'
        self.assertEqual(rewrite(html), html)

    def test_relative_paths_untouched(self) -> None:
        html = '<img src="images/a.png"><a href="#top">top</a>'
        self.assertEqual(rewrite(html), html)

    def test_unicode_path_encoded_like_encode_uri_component(self) -> None:
        result = rewrite('<a href="/café (1).html">c</a>')
        self.assertIn(f'href="{BASE}%2Fcaf%C3%A9%20(1).html"', result)


class SrcsetRewriteTests(unittest.TestCase):
    def test_descriptors_and_separators_preserved(self) -> None:
        result = rewrite('<img srcset="/a.jpg 1x, /b.jpg 2x">')
        self.assertIn(f'srcset="{BASE}%2Fa.jpg 1x, {BASE}%2Fb.jpg 2x"', result)

    def test_mixed_candidates(self) -> None:
        result = rewrite('<img srcset="//cdn.example.com/a.jpg 480w,/b.jpg 800w, https://x.io/c.jpg 1200w">')
        self.assertIn(
            f'srcset="//cdn.example.com/a.jpg 480w, {BASE}%2Fb.jpg 800w, https://x.io/c.jpg 1200w"',
            result
        )

    def test_descriptor_whitespace_kept(self) -> None:
        result = rewrite('<img srcset="/a.jpg   1x,  /b.jpg 2x">')
        self.assertIn(f'srcset="{BASE}%2Fa.jpg   1x, {BASE}%2Fb.jpg 2x"', result)

    def test_srcset_without_root_relative_urls_untouched(self) -> None:
        html = '<img srcset="https://x.io/a.jpg   1x,,//cdn.io/b.jpg 2x">'
        self.assertEqual(rewrite(html), html)

    def test_single_quoted_srcset(self) -> None:
        result = rewrite("<source srcset='/hero.webp'>")
        self.assertIn(f"srcset='{BASE}%2Fhero.webp'", result)


class InterceptorInjectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rewriter = ContentRewriter(RewriteContext.for_session(SESSION, PORT))
        self.script = self.rewriter.build_interceptor_script()

    def test_script_right_after_head(self) -> None:
        result = self.rewriter.rewrite('<html><head><title>T</title></head><body></body></html>')
        self.assertTrue(result.startswith('<html><head><script>'))
        self.assertLess(result.index('<script>'), result.index('<title>'))
        self.assertIn(self.script + '<title>', result)

    def test_head_with_attributes(self) -> None:
        result = self.rewriter.rewrite('<html lang="en"><head data-x="1"><title>T</title></head></html>')
        self.assertIn('<head data-x="1">' + self.script + '<title>', result)

    def test_header_element_is_not_head(self) -> None:
        result = self.rewriter.rewrite('<html><body><header>H</header></body></html>')
        self.assertTrue(result.startswith('<html>' + self.script))

    def test_html_with_attributes_without_head(self) -> None:
        result = self.rewriter.rewrite('<!DOCTYPE html><html lang="en"><body></body></html>')
        self.assertIn('<html lang="en">' + self.script + '<body>', result)

    def test_fragment_gets_script_prepended(self) -> None:
        result = self.rewriter.rewrite('<div><a href="/x">x</a></div>')
        self.assertTrue(result.startswith(self.script))
        self.assertTrue(result.endswith(f'<div><a href="{BASE}%2Fx">x</a></div>'))

    def test_script_injected_once(self) -> None:
        result = self.rewriter.rewrite('<head></head><head></head>')
        self.assertEqual(result.count('<script>'), 1)

    def test_script_patches_fetch_and_xhr_with_proxy_base(self) -> None:
        self.assertIn('window.fetch', self.script)
        self.assertIn('XMLHttpRequest', self.script)
        self.assertIn(f'"{BASE}"', self.script)

    def test_xhr_static_constants_preserved(self) -> None:
        self.assertIn('PatchedXHR[name] = OriginalXHR[name]', self.script)
        for name in ('UNSENT', 'OPENED', 'HEADERS_RECEIVED', 'LOADING', 'DONE'):
            self.assertIn(f"'{name}'", self.script)

    def test_module_compiles_without_escape_warnings(self) -> None:
        source = Path(content_rewriter.__file__).read_text(encoding='utf-8')
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            compile(source, content_rewriter.__file__, 'exec')
        self.assertIn(r'/^https?:\/\//i', self.script)

    def test_vercel_context_has_no_interceptor(self) -> None:
        context = RewriteContext.for_vercel('my-app.vercel.app')
        result = rewrite_urls('<head></head><img src="/logo.png">', context)
        self.assertNotIn('<script>', result)
        self.assertIn('src="/api/preview/vercel?url=my-app.vercel.app&path=%2Flogo.png"', result)


class BaseTagTests(unittest.TestCase):
    def test_base_tag_added_after_head(self) -> None:
        result = insert_base_tag('<html><head><title>T</title></head></html>', 'https://a.vercel.app/')
        self.assertIn('<head><base href="https://a.vercel.app/"><title>', result)

    def test_existing_base_kept(self) -> None:
        html = '<head><base href="/"></head>'
        self.assertEqual(insert_base_tag(html, 'https://a.vercel.app/'), html)


if __name__ == "__main__":
    unittest.main()
