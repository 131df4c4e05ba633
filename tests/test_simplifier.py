"""Tests for HTML simplification."""

import re

import pytest

from detect_cart.simplifier import extract_body, simplify_html


SAMPLES = [
    "<html><body>X<script>y</script></body></html>",
    "<html><head><style>p{}</style></head><body><p>a</p><svg><path d='M0'/></svg></body></html>",
    "<body class='x'><SCRIPT type='text/javascript'>if (a < b) {}</SCRIPT>keep</BODY>",
    "<div>no body here<style>.a{color:red}</style></div>",
    "<body>before<script>never closed",
    "<body>dangling</script> close</body>",
    "<scr<script></script>ipt>alert(1)</script>",
    "<body><svg><svg>nested</svg></svg>tail</body>",
    "",
    "plain text",
]

FORBIDDEN = re.compile(r"<script>|<style>|<svg>", re.IGNORECASE)


class TestExtractBody:
    """Test body extraction."""

    def test_returns_body_content(self):
        """Test that only the body content is kept."""
        assert extract_body("<html><head></head><body id='b'>X</body></html>") == "X"

    def test_without_body_returns_input(self):
        """Test documents without a body are passed through."""
        assert extract_body("<div>X</div>") == "<div>X</div>"


class TestSimplifyHtml:
    """Test simplify_html."""

    def test_strips_script_from_body(self):
        """Test the canonical cart page case."""
        assert simplify_html("<html><body>X<script>y</script></body></html>") == "X"

    def test_strips_style_and_svg(self):
        """Test style and svg blocks are removed."""
        html = "<body><style>.a{}</style><p class='total'>$1</p><svg viewBox='0 0 1 1'><g/></svg></body>"
        assert simplify_html(html) == "<p class='total'>$1</p>"

    def test_case_insensitive(self):
        """Test tags are matched regardless of case."""
        assert simplify_html("<body>a<ScRiPt>b</sCrIpT>c</body>") == "ac"

    def test_keeps_other_markup_verbatim(self):
        """Test surviving markup is not normalized."""
        html = "<body><div  data-x='1'>\n  <span>Subtotal</span>\n</div></body>"
        assert simplify_html(html) == "<div  data-x='1'>\n  <span>Subtotal</span>\n</div>"

    def test_unterminated_script_removed(self):
        """Test an unclosed script runs to the end of the body and is removed."""
        assert simplify_html("<body>before<script>never closed</body>") == "before"

    def test_unterminated_script_without_body_close(self):
        """Test a page with no </body> is kept whole, minus the open script."""
        assert simplify_html("<body>before<script>never closed") == "<body>before"

    def test_empty_input(self):
        """Test empty input stays empty."""
        assert simplify_html("") == ""

    @pytest.mark.parametrize("html", SAMPLES)
    def test_idempotent(self, html):
        """Test simplify(simplify(h)) == simplify(h)."""
        once = simplify_html(html)
        assert simplify_html(once) == once

    @pytest.mark.parametrize("html", SAMPLES)
    def test_no_forbidden_tags_remain(self, html):
        """Test no script, style or svg tag survives."""
        assert not FORBIDDEN.search(simplify_html(html))
