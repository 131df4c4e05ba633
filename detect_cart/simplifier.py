"""
HTML simplification for LLM prompts.

Scripts, styles and SVGs are cut from the page body before it is sent to a
model. Matching is regex-level; whatever survives is kept byte-for-byte.
"""

import re

_FLAGS = re.IGNORECASE | re.DOTALL

_BODY_RE = re.compile(r"<body\b[^>]*>(.*)</body\s*>", _FLAGS)

_STRIPPED_TAGS = ("script", "style", "svg")

_BLOCK_RES = [
    re.compile(rf"<{tag}\b[^>]*>.*?</{tag}\s*>", _FLAGS) for tag in _STRIPPED_TAGS
]
# Leftovers from nesting or truncated pages
_STRAY_CLOSE_RES = [re.compile(rf"</{tag}\s*>", _FLAGS) for tag in _STRIPPED_TAGS]
_UNTERMINATED_RES = [re.compile(rf"<{tag}\b.*\Z", _FLAGS) for tag in _STRIPPED_TAGS]


def extract_body(html: str) -> str:
    """Return the content of ``<body>``, or the whole document if there is none."""
    match = _BODY_RE.search(html)
    if match is None:
        return html
    return match.group(1)


def _strip_once(html: str) -> str:
    text = extract_body(html)
    for pattern in _BLOCK_RES:
        text = pattern.sub("", text)
    for pattern in _STRAY_CLOSE_RES:
        text = pattern.sub("", text)
    for pattern in _UNTERMINATED_RES:
        text = pattern.sub("", text)
    return text.strip()


def simplify_html(html: str) -> str:
    """
    Simplify a cart page for the analysis prompt.

    Keeps the body, drops ``<script>``, ``<style>`` and ``<svg>`` spans.
    Passes repeat until nothing changes, which removes nested spans and
    makes the function idempotent.

    Args:
        html: Raw page HTML

    Returns:
        Simplified HTML
    """
    if not html:
        return ""

    current = html
    while True:
        simplified = _strip_once(current)
        if simplified == current:
            return simplified
        current = simplified
