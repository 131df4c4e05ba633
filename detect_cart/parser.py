"""
Selector extraction from free-form model replies.

Models tend to show examples while reasoning, so the *last* match is the
answer. Strategy order matters: the explicit ``output:`` line always wins
over a bare ``document.querySelector(...)`` mention.
"""

import re
from typing import Optional

from detect_cart.models import ParsedAnswer

OUTPUT_LINE_RE = re.compile(r"output:\s*(.+)")
QUERY_SELECTOR_RE = re.compile(r"document\.querySelector\('(.+?)'\)?")

NO_ANSWER_PLACEHOLDER = "無法解析出有效答案"


def _parse_output_line(raw_text: str) -> Optional[str]:
    matches = OUTPUT_LINE_RE.findall(raw_text)
    if not matches:
        return None
    value = matches[-1].strip()
    return value or None


def _parse_query_selector(raw_text: str) -> Optional[str]:
    last = None
    for match in QUERY_SELECTOR_RE.finditer(raw_text):
        last = match
    if last is None:
        return None
    return last.group(0)


def parse_selector(raw_text: Optional[str]) -> Optional[str]:
    """
    Extract the proposed selector from a model reply.

    Args:
        raw_text: The model's full reply

    Returns:
        The trimmed payload of the last ``output:`` line, else the last
        ``document.querySelector('...')`` expression, else None.

    Example:
        >>> parse_selector("a\\noutput: document.querySelector('.x')  ")
        "document.querySelector('.x')"
    """
    if not raw_text:
        return None
    return _parse_output_line(raw_text) or _parse_query_selector(raw_text)


def parse_answer(model_id: str, display_name: str, raw_text: str) -> ParsedAnswer:
    """Build a ParsedAnswer for one model's reply."""
    return ParsedAnswer(
        model_id=model_id,
        model_display_name=display_name,
        raw_text=raw_text,
        extracted_selector=parse_selector(raw_text),
    )
