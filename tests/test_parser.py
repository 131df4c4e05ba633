"""Tests for selector extraction."""

from detect_cart.parser import NO_ANSWER_PLACEHOLDER, parse_answer, parse_selector


class TestParseSelector:
    """Test parse_selector."""

    def test_last_output_line_wins(self):
        """Test the last output: line is returned, trimmed."""
        text = (
            "reason...\n"
            "output: document.querySelector('.total')  \n"
            "output:document.querySelector('.grand')"
        )
        assert parse_selector(text) == "document.querySelector('.grand')"

    def test_output_line_trimmed(self):
        """Test surrounding whitespace is dropped."""
        assert parse_selector("output:   #subtotal   ") == "#subtotal"

    def test_falls_back_to_last_query_selector(self):
        """Test the querySelector fallback picks the last expression."""
        text = "foo\ndocument.querySelector('.a')\nbar\ndocument.querySelector('.b')"
        assert parse_selector(text) == "document.querySelector('.b')"

    def test_query_selector_fallback_keeps_closing_paren(self):
        """Test the fallback returns the whole call, tolerating a cut-off reply."""
        assert parse_selector("Use document.querySelector('.cart-subtotal');") == (
            "document.querySelector('.cart-subtotal')"
        )
        assert parse_selector("document.querySelector('.cut'") == "document.querySelector('.cut'"

    def test_output_line_beats_query_selector(self):
        """Test an output: line wins even when a querySelector comes later."""
        text = "output: .cart-total\nSee also document.querySelector('.other')"
        assert parse_selector(text) == ".cart-total"

    def test_nothing_found(self):
        """Test replies without a selector yield None."""
        assert parse_selector("I could not find it.") is None
        assert parse_selector("") is None
        assert parse_selector(None) is None


class TestParseAnswer:
    """Test parse_answer."""

    def test_builds_parsed_answer(self):
        """Test fields are filled from the reply."""
        answer = parse_answer("chat-model-gemini", "gemini-2.0-flash", "output:#s1")

        assert answer.model_id == "chat-model-gemini"
        assert answer.model_display_name == "gemini-2.0-flash"
        assert answer.raw_text == "output:#s1"
        assert answer.extracted_selector == "#s1"
        assert answer.to_dict()["answer"] == "#s1"

    def test_unparsed_answer_keeps_raw_text(self):
        """Test an unparsable reply keeps its text and has no selector."""
        answer = parse_answer("m", "M", "no idea")

        assert answer.extracted_selector is None
        assert answer.raw_text == "no idea"
        assert NO_ANSWER_PLACEHOLDER == "無法解析出有效答案"
