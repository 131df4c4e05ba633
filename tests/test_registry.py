"""Tests for the model registry and model selection."""

import json

import pytest

from conftest import mock_descriptor
from detect_cart.config import get_disabled_models, set_disabled_models
from detect_cart.errors import InputInvalid
from detect_cart.registry import DEFAULT_MODELS, ModelRegistry
from detect_cart.selection import ModelSelection, resolve_selection, selection_cookie_value


class TestModelRegistry:
    """Test ModelRegistry."""

    def setup_method(self):
        """Set up test fixtures."""
        self.registry = ModelRegistry.default(disabled={})

    def test_default_catalogue(self):
        """Test the stock catalogue ids."""
        ids = [m.id for m in self.registry.all()]
        assert ids == [
            "chat-model-small",
            "chat-model-large",
            "chat-model-reasoning",
            "chat-model-gemini",
            "chat-model-gemini-pro",
            "chat-model-claude",
        ]
        assert len(self.registry) == len(DEFAULT_MODELS)

    def test_reasoning_model_extracts_think_blocks(self):
        """Test the reasoning model is tagged for <think> extraction."""
        assert self.registry.get("chat-model-reasoning").reasoning_tag == "think"

    def test_lookup(self):
        """Test get, require and membership."""
        assert self.registry.get("chat-model-gemini").display_name == "gemini-2.0-flash"
        assert self.registry.get("nope") is None
        assert "chat-model-claude" in self.registry
        assert "nope" not in self.registry

        with pytest.raises(InputInvalid):
            self.registry.require("nope")

    def test_display_name_falls_back_to_id(self):
        """Test unknown ids display as themselves."""
        assert self.registry.display_name("legacy-model") == "legacy-model"

    def test_disabled_override(self):
        """Test deploy-time overrides disable a model but keep it listed."""
        registry = ModelRegistry.default(disabled={"chat-model-claude": "maintenance"})

        assert registry.enabled("chat-model-claude") is False
        claude = registry.get("chat-model-claude")
        assert claude.disabled_reason == "maintenance"
        assert claude.to_dict()["disabledReason"] == "maintenance"
        assert registry.enabled("chat-model-gemini") is True
        assert registry.enabled("nope") is False

    def test_runtime_disabled_models(self):
        """Test set_disabled_models feeds new default registries."""
        previous = get_disabled_models()
        try:
            set_disabled_models({"chat-model-large": "quota"})
            registry = ModelRegistry.default()
            assert registry.enabled("chat-model-large") is False
        finally:
            set_disabled_models(previous)

    def test_duplicate_ids_rejected(self):
        """Test the catalogue cannot contain the same id twice."""
        with pytest.raises(ValueError):
            ModelRegistry([mock_descriptor("m1"), mock_descriptor("m1")])


class TestResolveSelection:
    """Test resolve_selection."""

    def setup_method(self):
        """Set up test fixtures."""
        self.registry = ModelRegistry.default(disabled={})

    def test_defaults_without_cookies(self):
        """Test an empty request falls back to the default model."""
        selection = resolve_selection({}, self.registry)

        assert selection.model_ids == ["chat-model-gemini"]
        assert selection.default_model_id == "chat-model-gemini"
        assert selection.arbiter_model_id is None

    def test_reads_models_cookie(self):
        """Test the detect-cart-models cookie is a JSON list of ids."""
        cookies = {"detect-cart-models": json.dumps(["chat-model-claude", "chat-model-small"])}

        selection = resolve_selection(cookies, self.registry)

        assert selection.model_ids == ["chat-model-claude", "chat-model-small"]

    def test_invalid_cookie_falls_back(self):
        """Test garbage cookies resolve to the default."""
        for raw in ("not json", "{}", "[]", "[1, 2]"):
            selection = resolve_selection({"detect-cart-models": raw}, self.registry)
            assert selection.model_ids == ["chat-model-gemini"]

    def test_unknown_ids_dropped(self):
        """Test ids missing from the registry are ignored."""
        cookies = {"detect-cart-models": json.dumps(["gone", "chat-model-large", "chat-model-large"])}

        selection = resolve_selection(cookies, self.registry)

        assert selection.model_ids == ["chat-model-large"]

    def test_explicit_ids_win(self):
        """Test request ids override the cookie."""
        cookies = {"detect-cart-models": json.dumps(["chat-model-claude"])}

        selection = resolve_selection(cookies, self.registry, model_ids=["chat-model-small"])

        assert selection.model_ids == ["chat-model-small"]

    def test_default_model_cookie(self):
        """Test the chat-model cookie sets the default model."""
        selection = resolve_selection({"chat-model": "chat-model-claude"}, self.registry)

        assert selection.default_model_id == "chat-model-claude"
        assert selection.model_ids == ["chat-model-claude"]

    def test_arbiter(self):
        """Test explicit arbiter and the consensus default."""
        explicit = resolve_selection({}, self.registry, arbiter_model_id="chat-model-claude")
        default = resolve_selection({}, self.registry, consensus=True)

        assert explicit.arbiter_model_id == "chat-model-claude"
        assert default.arbiter_model_id == "chat-model-gemini"

    def test_to_dict(self):
        """Test the UI field names."""
        selection = ModelSelection(["a"], "a", "b")
        assert selection.to_dict() == {
            "selectedModelIds": ["a"],
            "selectedModelId": "a",
            "arbiterModelId": "b",
        }

    def test_cookie_value_round_trips(self):
        """Test the cookie value is read back by resolve_selection."""
        value = selection_cookie_value(["chat-model-small", "chat-model-small", "chat-model-claude"])

        assert value == '["chat-model-small","chat-model-claude"]'
        selection = resolve_selection({"detect-cart-models": value}, self.registry)
        assert selection.model_ids == ["chat-model-small", "chat-model-claude"]
