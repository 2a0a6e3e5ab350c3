"""Tests for LLM providers and the breakage oracle."""

from unittest.mock import MagicMock

from reviewgraph import llm
from reviewgraph.llm import (
    AnthropicProvider,
    GeminiProvider,
    LLMBreakageOracle,
    OllamaProvider,
    OpenAIProvider,
    build_breakage_prompt,
    parse_predictions,
)


class TestParsePredictions:
    """Test extraction of predictions from model replies."""

    def test_fenced_json(self):
        reply = (
            "```json\n"
            '[{"scenario": "Callers break", "probability": "HIGH", "impact": "500s", '
            '"affectedFiles": ["a.py"], "mitigation": "Update callers"}]\n'
            "```"
        )
        predictions = parse_predictions(reply)

        assert len(predictions) == 1
        assert predictions[0].scenario == "Callers break"
        assert predictions[0].probability == "high"
        assert predictions[0].affected_files == ["a.py"]

    def test_array_inside_prose(self):
        reply = 'Here you go:\n[{"scenario": "x", "affected_files": ["b.py"]}]\nThanks!'
        predictions = parse_predictions(reply)
        assert predictions[0].probability == "medium"
        assert predictions[0].affected_files == ["b.py"]

    def test_invalid_entries_are_dropped(self):
        reply = '[{"scenario": ""}, "text", {"scenario": "ok", "probability": "certain"}]'
        predictions = parse_predictions(reply)
        assert [p.scenario for p in predictions] == ["ok"]
        assert predictions[0].probability == "medium"

    def test_empty_array(self):
        assert parse_predictions("[]") == []

    def test_unusable_reply(self):
        assert parse_predictions("I cannot help with that.") is None
        assert parse_predictions("[not json]") is None


class TestOracle:
    """Test LLMBreakageOracle."""

    def test_uses_llm_reply(self, sym):
        oracle = LLMBreakageOracle(llm.LocalLLM())
        predictions = oracle.predict([sym("pay", "pay.py")], [], [])
        assert predictions[0].scenario == "Checkout flow breaks"

    def test_no_reply_is_no_answer(self, sym):
        fake = MagicMock()
        fake.generate.return_value = None
        fake.provider_name = "ollama"
        assert LLMBreakageOracle(fake).predict([sym("pay", "pay.py")], [], []) is None

    def test_garbage_reply_is_no_answer(self, sym):
        fake = MagicMock()
        fake.generate.return_value = "no idea"
        assert LLMBreakageOracle(fake).predict([sym("pay", "pay.py")], [], []) is None

    def test_prompt_lists_changes(self, sym):
        prompt = build_breakage_prompt([sym("pay", "pay.py", signature="pay(x)")], [], [])
        assert "- pay (method) in pay.py:1 - pay(x)" in prompt
        assert "Impacted call sites:\n- None detected" in prompt


class TestProviders:
    """Test provider request shaping without network access."""

    def test_cloud_providers_need_a_key(self):
        assert OpenAIProvider("gpt-4", "").generate("hi") is None
        assert AnthropicProvider("claude", "").generate("hi") is None
        assert GeminiProvider("gemini", "").generate("hi") is None

    def test_ollama_reads_response_field(self, monkeypatch):
        captured = {}

        def fake_post(url, payload, headers, timeout):
            captured["url"] = url
            captured["payload"] = payload
            return {"response": "[]"}

        monkeypatch.setattr(llm, "_post_json", fake_post)
        provider = OllamaProvider("qwen2.5-coder:7b", "http://127.0.0.1:11434/api/generate")

        assert provider.generate("predict") == "[]"
        assert captured["payload"]["prompt"] == "predict"
        assert captured["payload"]["stream"] is False

    def test_openai_unexpected_payload(self, monkeypatch):
        monkeypatch.setattr(llm, "_post_json", lambda *args, **kwargs: {"choices": []})
        assert OpenAIProvider("gpt-4", "key").generate("hi") is None

    def test_transport_failure(self, monkeypatch):
        monkeypatch.setattr(llm, "_post_json", lambda *args, **kwargs: None)
        assert AnthropicProvider("claude", "key").generate("hi") is None
