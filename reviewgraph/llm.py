"""LLM providers and the LLM-backed breakage oracle.

Providers speak plain HTTP through ``urllib`` and return ``None`` on any
transport or decoding failure, so callers can fall back without
wrapping every call in ``try``.
"""

from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional

from .config import LLM_API_KEY, LLM_ENDPOINT, LLM_MODEL, LLM_PROVIDER
from .impact import BreakageOracle
from .models import BreakagePrediction, CodeSymbol, ImpactedArea, ImpactedFeature

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_PROBABILITIES = {"high", "medium", "low"}


def _post_json(url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: int) -> Optional[Dict[str, Any]]:
    req = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except (urllib.error.URLError, TimeoutError, json.JSONDecodeError) as exc:
        logger.debug("LLM request to %s failed: %s", url, exc)
        return None


class LLMProvider:
    """Base class for LLM providers."""

    def generate(self, prompt: str) -> Optional[str]:
        raise NotImplementedError


class OllamaProvider(LLMProvider):
    """Ollama local LLM provider."""

    def __init__(self, model: str, endpoint: str):
        self.model = model
        self.endpoint = endpoint

    def generate(self, prompt: str) -> Optional[str]:
        parsed = _post_json(
            self.endpoint,
            {
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": 0.1},
            },
            headers={},
            timeout=30,
        )
        return parsed.get("response") if parsed else None


class OpenAIProvider(LLMProvider):
    """OpenAI API provider (also works with OpenRouter and other OpenAI-compatible APIs)."""

    def __init__(self, model: str, api_key: str, endpoint: str = "https://api.openai.com/v1/chat/completions"):
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint

    def generate(self, prompt: str) -> Optional[str]:
        if not self.api_key:
            return None
        parsed = _post_json(
            self.endpoint,
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": 0.1,
                "max_tokens": 1024,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=30,
        )
        try:
            return parsed["choices"][0]["message"]["content"] if parsed else None
        except (KeyError, IndexError, TypeError):
            return None


class AnthropicProvider(LLMProvider):
    """Anthropic Claude API provider."""

    def __init__(self, model: str, api_key: str):
        self.model = model
        self.api_key = api_key
        self.endpoint = "https://api.anthropic.com/v1/messages"

    def generate(self, prompt: str) -> Optional[str]:
        if not self.api_key:
            return None
        parsed = _post_json(
            self.endpoint,
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": 1024,
                "temperature": 0.1,
            },
            headers={"x-api-key": self.api_key, "anthropic-version": "2023-06-01"},
            timeout=30,
        )
        try:
            return parsed["content"][0]["text"] if parsed else None
        except (KeyError, IndexError, TypeError):
            return None


class GeminiProvider(LLMProvider):
    """Google Gemini API provider."""

    def __init__(self, model: str, api_key: str):
        self.model = model
        self.api_key = api_key
        self.endpoint = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def generate(self, prompt: str) -> Optional[str]:
        if not self.api_key:
            return None
        parsed = _post_json(
            f"{self.endpoint}?key={self.api_key}",
            {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {"temperature": 0.1, "maxOutputTokens": 1024},
            },
            headers={},
            timeout=30,
        )
        try:
            return parsed["candidates"][0]["content"]["parts"][0]["text"] if parsed else None
        except (KeyError, IndexError, TypeError):
            return None


class LocalLLM:
    """Provider selection from explicit arguments or ``config.toml``."""

    def __init__(
        self,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
    ):
        self.provider_name = provider or LLM_PROVIDER
        self.model = model or LLM_MODEL
        self.api_key = api_key or LLM_API_KEY
        self.endpoint = endpoint or LLM_ENDPOINT
        self.provider = self._create_provider()

    def _create_provider(self) -> LLMProvider:
        provider_name = self.provider_name.lower()

        if provider_name == "openai":
            model = self.model if self.model != "qwen2.5-coder:7b" else "gpt-4"
            endpoint = self.endpoint if "/chat/completions" in (self.endpoint or "") else (
                "https://api.openai.com/v1/chat/completions"
            )
            return OpenAIProvider(model, self.api_key, endpoint)

        elif provider_name == "anthropic":
            model = self.model if self.model != "qwen2.5-coder:7b" else "claude-3-5-sonnet-20241022"
            return AnthropicProvider(model, self.api_key)

        elif provider_name == "gemini":
            model = self.model if self.model != "qwen2.5-coder:7b" else "gemini-2.0-flash"
            return GeminiProvider(model, self.api_key)

        else:  # Default to Ollama
            return OllamaProvider(self.model, self.endpoint)

    def generate(self, prompt: str) -> Optional[str]:
        return self.provider.generate(prompt)


# ===================================================================
# Breakage oracle
# ===================================================================

def build_breakage_prompt(
    changed: List[CodeSymbol],
    areas: List[ImpactedArea],
    features: List[ImpactedFeature],
) -> str:
    changed_block = "\n".join(
        f"- {s.name} ({s.kind}) in {s.file}:{s.start_line} - {s.signature or 'N/A'}"
        for s in changed
    )
    areas_block = "\n".join(
        f"- {a.method}() in {a.file}:{a.line} calls {a.call_site.callee}"
        for a in areas[:20]
    )
    features_block = "\n".join(
        f"- {f.name}: {len(f.files)} file(s), {len(f.impacted_areas)} call site(s)"
        for f in features
    )
    return (
        "You are a senior software architect reviewing a pull request for breakage.\n\n"
        f"Changed symbols:\n{changed_block or '- None'}\n\n"
        f"Impacted call sites:\n{areas_block or '- None detected'}\n\n"
        f"Impacted features:\n{features_block or '- None detected'}\n\n"
        "Predict what could break. Return ONLY a JSON array of objects with keys "
        '"scenario", "probability" (high|medium|low), "impact", '
        '"affectedFiles" (list of paths) and "mitigation". '
        "Return [] if no significant breakage is expected."
    )


def parse_predictions(text: str) -> Optional[List[BreakagePrediction]]:
    """Pull a prediction list out of a model reply, ``None`` if unusable."""
    cleaned = _FENCE_RE.sub("", text.strip())
    match = _ARRAY_RE.search(cleaned)
    if not match:
        return None
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(raw, list):
        return None

    predictions: List[BreakagePrediction] = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("scenario"):
            continue
        probability = str(item.get("probability", "medium")).lower()
        if probability not in _PROBABILITIES:
            probability = "medium"
        files = item.get("affectedFiles") or item.get("affected_files") or []
        predictions.append(BreakagePrediction(
            scenario=str(item["scenario"]),
            probability=probability,  # type: ignore[arg-type]
            impact=str(item.get("impact", "")),
            affected_files=[str(f) for f in files] if isinstance(files, list) else [],
            mitigation=str(item.get("mitigation", "")),
        ))
    return predictions


class LLMBreakageOracle(BreakageOracle):
    """Asks the configured LLM for breakage scenarios."""

    def __init__(self, llm: Optional[LocalLLM] = None) -> None:
        self.llm = llm or LocalLLM()

    def predict(
        self,
        changed: List[CodeSymbol],
        areas: List[ImpactedArea],
        features: List[ImpactedFeature],
    ) -> Optional[List[BreakagePrediction]]:
        reply = self.llm.generate(build_breakage_prompt(changed, areas, features))
        if not reply:
            logger.warning("LLM provider '%s' gave no answer", self.llm.provider_name)
            return None
        predictions = parse_predictions(reply)
        if predictions is None:
            logger.warning("Could not parse breakage predictions from LLM reply")
        return predictions
