"""Read and write ``~/.reviewgraph/config.toml``.

The file has three independent sections::

    [llm]          provider, model, api_key, endpoint
    [embeddings]   model
    [analysis]     threshold and batching overrides (see ANALYSIS_KEYS)

Writers rewrite the whole file but only touch their own section.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import toml

logger = logging.getLogger(__name__)

BASE_DIR = Path(os.environ.get("REVIEWGRAPH_HOME", str(Path.home() / ".reviewgraph"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

DEFAULT_CONFIGS: Dict[str, Dict[str, Any]] = {
    "ollama": {
        "provider": "ollama",
        "model": "qwen2.5-coder:7b",
        "endpoint": "http://127.0.0.1:11434/api/generate",
    },
    "openai": {"provider": "openai", "model": "gpt-4", "api_key": ""},
    "anthropic": {"provider": "anthropic", "model": "claude-3-5-sonnet-20241022", "api_key": ""},
    "gemini": {"provider": "gemini", "model": "gemini-2.0-flash", "api_key": ""},
}

ANALYSIS_KEYS = (
    "within_pr_threshold",
    "cross_repo_threshold",
    "vector_threshold",
    "exact_threshold",
    "vector_top_k",
    "batch_size",
    "max_chain_depth",
)


def load_full_config() -> Dict[str, Any]:
    """Every section of the config file, ``{}`` when missing or unreadable."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        return toml.loads(CONFIG_FILE.read_text(encoding="utf-8"))
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", CONFIG_FILE, exc)
        return {}


def _save_section(name: str, values: Dict[str, Any]) -> bool:
    config = load_full_config()
    config[name] = values
    try:
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        CONFIG_FILE.write_text(toml.dumps(config), encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not write %s: %s", CONFIG_FILE, exc)
        return False
    return True


# ------------------------------------------------------------------
# [llm]
# ------------------------------------------------------------------

def get_provider_config(provider: str) -> Dict[str, Any]:
    """Defaults for *provider*, Ollama's for anything unknown."""
    return dict(DEFAULT_CONFIGS.get(provider, DEFAULT_CONFIGS["ollama"]))


def load_config() -> Dict[str, Any]:
    """The ``[llm]`` section, or the Ollama defaults."""
    section = load_full_config().get("llm")
    return dict(section) if section else get_provider_config("ollama")


def save_config(provider: str, model: str, api_key: str = "", endpoint: str = "") -> bool:
    section: Dict[str, Any] = {"provider": provider, "model": model}
    if api_key:
        section["api_key"] = api_key
    if endpoint:
        section["endpoint"] = endpoint
    return _save_section("llm", section)


# ------------------------------------------------------------------
# [embeddings]
# ------------------------------------------------------------------

def load_embedding_config() -> Dict[str, Any]:
    return dict(load_full_config().get("embeddings", {}))


def save_embedding_config(model_key: str) -> bool:
    return _save_section("embeddings", {"model": model_key})


# ------------------------------------------------------------------
# [analysis]
# ------------------------------------------------------------------

def load_analysis_config() -> Dict[str, Any]:
    """Known ``[analysis]`` overrides. Unknown keys are ignored."""
    section = load_full_config().get("analysis", {})
    return {key: value for key, value in section.items() if key in ANALYSIS_KEYS}


def save_analysis_config(values: Dict[str, Any]) -> bool:
    """Merge the known keys of *values* into ``[analysis]``."""
    section = dict(load_full_config().get("analysis", {}))
    section.update({key: value for key, value in values.items() if key in ANALYSIS_KEYS})
    return _save_section("analysis", section)
