"""Configuration paths and analysis defaults for ReviewGraph."""

from __future__ import annotations

from .config_manager import BASE_DIR, load_analysis_config, load_config, load_embedding_config

MEMORY_DIR = BASE_DIR / "memory"
DEFAULT_EMBEDDING_DIM = 256

# Files the repository indexer will hand to an extractor.
SUPPORTED_EXTENSIONS = {
    ".py", ".java", ".js", ".ts", ".go", ".rs", ".cpp", ".c", ".cs",
}
SKIP_PATTERNS = ("node_modules", ".git", "dist", "build", "target", ".min.", ".lock")

# Overrides from ~/.reviewgraph/config.toml
_toml_config = load_config()
_emb_config = load_embedding_config()
_analysis_config = load_analysis_config()

# LLM provider used by the breakage oracle, set via `reviewgraph set-llm`
LLM_PROVIDER = _toml_config.get("provider", "ollama")
LLM_API_KEY = _toml_config.get("api_key", "")
LLM_MODEL = _toml_config.get("model", "qwen2.5-coder:7b")
LLM_ENDPOINT = _toml_config.get("endpoint", "http://127.0.0.1:11434/api/generate")

# Embedding model (default: "hash" = no download)
EMBEDDING_MODEL = _emb_config.get("model", "hash")

# Analysis thresholds. All comparisons are strictly greater-than.
WITHIN_PR_THRESHOLD = float(_analysis_config.get("within_pr_threshold", 0.8))
CROSS_REPO_THRESHOLD = float(_analysis_config.get("cross_repo_threshold", 0.7))
VECTOR_THRESHOLD = float(_analysis_config.get("vector_threshold", 0.75))
EXACT_THRESHOLD = float(_analysis_config.get("exact_threshold", 0.95))
VECTOR_TOP_K = int(_analysis_config.get("vector_top_k", 10))

INDEX_BATCH_SIZE = int(_analysis_config.get("batch_size", 10))
MAX_CHAIN_DEPTH = int(_analysis_config.get("max_chain_depth", 4))


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    MEMORY_DIR.mkdir(parents=True, exist_ok=True)
    BASE_DIR.mkdir(parents=True, exist_ok=True)
