"""ragchat configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (RAGCHAT_TEXT_MODEL, RAGCHAT_VISION_MODEL, RAGCHAT_DB)
  3. Per-project ragchat.yaml
  4. Global ~/.ragchat/config.yaml  (defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; credentials are read from the
environment (OPENROUTER_API_KEY, BRAVE_API_KEY) via load_credentials().
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".ragchat"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "ragchat.yaml"

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret,
# secret, password, passwd, credential(s). Leaves max_tokens and friends alone.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["models", "retrieval", "search", "store", "assistant"]
)

DEFAULT_PERSONA = (
    "You are an intelligent assistant specialised in RAG (Retrieval-Augmented "
    "Generation) with Pydantic."
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ModelsCfg:
    """Model endpoint configuration (ragchat.yaml: models:)."""

    text_model: str = "openrouter/google/gemini-2.5-pro-exp-03-25:free"
    vision_model: str = "openrouter/qwen/qwen2.5-vl-3b-instruct:free"
    temperature: float = 0.7
    max_tokens: int = 1024
    request_timeout: float = 120.0  # seconds, bounds the whole model call


@dataclass
class RetrievalCfg:
    """Chunking and ranking configuration (ragchat.yaml: retrieval:)."""

    chunk_size: int = 500  # characters
    top_k: int = 3


@dataclass
class SearchCfg:
    """Web search configuration (ragchat.yaml: search:)."""

    endpoint: str = "https://api.search.brave.com/res/v1/web/search"
    timeout: float = 5.0
    count: int = 5


@dataclass
class StoreCfg:
    """Remote store configuration (ragchat.yaml: store:)."""

    path: str = ".ragchat.db"


@dataclass
class AssistantCfg:
    """System prompt persona (ragchat.yaml: assistant:)."""

    persona: str = DEFAULT_PERSONA


@dataclass
class RagChatConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    models: ModelsCfg = field(default_factory=ModelsCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    store: StoreCfg = field(default_factory=StoreCfg)
    assistant: AssistantCfg = field(default_factory=AssistantCfg)


@dataclass
class Credentials:
    """Secrets for the external endpoints. Never read from config files."""

    model_api_key: str | None = None
    search_api_key: str | None = None
    user_id: str | None = None


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: RagChatConfig) -> None:
    if cfg.retrieval.chunk_size < 1:
        raise ConfigError("retrieval.chunk_size must be >= 1")
    if cfg.retrieval.top_k < 1:
        raise ConfigError("retrieval.top_k must be >= 1")
    if cfg.search.timeout <= 0:
        raise ConfigError("search.timeout must be > 0")
    if cfg.models.request_timeout <= 0:
        raise ConfigError("models.request_timeout must be > 0")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> RagChatConfig:
    """Build a *RagChatConfig* from a merged raw YAML dict."""
    cfg = RagChatConfig()

    if "models" in data:
        m = data["models"]
        cfg.models = ModelsCfg(
            text_model=str(m.get("text_model", cfg.models.text_model)),
            vision_model=str(m.get("vision_model", cfg.models.vision_model)),
            temperature=float(m.get("temperature", cfg.models.temperature)),
            max_tokens=int(m.get("max_tokens", cfg.models.max_tokens)),
            request_timeout=float(m.get("request_timeout", cfg.models.request_timeout)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            chunk_size=int(r.get("chunk_size", cfg.retrieval.chunk_size)),
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
        )

    if "search" in data:
        s = data["search"]
        cfg.search = SearchCfg(
            endpoint=str(s.get("endpoint", cfg.search.endpoint)),
            timeout=float(s.get("timeout", cfg.search.timeout)),
            count=int(s.get("count", cfg.search.count)),
        )

    if "store" in data:
        cfg.store = StoreCfg(path=str(data["store"].get("path", cfg.store.path)))

    if "assistant" in data:
        cfg.assistant = AssistantCfg(
            persona=str(data["assistant"].get("persona", cfg.assistant.persona)),
        )

    return cfg


def _apply_env_overrides(cfg: RagChatConfig) -> RagChatConfig:
    """Apply RAGCHAT_* environment variable overrides."""
    if model := os.environ.get("RAGCHAT_TEXT_MODEL"):
        cfg.models.text_model = model
    if model := os.environ.get("RAGCHAT_VISION_MODEL"):
        cfg.models.vision_model = model
    if db_path := os.environ.get("RAGCHAT_DB"):
        cfg.store.path = db_path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RagChatConfig:
    """Load and return a merged *RagChatConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *ragchat.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *RagChatConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields or a value
            is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def load_credentials() -> Credentials:
    """Read endpoint credentials from the environment."""
    return Credentials(
        model_api_key=os.environ.get("OPENROUTER_API_KEY") or None,
        search_api_key=os.environ.get("BRAVE_API_KEY") or None,
        user_id=os.environ.get("RAGCHAT_USER") or None,
    )
