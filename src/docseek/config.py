"""Configuration management for docseek."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .models import Source


STATE_DIR = ".docseek"
INDEX_DIR = "index"
MODELS_DIR = "models"
RUN_DIR = "run"
LOGS_DIR = "logs"
CACHE_DIR = "cache"

CONFIG_FILE = "config.yaml"
IGNORE_FILE = "ignore"

DEFAULT_CONFIG = {
    "schema_version": 1,
    "project_id": "auto",
    "sources": [],
    "chunking": {
        "strategy": "markdown-structure",
        "fallback": {"chunk_size": 900, "overlap": 150},
    },
    "retrieval": {
        "semantic_weight": 0.75,
        "keyword_weight": 0.25,
        "default_limit": 8,
        "max_limit": 12,
        "rerank_top_k": 20,
        "pagination": {"enabled": True},
        "confidence": {"score_weight": 0.7, "count_weight": 0.3, "count_normalization": 10},
        "rerank_fusion": {"hybrid_weight": 0.4, "rerank_weight": 0.6},
    },
    "audit": {"similarity_threshold": 0.9, "limit": 20},
    "indexing": {"max_file_size_bytes": 10 * 1024 * 1024, "concurrency": 4},
    "storage": {"vector_backend": "chromadb"},
    "embedding": {
        "model": "Alibaba-NLP/gte-multilingual-base",
        "dimensions": 768,
        "max_tokens": 512,
        "batch_size": 32,
    },
    "reranker": {"model": "cross-encoder/mmarco-mMiniLMv2-L12-H384-v1", "max_length": 512},
    "watch": {"debounce_ms": 300},
    "runtime": {"log_level": "info"},
}

DEFAULT_IGNORE = """# docseek ignore patterns
.git/
.docseek/
node_modules/
build/
dist/
"""


def find_project_root(start: str | Path | None = None) -> Path:
    """Locate the project root.

    ``DOCSEEK_PROJECT_ROOT`` wins; otherwise walk upwards looking for a
    ``.docseek`` or ``.git`` directory, falling back to the start directory.
    """
    if env_root := os.environ.get("DOCSEEK_PROJECT_ROOT"):
        return Path(env_root).expanduser().resolve()

    start_path = Path(start or Path.cwd()).resolve()
    for candidate in (start_path, *start_path.parents):
        if (candidate / STATE_DIR).is_dir() or (candidate / ".git").exists():
            return candidate
    return start_path


def state_dir(project_root: str | Path) -> Path:
    return Path(project_root) / STATE_DIR


def index_dir(project_root: str | Path) -> Path:
    return state_dir(project_root) / INDEX_DIR


def run_dir(project_root: str | Path) -> Path:
    return state_dir(project_root) / RUN_DIR


def models_dir(project_root: str | Path) -> Path:
    return state_dir(project_root) / MODELS_DIR


def config_path(project_root: str | Path) -> Path:
    return state_dir(project_root) / CONFIG_FILE


def is_initialized(project_root: str | Path) -> bool:
    return config_path(project_root).exists()


def load_config(project_root: str | Path | None = None) -> dict[str, Any]:
    """Load configuration, merging defaults with the project file and env vars."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    root = Path(project_root) if project_root else find_project_root()
    path = config_path(root)
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                file_cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e
        if not isinstance(file_cfg, dict):
            raise ConfigError(f"Cannot parse {path}: expected a mapping at top level")
        _deep_merge(cfg, file_cfg)

    # Env overrides
    if level := os.environ.get("DOCSEEK_LOG_LEVEL"):
        cfg["runtime"]["log_level"] = level.lower()

    if cfg["project_id"] == "auto":
        cfg["project_id"] = root.resolve().name

    return cfg


def save_config(cfg: dict[str, Any], project_root: str | Path) -> Path:
    """Write configuration back to ``.docseek/config.yaml``."""
    path = config_path(project_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(cfg, f, default_flow_style=False, sort_keys=False)
    return path


def initialize_project(project_root: str | Path) -> Path:
    """Create the ``.docseek`` directory tree, default config and ignore file."""
    root = Path(project_root)
    base = state_dir(root)
    for d in (INDEX_DIR, MODELS_DIR, RUN_DIR, LOGS_DIR, CACHE_DIR):
        (base / d).mkdir(parents=True, exist_ok=True)

    if not config_path(root).exists():
        save_config(copy.deepcopy(DEFAULT_CONFIG), root)

    ignore = base / IGNORE_FILE
    if not ignore.exists():
        ignore.write_text(DEFAULT_IGNORE, encoding="utf-8")
    return base


def load_ignore_patterns(project_root: str | Path) -> list[str]:
    """Read ignore patterns, skipping comments and blank lines."""
    path = state_dir(project_root) / IGNORE_FILE
    if not path.exists():
        return []
    patterns = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def get_sources(cfg: dict[str, Any]) -> list[Source]:
    return [Source.from_dict(s) for s in cfg.get("sources") or []]


def add_source(cfg: dict[str, Any], source: Source) -> dict[str, Any]:
    """Add a source, replacing any existing one with the same name."""
    sources = [s for s in cfg.get("sources") or [] if s.get("name") != source.name]
    sources.append(source.to_dict())
    cfg["sources"] = sources
    return cfg


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
