"""Exceptions that interrupt the caller's control flow.

Per-file indexing problems are reported as results, not raised; only
failures that leave the engine unusable end up here.
"""


class DocseekError(Exception):
    """Base class for docseek errors."""


class ConfigError(DocseekError):
    """The configuration file exists but cannot be parsed."""


class StoreError(DocseekError):
    """The persisted index cannot be opened or initialised."""


class ModelLoadError(DocseekError):
    """An embedding or reranking model failed to load."""


class WatcherError(DocseekError):
    """The change watcher cannot be started."""
