"""Tests for the command line interface."""

import json
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from docseek.cli import cli
from docseek.config import config_path, load_config, models_dir, save_config

from fakes import FakeEmbedder


def _init(runner, root):
    result = runner.invoke(cli, ["--root", root, "init"])
    assert result.exit_code == 0, result.output
    # Keep the CLI tests off the persistent vector store
    cfg = load_config(root)
    cfg["storage"]["vector_backend"] = "memory"
    save_config(cfg, root)


def test_init_creates_state_dir():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        result = runner.invoke(cli, ["--root", tmpdir, "init"])
        assert result.exit_code == 0
        assert (Path(tmpdir) / ".docseek" / "config.yaml").exists()
        assert "Initialized" in result.output


def test_status_json_on_empty_index():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        _init(runner, tmpdir)
        result = runner.invoke(cli, ["--root", tmpdir, "status", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["documents"] == 0
        assert data["chunks"] == 0
        assert data["last_event"] is None


def test_list_and_delete_on_empty_index():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        _init(runner, tmpdir)
        listed = runner.invoke(cli, ["--root", tmpdir, "list"])
        assert listed.exit_code == 0
        assert "No documents" in listed.output

        deleted = runner.invoke(cli, ["--root", tmpdir, "delete", "docs/a.md"])
        assert deleted.exit_code == 1
        assert "Not found" in deleted.output


def test_malformed_config_is_reported():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        _init(runner, tmpdir)
        config_path(tmpdir).write_text("retrieval: [oops\n")
        result = runner.invoke(cli, ["--root", tmpdir, "status"])
        assert result.exit_code == 1
        assert "Cannot parse" in result.output


@pytest.fixture
def fake_models(monkeypatch):
    """Swap the model-backed classes for stubs; records every model load."""
    loaded = []

    class StubEmbedder(FakeEmbedder):
        model_name = "stub-embedder"

        def __init__(self, config, cache_dir=None):
            super().__init__()
            self.cache_dir = cache_dir

        @property
        def model(self):
            loaded.append(("embedder", self.cache_dir))
            return object()

    class StubReranker:
        model_name = "stub-reranker"

        def __init__(self, config, cache_dir=None):
            self.cache_dir = cache_dir

        @property
        def model(self):
            loaded.append(("reranker", self.cache_dir))
            return object()

    monkeypatch.setattr("docseek.embeddings.Embedder", StubEmbedder)
    monkeypatch.setattr("docseek.embeddings.Reranker", StubReranker)
    return loaded


def test_search_batch_runs_each_line(fake_models):
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        _init(runner, tmpdir)
        queries = Path(tmpdir) / "queries.txt"
        queries.write_text("first query\n\n  second query  \n")

        result = runner.invoke(cli, ["--root", tmpdir, "search", "--batch", str(queries), "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [r["query"] for r in data] == ["first query", "second query"]
        assert all(r["results"] == [] and r["confidence"] == 0 for r in data)


def test_search_requires_query_or_batch(fake_models):
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        _init(runner, tmpdir)
        result = runner.invoke(cli, ["--root", tmpdir, "search"])
        assert result.exit_code == 2
        assert "--batch" in result.output


def test_audit_duplicates_on_empty_index(fake_models):
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        _init(runner, tmpdir)
        result = runner.invoke(cli, ["--root", tmpdir, "audit", "duplicates", "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == []

        text = runner.invoke(cli, ["--root", tmpdir, "audit", "duplicates", "-t", "0.95"])
        assert text.exit_code == 0
        assert "No near-duplicates" in text.output

        bad = runner.invoke(cli, ["--root", tmpdir, "audit", "duplicates", "-t", "1.5"])
        assert bad.exit_code == 2


def test_bootstrap_loads_models_into_project_cache(fake_models):
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        result = runner.invoke(cli, ["--root", tmpdir, "bootstrap"])
        assert result.exit_code == 0, result.output
        cache = models_dir(Path(tmpdir).resolve())
        assert cache.is_dir()
        assert fake_models == [("embedder", cache)]

        fake_models.clear()
        result = runner.invoke(cli, ["--root", tmpdir, "bootstrap", "--reranker"])
        assert result.exit_code == 0, result.output
        assert [name for name, _ in fake_models] == ["embedder", "reranker"]
