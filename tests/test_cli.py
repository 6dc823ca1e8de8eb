"""Tests for the Typer command-line interface."""

from __future__ import annotations

from typer.testing import CliRunner

from hn_digest.cli import app
from hn_digest.storage.item_store import ItemStore

from conftest import make_discovered

runner = CliRunner()


def _config(tmp_path) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(
        f"""
storage:
  db_path: {tmp_path / "state.db"}
  blob_dir: {tmp_path / "blobs"}
logging:
  console: false
  file: false
""",
        encoding="utf-8",
    )
    return str(path)


def test_status_lists_stage_counts(tmp_path):
    config = _config(tmp_path)
    with ItemStore(tmp_path / "state.db") as store:
        store.upsert_discovered(make_discovered(1))

    result = runner.invoke(app, ["--config", config, "status"])

    assert result.exit_code == 0, result.output
    assert "Items by stage" in result.output
    assert "discovered" in result.output


def test_items_filters_by_stage(tmp_path):
    config = _config(tmp_path)
    with ItemStore(tmp_path / "state.db") as store:
        store.upsert_discovered(make_discovered(1, title="Interesting story"))

    result = runner.invoke(app, ["--config", config, "items", "--stage", "discovered"])

    assert result.exit_code == 0, result.output
    assert "Interesting story" in result.output


def test_invalid_config_exits_with_error(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("digest:\n  format: pdf\n", encoding="utf-8")

    result = runner.invoke(app, ["--config", str(path), "status"])

    assert result.exit_code == 1
    assert "Configuration error" in result.output
