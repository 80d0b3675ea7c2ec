from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from investcalc import db as db_mod
from investcalc.cli import app
from investcalc.config import get_settings, get_tables

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    monkeypatch.setenv("INVESTCALC_HOME", str(tmp_path))
    monkeypatch.setenv("INVESTCALC_DB", str(tmp_path / "cli.db"))
    monkeypatch.delenv("INVESTCALC_COEFFICIENTS", raising=False)
    get_settings.cache_clear()
    get_tables.cache_clear()
    orig = (db_mod._engine, db_mod._SessionLocal)
    yield tmp_path
    if db_mod._engine is not None and db_mod._engine is not orig[0]:
        db_mod._engine.dispose()
    db_mod._engine, db_mod._SessionLocal = orig
    get_settings.cache_clear()
    get_tables.cache_clear()


def test_options_json():
    result = runner.invoke(app, ["--json", "options"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert "Prototype (TRL 4-6)" in payload["current_stage"]
    assert "London" in payload["geographic_location"]


def test_estimate_defaults_json():
    result = runner.invoke(app, ["--json", "estimate", "-m", "Large Enterprise (Fortune 1000)"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    totals = {s["name"]: s["total"] for s in payload["results"]["scenarios"]}
    assert totals["Realistic"] == 1_538_000
    assert len(payload["staged_funding"]["phases"]) == 3
    assert payload["link"] is None


def test_estimate_rejects_unknown_value():
    result = runner.invoke(app, ["estimate", "--technology", "Teleportation"])
    assert result.exit_code == 2


def test_estimate_writes_markdown(isolated_home):
    out = isolated_home / "report.md"
    result = runner.invoke(app, ["estimate", "--markdown", str(out)])
    assert result.exit_code == 0
    assert "## Staged Funding Model" in out.read_text(encoding="utf-8")


def test_save_list_show():
    saved = runner.invoke(app, ["--json", "estimate", "--save"])
    assert saved.exit_code == 0
    link = json.loads(saved.stdout)["link"]
    assert "?load=" in link
    calc_id = link.rsplit("=", 1)[1]

    listed = runner.invoke(app, ["--json", "list"])
    assert listed.exit_code == 0
    rows = json.loads(listed.stdout)
    assert [r["id"] for r in rows] == [calc_id]

    shown = runner.invoke(app, ["--json", "show", calc_id])
    assert shown.exit_code == 0
    assert json.loads(shown.stdout)["id"] == calc_id


def test_show_unknown():
    result = runner.invoke(app, ["show", "missing"])
    assert result.exit_code == 1


def test_import_with_reports(isolated_home):
    export = isolated_home / "export"
    export.mkdir()
    (export / "saved_resource.html").write_text(
        "<html><body><div data-project-id='alpha'><h2>Alpha biotech pilot</h2></div></body></html>",
        encoding="utf-8",
    )
    (export / "notes.txt").write_text("Regulatory risk: FDA", encoding="utf-8")
    reports = isolated_home / "reports"

    result = runner.invoke(app, ["--json", "import", str(export), "--reports", str(reports)])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["files_seen"] == 2
    (project,) = payload["projects"]
    assert project["id"] == "alpha"
    assert project["inputs"]["technology_type"] == "Biotech/Pharmaceutical"
    assert project["inputs"]["regulatory_environment"] == "Heavy (FDA/EPA level)"
    assert (reports / "alpha.md").exists()
