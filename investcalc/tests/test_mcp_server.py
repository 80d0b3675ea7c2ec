from __future__ import annotations

import json

import pytest

pytest.importorskip("mcp")

from investcalc import db as db_mod  # noqa: E402
from investcalc import mcp_server  # noqa: E402
from investcalc.config import get_settings, get_tables  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    monkeypatch.setenv("INVESTCALC_DB", str(tmp_path / "mcp.db"))
    monkeypatch.setenv("INVESTCALC_BASE_URL", "http://calc.test/")
    get_settings.cache_clear()
    get_tables.cache_clear()
    orig = (db_mod._engine, db_mod._SessionLocal)
    db_mod.init_db()
    yield
    db_mod._engine.dispose()
    db_mod._engine, db_mod._SessionLocal = orig
    get_settings.cache_clear()
    get_tables.cache_clear()


ARGS = {
    "technology_type": "Software/SaaS Platform",
    "current_stage": "Prototype (TRL 4-6)",
    "target_market": "Large Enterprise (Fortune 1000)",
}


class TestTools:
    def test_server_object(self):
        assert mcp_server.mcp is not None

    def test_list_options(self):
        options = mcp_server.list_options()
        assert "Market Ready (TRL 9)" in options["current_stage"]
        assert options["geographic_location"]["London"] == 1.15

    def test_estimate(self):
        out = mcp_server.estimate(**ARGS)
        totals = [s["total"] for s in out["results"]["scenarios"]]
        assert totals[1] == 1_538_000
        assert out["staged_funding"]["total_duration"] == 24

    def test_estimate_invalid(self):
        out = mcp_server.estimate(**{**ARGS, "current_stage": "Idea"})
        assert out["error"] == "Invalid inputs"
        assert out["details"]

    def test_report_markdown(self):
        assert "## Staged Funding Model" in mcp_server.report_markdown(**ARGS)

    def test_methodology(self):
        data = json.loads(mcp_server.methodology())
        assert set(data["scenario_multipliers"]) == {"Optimistic", "Realistic", "Conservative"}

    def test_save_list_load(self):
        saved = mcp_server.save_calculation(**ARGS)
        assert saved["link"] == f"http://calc.test/?load={saved['id']}"
        listed = mcp_server.list_calculations()
        assert [row["id"] for row in listed] == [saved["id"]]
        loaded = mcp_server.load_calculation(saved["id"])
        assert loaded["inputs"]["target_market"] == ARGS["target_market"]
        assert "error" in mcp_server.load_calculation("missing")

    @pytest.mark.asyncio
    async def test_import_export(self, tmp_path):
        export = tmp_path / "export"
        export.mkdir()
        (export / "saved_resource.html").write_text(
            "<html><body><div data-project-id='a'><h2>SaaS pilot</h2>"
            "<table><tr><th>Persona</th><th>Pricing</th><th>Build</th></tr>"
            "<tr><td>Buyer</td><td>5</td><td>1</td></tr>"
            "<tr><td>User</td><td>2</td><td>4</td></tr></table>"
            "</div></body></html>",
            encoding="utf-8",
        )
        out = await mcp_server.import_export(str(export))
        (project,) = out["projects"]
        assert project["inputs"]["current_stage"] == "Pilot (TRL 7-8)"
        assert project["needs_scale"] == "score-1-5"
        alloc = project["needs_allocation"]
        assert sum(alloc["per_need"].values()) == alloc["total"]

    @pytest.mark.asyncio
    async def test_import_missing_path(self, tmp_path):
        out = await mcp_server.import_export(str(tmp_path / "nope"))
        assert "error" in out
