from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from investcalc import services
from investcalc.coefficients import (
    MARKET_GROUPS,
    REGULATORY_ENVIRONMENTS,
    SCENARIO_MODIFIERS,
    STAGES,
    TEAM_STATUSES,
    TECHNOLOGY_GROUPS,
)
from investcalc.config import get_settings, get_tables
from investcalc.db import init_db, session_scope
from investcalc.engine import calculate_investment, calculate_staged_funding
from investcalc.mapper import map_project_to_inputs
from investcalc.needs_matrix import allocate_costs, normalize_matrix
from investcalc.parser import collect_files, parse_file_collection
from investcalc.report import build_report, render_markdown
from investcalc.schemas import EngineInput

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def investcalc_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "InvestCalc",
    instructions=(
        "InvestCalc estimates how much an innovation project needs to raise. "
        "Call list_options() for the allowed input values, then estimate() with "
        "the six inputs. import_export(path) maps an exported project folder to "
        "inputs; save_calculation() returns a share link."
    ),
    lifespan=investcalc_lifespan,
    json_response=True,
)


def _inputs(
    technology_type: str, current_stage: str, target_market: str,
    geographic_location: str, team_status: str, regulatory_environment: str,
) -> tuple[EngineInput | None, dict | None]:
    try:
        return EngineInput(
            technology_type=technology_type, current_stage=current_stage,
            target_market=target_market, geographic_location=geographic_location,
            team_status=team_status, regulatory_environment=regulatory_environment,
        ), None
    except ValidationError as exc:
        return None, {"error": "Invalid inputs", "details": json.loads(exc.json())}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("investcalc://methodology")
def methodology() -> str:
    """How totals, timelines and staged funding are computed."""
    return json.dumps({
        "formula": "TOTAL = development + regulatory + gtm_year1 + risk_buffer (40% of development)",
        "scenario_multipliers": {
            name: dict(zip(("development", "gtm", "timeline", "break_even"), mults))
            for name, mults in SCENARIO_MODIFIERS.items()
        },
        "confidence_interval": "Realistic total +/- 15%",
        "staged_funding": "15% / 35% / 50% of the Realistic total over 20% / 40% / 40% of its timeline",
        "coefficients_version": get_tables().version,
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_options() -> dict:
    """Allowed values for every calculator input, grouped for display."""
    return {
        "technology_type": {k: list(v) for k, v in TECHNOLOGY_GROUPS.items()},
        "current_stage": list(STAGES),
        "target_market": {k: list(v) for k, v in MARKET_GROUPS.items()},
        "geographic_location": get_tables().geographic_locations,
        "team_status": list(TEAM_STATUSES),
        "regulatory_environment": list(REGULATORY_ENVIRONMENTS),
    }


@mcp.tool()
def estimate(
    technology_type: str, current_stage: str, target_market: str,
    geographic_location: str = "Remote US", team_status: str = "Partial team",
    regulatory_environment: str = "None",
) -> dict:
    """Estimate Optimistic / Realistic / Conservative investment and the staged-funding plan.

    Args:
        technology_type: e.g. "Software/SaaS Platform" (see list_options).
        current_stage: one of the four TRL bands, e.g. "Prototype (TRL 4-6)".
        target_market: e.g. "Large Enterprise (Fortune 1000)".
        geographic_location: free-form; unknown names are priced as neutral.
        team_status: "No team yet", "Partial team" or "Full team assembled".
        regulatory_environment: "None", "Moderate" or "Heavy (FDA/EPA level)".
    """
    inputs, err = _inputs(
        technology_type, current_stage, target_market,
        geographic_location, team_status, regulatory_environment,
    )
    if err:
        return err
    results = calculate_investment(inputs, get_tables())
    return {
        "results": results.model_dump(mode="json"),
        "staged_funding": calculate_staged_funding(results).model_dump(mode="json"),
    }


@mcp.tool()
def report_markdown(
    technology_type: str, current_stage: str, target_market: str,
    geographic_location: str = "Remote US", team_status: str = "Partial team",
    regulatory_environment: str = "None",
) -> str:
    """Full investment report as Markdown."""
    inputs, err = _inputs(
        technology_type, current_stage, target_market,
        geographic_location, team_status, regulatory_environment,
    )
    if err:
        return json.dumps(err)
    tables = get_tables()
    results = calculate_investment(inputs, tables)
    return render_markdown(build_report(inputs, results, calculate_staged_funding(results), tables=tables))


@mcp.tool()
async def import_export(path: str) -> dict:
    """Parse an exported project folder (or single file) and map each project to inputs.

    Projects with a persona x need table also get a cost allocation over it.
    """
    root = Path(path).expanduser()
    if not root.exists():
        return {"error": f"{path} does not exist"}
    result = await parse_file_collection(collect_files(root))
    tables = get_tables()
    projects = []
    for p in result.projects:
        inputs = map_project_to_inputs(p)
        entry: dict = {"id": p.id, "title": p.title, "inputs": inputs.model_dump()}
        if p.needs_matrix is not None:
            results = calculate_investment(inputs, tables)
            m = p.needs_matrix
            normalized = normalize_matrix(m.personas, m.needs, m.values)
            entry["needs_scale"] = normalized.scale
            entry["needs_allocation"] = allocate_costs(results, normalized).model_dump()
        projects.append(entry)
    return {
        "files_seen": result.files_seen,
        "files_skipped": result.files_skipped,
        "errors": result.errors,
        "projects": projects,
    }


@mcp.tool()
def save_calculation(
    technology_type: str, current_stage: str, target_market: str,
    geographic_location: str = "Remote US", team_status: str = "Partial team",
    regulatory_environment: str = "None",
) -> dict:
    """Estimate and store a calculation; returns its id and share link."""
    inputs, err = _inputs(
        technology_type, current_stage, target_market,
        geographic_location, team_status, regulatory_environment,
    )
    if err:
        return err
    results = calculate_investment(inputs, get_tables())
    with session_scope() as session:
        calc_id = services.save_calculation(session, inputs, results)
    return {"id": calc_id, "link": services.share_link(get_settings().base_url, calc_id)}


@mcp.tool()
def list_calculations(limit: int = 20) -> list[dict]:
    """Saved calculations, newest first."""
    with session_scope() as session:
        return [
            services.calculation_summary(s)
            for s in services.list_calculations(
                session, limit=max(1, min(limit, 500)), base_url=get_settings().base_url,
            )
        ]


@mcp.tool()
def load_calculation(calc_id: str) -> dict:
    """Reload a saved calculation with its results."""
    with session_scope() as session:
        saved = services.load_calculation(session, calc_id, get_settings().base_url)
    if saved is None:
        return {"error": f"Calculation {calc_id} not found"}
    return saved.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the InvestCalc MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
