from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from investcalc import services
from investcalc.advisor import DbCache, build_classifiers, refine_matrix, suggest_inputs
from investcalc.coefficients import (
    MARKET_GROUPS,
    REGULATORY_ENVIRONMENTS,
    STAGES,
    TEAM_STATUSES,
    TECHNOLOGY_GROUPS,
)
from investcalc.config import get_settings, get_tables
from investcalc.db import init_db, session_generator
from investcalc.engine import MissingScenarioError, calculate_investment, calculate_staged_funding
from investcalc.mapper import map_project_to_inputs
from investcalc.needs_matrix import allocate_costs, normalize_matrix
from investcalc.parser import SourceFile, parse_file_collection
from investcalc.report import Report, build_report, render_markdown, report_for_project
from investcalc.schemas import (
    AllocateOut,
    AllocateRequest,
    CalculationResult,
    EngineInput,
    EstimateOut,
    ImportResult,
    InputSuggestion,
    MapOut,
    MatrixRefinement,
    NeedsMatrix,
    OptionsOut,
    SaveCalculationIn,
    SavedCalculationOut,
    StagedFunding,
    VianeoProject,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="InvestCalc",
    version="0.1.0",
    description=(
        "Innovation investment calculator API. Estimate Optimistic / Realistic / "
        "Conservative funding needs, import project exports, allocate costs over "
        "persona x need matrices and save calculations. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Estimate", "description": "Scenario estimates and staged funding."},
        {"name": "Import", "description": "Parse project exports and map them to calculator inputs."},
        {"name": "Needs", "description": "Persona x need matrix normalization and cost allocation."},
        {"name": "Reports", "description": "Report data, Markdown rendering and batch export."},
        {"name": "Calculations", "description": "Save, share and reload calculations."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def _classifiers():
    settings = get_settings()
    if not settings.ai_enabled:
        return None
    return build_classifiers(settings.llm_provider, settings.llm_model or None)


# ---------------------------------------------------------------------------
# Routes: Estimate
# ---------------------------------------------------------------------------


@app.get("/api/options", response_model=OptionsOut,
         tags=["Estimate"], summary="Allowed input values, grouped for display")
async def get_options():
    tables = get_tables()
    return OptionsOut(
        technology_groups={k: list(v) for k, v in TECHNOLOGY_GROUPS.items()},
        market_groups={k: list(v) for k, v in MARKET_GROUPS.items()},
        stages=list(STAGES),
        team_statuses=list(TEAM_STATUSES),
        regulatory_environments=list(REGULATORY_ENVIRONMENTS),
        geographic_locations=tables.geographic_locations,
        coefficients_version=tables.version,
    )


@app.post("/api/calculate", response_model=EstimateOut,
          tags=["Estimate"], summary="Estimate the three scenarios and the staged-funding plan")
async def calculate(body: EngineInput):
    results = calculate_investment(body, get_tables())
    return EstimateOut(results=results, staged_funding=calculate_staged_funding(results))


@app.post("/api/staged-funding", response_model=StagedFunding,
          tags=["Estimate"], summary="Staged funding for an existing result set")
async def staged_funding(body: CalculationResult):
    try:
        return calculate_staged_funding(body)
    except MissingScenarioError as exc:
        raise HTTPException(422, str(exc))


# ---------------------------------------------------------------------------
# Routes: Import
# ---------------------------------------------------------------------------


@app.post("/api/import", response_model=ImportResult,
          tags=["Import"], summary="Parse an export folder (HTML, JSON, text, images)")
async def import_files(files: list[UploadFile] = File(...)):
    sources = [
        SourceFile(path=f.filename or f"upload-{idx}", data=await f.read())
        for idx, f in enumerate(files)
    ]
    if not sources or all(not s.data for s in sources):
        raise HTTPException(400, "No file content uploaded")
    return await parse_file_collection(sources)


@app.post("/api/map", response_model=MapOut,
          tags=["Import"], summary="Map a parsed project to calculator inputs")
async def map_project(body: VianeoProject):
    return MapOut(project_id=body.id, inputs=map_project_to_inputs(body))


@app.post("/api/suggest", response_model=InputSuggestion,
          tags=["Import"], summary="Heuristic inputs, refined by the LLM when enabled")
async def suggest(body: VianeoProject, session: Session = Depends(db_session)):
    classifiers = _classifiers()
    return await suggest_inputs(
        body,
        classifier=classifiers[0] if classifiers else None,
        cache=DbCache(session),
        timeout=get_settings().ai_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Routes: Needs
# ---------------------------------------------------------------------------


@app.post("/api/allocate", response_model=AllocateOut,
          tags=["Needs"], summary="Normalize a needs matrix and allocate the Realistic costs over it")
async def allocate(body: AllocateRequest):
    m = body.matrix
    normalized = normalize_matrix(m.personas, m.needs, m.values)
    try:
        allocation = allocate_costs(body.results, normalized)
    except MissingScenarioError as exc:
        raise HTTPException(422, str(exc))
    return AllocateOut(normalized=normalized, allocation=allocation)


class RefineRequest(BaseModel):
    matrix: NeedsMatrix
    context: str = ""


@app.post("/api/matrix/refine", response_model=MatrixRefinement,
          tags=["Needs"], summary="Relabel a needs matrix with the LLM when enabled")
async def refine(body: RefineRequest, session: Session = Depends(db_session)):
    classifiers = _classifiers()
    return await refine_matrix(
        body.matrix, body.context,
        classifier=classifiers[1] if classifiers else None,
        cache=DbCache(session),
        timeout=get_settings().ai_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Routes: Reports
# ---------------------------------------------------------------------------


class ReportRequest(BaseModel):
    inputs: EngineInput
    project: VianeoProject | None = None


@app.post("/api/report", response_model=Report,
          tags=["Reports"], summary="Report data for a set of inputs (format=markdown for text)")
async def report(body: ReportRequest, fmt: str = Query("json", alias="format", pattern="^(json|markdown)$")):
    tables = get_tables()
    results = calculate_investment(body.inputs, tables)
    rep = build_report(body.inputs, results, calculate_staged_funding(results), body.project, tables)
    if fmt == "markdown":
        return PlainTextResponse(render_markdown(rep), media_type="text/markdown")
    return rep


def _batch_stream(projects: list[VianeoProject], delay: float = 0.0):
    """SSE stream of per-project report progress; failures are counted, not fatal."""
    async def stream():
        tables = get_tables()
        total = len(projects)
        ok = failed = 0
        errors: list[str] = []
        for idx, project in enumerate(projects):
            yield f"data: {json.dumps({'type': 'progress', 'current': idx + 1, 'total': total, 'name': project.title})}\n\n"
            try:
                rep = report_for_project(project, tables)
                ok += 1
                yield f"data: {json.dumps({'type': 'report', 'report': rep.model_dump(mode='json')})}\n\n"
            except Exception as exc:
                log.warning("Batch report failed for %s: %s", project.id, exc)
                failed += 1
                errors.append(f"{project.id}: {exc}")
            await asyncio.sleep(delay)

        yield f"data: {json.dumps({'type': 'complete', 'stats': {'reported': ok, 'failed': failed}, 'errors': errors})}\n\n"

    return StreamingResponse(stream(), media_type="text/event-stream")


@app.post("/api/report/batch", tags=["Reports"], summary="Reports for many projects (SSE progress stream)")
async def report_batch(body: list[VianeoProject]):
    return _batch_stream(body)


# ---------------------------------------------------------------------------
# Routes: Calculations
# ---------------------------------------------------------------------------


@app.post("/api/calculations", response_model=SavedCalculationOut, status_code=201,
          tags=["Calculations"], summary="Save an input/result pair and get a share link")
async def save(body: SaveCalculationIn, session: Session = Depends(db_session)):
    calc_id = services.save_calculation(session, body.inputs, body.results)
    return services.load_calculation(session, calc_id, get_settings().base_url)


@app.get("/api/calculations", response_model=list[SavedCalculationOut],
         tags=["Calculations"], summary="List saved calculations, newest first")
async def list_saved(
    limit: int = Query(services.DEFAULT_LIST_LIMIT, ge=1, le=500),
    session: Session = Depends(db_session),
):
    return services.list_calculations(session, limit=limit, base_url=get_settings().base_url)


@app.get("/api/calculations/{calc_id}", response_model=SavedCalculationOut,
         tags=["Calculations"], summary="Load a saved calculation by id")
async def load(calc_id: str, session: Session = Depends(db_session)):
    saved = services.load_calculation(session, calc_id, get_settings().base_url)
    if saved is None:
        raise HTTPException(404, "Calculation not found")
    return saved


@app.delete("/api/calculations/{calc_id}", tags=["Calculations"], summary="Delete a saved calculation")
async def delete_saved(calc_id: str, session: Session = Depends(db_session)):
    if not services.delete_calculation(session, calc_id):
        raise HTTPException(404, "Calculation not found")
    return {"ok": True}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("investcalc.app:app", host="127.0.0.1", port=8000, reload=True)


if __name__ == "__main__":
    main()
