"""Investment report data and its Markdown rendering, plus batch export."""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from investcalc.coefficients import DEFAULT_TABLES, SCENARIO_MODIFIERS, CoefficientTables
from investcalc.engine import calculate_investment, calculate_staged_funding, find_scenario, format_currency
from investcalc.mapper import map_project_to_inputs
from investcalc.needs_matrix import allocate_costs, normalize_matrix
from investcalc.schemas import (
    CalculationResult,
    ConfidenceInterval,
    CostAllocation,
    EngineInput,
    NormalizedMatrix,
    ScenarioResult,
    StagedFunding,
    VianeoProject,
)

log = logging.getLogger(__name__)

REPORT_TITLE = "Innovation Investment Report"
TOP_NEEDS = 5

METHODOLOGY = (
    "TOTAL INVESTMENT = Development + Regulatory + GTM Year 1 + Risk Buffer",
    "Development: base development cost for technology and stage x scenario multiplier",
    "Regulatory: base regulatory cost for the technology (no multiplier)",
    "GTM Year 1: base go-to-market cost for the market x scenario multiplier",
    "Risk Buffer: 40% of scenario development cost",
    "Timeline: stage baseline months x timeline multiplier; break-even: timeline x break-even multiplier",
    "Confidence range: Realistic total +/- 15%",
    "Staged funding: 15% / 35% / 50% of the Realistic total over 20% / 40% / 40% of its timeline",
)


class ExecutiveSummary(BaseModel):
    inputs: EngineInput
    recommended_total: int
    timeline: int
    break_even: int
    confidence_interval: ConfidenceInterval
    geography_index: float
    team_multiplier: float
    sales_cycle: str


class NeedsSection(BaseModel):
    scale: str
    top_needs: list[tuple[str, int]]
    per_persona: dict[str, int]
    normalized: NormalizedMatrix
    allocation: CostAllocation


class Report(BaseModel):
    title: str = REPORT_TITLE
    project_id: str | None = None
    project_title: str | None = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    coefficients_version: str
    summary: ExecutiveSummary
    scenarios: list[ScenarioResult]
    staged_funding: StagedFunding
    scenario_multipliers: dict[str, tuple[float, float, float, float]] = Field(
        default_factory=lambda: dict(SCENARIO_MODIFIERS)
    )
    methodology: list[str] = Field(default_factory=lambda: list(METHODOLOGY))
    needs: NeedsSection | None = None


def build_needs_section(results: CalculationResult, project: VianeoProject) -> NeedsSection | None:
    m = project.needs_matrix
    if m is None:
        return None
    normalized = normalize_matrix(m.personas, m.needs, m.values)
    allocation = allocate_costs(results, normalized)
    top = sorted(allocation.per_need.items(), key=lambda kv: kv[1], reverse=True)[:TOP_NEEDS]
    return NeedsSection(
        scale=normalized.scale,
        top_needs=top,
        per_persona=allocation.per_persona,
        normalized=normalized,
        allocation=allocation,
    )


def build_report(
    inputs: EngineInput,
    results: CalculationResult,
    staged: StagedFunding,
    project: VianeoProject | None = None,
    tables: CoefficientTables = DEFAULT_TABLES,
) -> Report:
    realistic = find_scenario(results, "Realistic")
    summary = ExecutiveSummary(
        inputs=inputs,
        recommended_total=realistic.total,
        timeline=realistic.timeline,
        break_even=realistic.break_even,
        confidence_interval=results.confidence_interval,
        geography_index=tables.geography_index(inputs.geographic_location),
        team_multiplier=tables.team_multiplier(inputs.team_status),
        sales_cycle=tables.gtm(inputs.target_market).sales_cycle,
    )
    return Report(
        project_id=project.id if project else None,
        project_title=project.title if project else None,
        coefficients_version=tables.version,
        summary=summary,
        scenarios=list(results.scenarios),
        staged_funding=staged,
        needs=build_needs_section(results, project) if project else None,
    )


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------


def _money(amount: int) -> str:
    return f"${amount:,}"


def render_markdown(report: Report) -> str:
    s = report.summary
    lines = [f"# {report.title}"]
    if report.project_title:
        lines.append(f"_{report.project_title}_")
    lines += [
        "",
        "## Executive Summary",
        "",
        f"- Technology: {s.inputs.technology_type}",
        f"- Stage: {s.inputs.current_stage}",
        f"- Market: {s.inputs.target_market}",
        f"- Location: {s.inputs.geographic_location} (cost index {s.geography_index:.2f})",
        f"- Team: {s.inputs.team_status} (multiplier {s.team_multiplier:.2f})",
        f"- Regulatory: {s.inputs.regulatory_environment}",
        f"- Sales cycle: {s.sales_cycle}",
        "",
        f"**Recommended Investment: {format_currency(s.recommended_total)}**",
        "",
        f"- Timeline: {s.timeline} months",
        f"- Break-even: {s.break_even} months",
        f"- Confidence Range: {format_currency(s.confidence_interval.min)} - "
        f"{format_currency(s.confidence_interval.max)}",
        "",
        "## Investment Breakdown",
        "",
        "| Scenario | Total | Development | Regulatory | GTM Year 1 | Risk Buffer | Timeline | Break-even |",
        "|---|---:|---:|---:|---:|---:|---:|---:|",
    ]
    for sc in report.scenarios:
        b = sc.breakdown
        lines.append(
            f"| {sc.name} | {_money(sc.total)} | {_money(b.development)} | {_money(b.regulatory)} "
            f"| {_money(b.gtm_year1)} | {_money(b.risk_buffer)} | {sc.timeline} mo | {sc.break_even} mo |"
        )

    lines += ["", "## Staged Funding Model", ""]
    for phase in report.staged_funding.phases:
        lines += [
            f"### {phase.name}",
            "",
            f"- Investment: {format_currency(phase.investment)} ({phase.percentage}%)",
            f"- Duration: {phase.duration} months",
            f"- Objective: {phase.objective}",
            f"- Milestone: {phase.key_milestone}",
            f"- Decision Gate: {phase.decision_gate}",
            "",
        ]

    lines += ["## Methodology", ""]
    lines += [f"- {m}" for m in report.methodology]
    lines.append(f"- Coefficient tables version {report.coefficients_version}")

    if report.needs is not None:
        n = report.needs
        lines += ["", "## Needs Qualification Matrix", "", f"Scale detected: {n.scale}", "", "Top needs (cost estimate):"]
        lines += [f"- {need}: {_money(cost)}" for need, cost in n.top_needs]
        lines += ["", "Persona aggregate costs:"]
        lines += [f"- {persona}: {_money(cost)}" for persona, cost in n.per_persona.items()]
        lines += ["", "| Persona | " + " | ".join(n.normalized.needs) + " |"]
        lines.append("|---" * (len(n.normalized.needs) + 1) + "|")
        for persona, row in zip(n.normalized.personas, n.normalized.weights):
            lines.append(f"| {persona} | " + " | ".join(f"{w:.2f}" for w in row) + " |")

    lines += ["", f"Generated: {report.generated_at:%Y-%m-%d}", ""]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Batch export
# ---------------------------------------------------------------------------


class BatchResult(BaseModel):
    reports: list[Report] = []
    errors: list[str] = []
    processed: int = 0
    failed: int = 0


def report_for_project(
    project: VianeoProject, tables: CoefficientTables = DEFAULT_TABLES,
) -> Report:
    inputs = map_project_to_inputs(project)
    results = calculate_investment(inputs, tables)
    return build_report(inputs, results, calculate_staged_funding(results), project, tables)


def run_batch(
    projects: Sequence[VianeoProject],
    tables: CoefficientTables = DEFAULT_TABLES,
    on_progress: Callable[[int, int, VianeoProject], None] | None = None,
) -> BatchResult:
    """Build a report per project, one after another.

    A project that fails is logged and counted; the rest still run.
    """
    result = BatchResult()
    total = len(projects)
    for idx, project in enumerate(projects):
        if on_progress is not None:
            on_progress(idx + 1, total, project)
        try:
            result.reports.append(report_for_project(project, tables))
            result.processed += 1
        except Exception as exc:
            log.warning("Report failed for %s: %s", project.id, exc)
            result.errors.append(f"{project.id}: {exc}")
            result.failed += 1
    return result
