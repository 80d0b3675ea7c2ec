"""Estimation engine: three scenario projections and a staged-funding plan.

Algorithm
---------
For each scenario (Optimistic, Realistic, Conservative) a 4-tuple of
multipliers is applied to the base table values:

- ``development = base_development(technology, stage) * dev``
- ``regulatory  = regulatory_cost(technology)``
- ``gtm_year1   = gtm(market).year1 * gtm`` (years 2-3 likewise, informational)
- ``risk_buffer = development * 0.40``
- ``total       = development + regulatory + gtm_year1 + risk_buffer``
- ``timeline    = round(stage_timeline * timeline_mult)``
- ``break_even  = round(timeline * break_even_mult)``

Location, team status and regulatory environment are validated inputs but do
not move any cost: the base tables already price those factors in.  Money is
rounded half-up per breakdown part; ``total`` is the sum of the rounded parts.
"""
from __future__ import annotations

import logging
import math

from investcalc.coefficients import (
    CONFIDENCE_BAND,
    DEFAULT_TABLES,
    RISK_BUFFER_RATE,
    SCENARIO_MODIFIERS,
    TECHNICAL_SHARE,
    CoefficientTables,
)
from investcalc.schemas import (
    CalculationResult,
    ConfidenceInterval,
    CostBreakdown,
    EngineInput,
    FundingPhase,
    ScenarioResult,
    StagedFunding,
)

log = logging.getLogger(__name__)


class MissingScenarioError(LookupError):
    """A result set lacks the scenario a computation depends on."""


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def _scenario(
    name: str, inputs: EngineInput, tables: CoefficientTables,
) -> ScenarioResult:
    dev_mult, gtm_mult, timeline_mult, break_even_mult = SCENARIO_MODIFIERS[name]

    development = tables.development_cost(inputs.technology_type, inputs.current_stage) * dev_mult
    regulatory = float(tables.regulatory_cost(inputs.technology_type))
    gtm = tables.gtm(inputs.target_market)
    gtm_year1 = gtm.year1 * gtm_mult
    gtm_years23 = gtm.years23 * gtm_mult
    risk_buffer = development * RISK_BUFFER_RATE

    timeline = round_half_up(tables.timeline(inputs.current_stage) * timeline_mult)
    break_even = round_half_up(timeline * break_even_mult)

    # total is the sum of the rounded parts
    parts = {
        "development": round_half_up(development),
        "regulatory": round_half_up(regulatory),
        "gtm_year1": round_half_up(gtm_year1),
        "risk_buffer": round_half_up(risk_buffer),
    }
    breakdown = CostBreakdown(
        **parts,
        technical=round_half_up(development * TECHNICAL_SHARE),
        gtm_years23=round_half_up(gtm_years23),
        total=sum(parts.values()),
        break_even=break_even,
    )
    return ScenarioResult(
        name=name, total=breakdown.total, timeline=timeline,
        break_even=break_even, breakdown=breakdown,
    )


def confidence_interval(realistic_total: int) -> ConfidenceInterval:
    return ConfidenceInterval(
        min=round_half_up(realistic_total * (1 - CONFIDENCE_BAND)),
        max=round_half_up(realistic_total * (1 + CONFIDENCE_BAND)),
    )


def calculate_investment(
    inputs: EngineInput, tables: CoefficientTables = DEFAULT_TABLES,
) -> CalculationResult:
    """Project the three scenarios for *inputs*.

    Total over the validated input domain: ``EngineInput`` rejects unknown
    enumerated values before this point.
    """
    scenarios = tuple(_scenario(name, inputs, tables) for name in SCENARIO_MODIFIERS)
    realistic = next(s for s in scenarios if s.name == "Realistic")
    log.debug(
        "Estimated %s / %s / %s: realistic total %d",
        inputs.technology_type, inputs.current_stage, inputs.target_market, realistic.total,
    )
    return CalculationResult(
        scenarios=scenarios,
        confidence_interval=confidence_interval(realistic.total),
        inputs=inputs,
    )


def find_scenario(results: CalculationResult, name: str) -> ScenarioResult:
    """Look a scenario up by name; raises MissingScenarioError if absent."""
    for scenario in results.scenarios:
        if scenario.name == name:
            return scenario
    raise MissingScenarioError(f"{name} scenario not found")


# ---------------------------------------------------------------------------
# Staged funding
# ---------------------------------------------------------------------------

# (name, investment share, timeline share, objective, milestone, decision gate)
_PHASES: tuple[tuple[str, float, float, str, str, str], ...] = (
    (
        "Phase 1: Validate", 0.15, 0.20,
        "Proof of concept, initial customer validation, technical feasibility",
        "Technical milestone achieved",
        "Technical milestone achieved?",
    ),
    (
        "Phase 2: Build", 0.35, 0.40,
        "Product development, market validation, initial sales",
        "Market traction confirmed",
        "Market traction confirmed?",
    ),
    (
        "Phase 3: Scale", 0.50, 0.40,
        "Market expansion, team scaling, operations buildout",
        "Unit economics proven",
        "Unit economics proven?",
    ),
)


def calculate_staged_funding(results: CalculationResult) -> StagedFunding:
    """Split the Realistic scenario into Validate / Build / Scale phases.

    The last phase takes the remainder of both money and months so the
    phases reconcile exactly with the Realistic total and timeline.
    """
    realistic = find_scenario(results, "Realistic")
    total, timeline = realistic.total, realistic.timeline

    phases: list[FundingPhase] = []
    spent = elapsed = 0
    for idx, (name, inv_share, time_share, objective, milestone, gate) in enumerate(_PHASES):
        if idx == len(_PHASES) - 1:
            investment, duration = total - spent, timeline - elapsed
        else:
            investment = round_half_up(total * inv_share)
            duration = round_half_up(timeline * time_share)
        spent += investment
        elapsed += duration
        phases.append(FundingPhase(
            name=name, investment=investment, duration=duration,
            percentage=round_half_up(inv_share * 100), objective=objective,
            key_milestone=milestone, decision_gate=gate,
        ))

    return StagedFunding(phases=tuple(phases), total_investment=total, total_duration=timeline)


def format_currency(amount: float) -> str:
    """Compact dollar rendering: ``$1.54M``, ``$231K``, ``$950``."""
    # the unit follows the rounded figure: 999_600 is $1.00M, not $1000K
    if amount >= 999_500:
        return f"${amount / 1_000_000:.2f}M"
    if amount >= 999.5:
        return f"${amount / 1_000:.0f}K"
    return f"${amount:.0f}"
