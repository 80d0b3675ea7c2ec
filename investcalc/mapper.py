"""Heuristic mapping from a parsed project to engine inputs.

Never fails: every field has a default that is used when no keyword fires.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from investcalc.rules import (
    GEOGRAPHY_RULES,
    MARKET_RULES,
    REGULATORY_RULES,
    STAGE_RULES,
    TEAM_RULES,
    TECHNOLOGY_RULES,
    first_match,
    first_pattern,
)
from investcalc.schemas import EngineInput, VianeoProject

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MapperDefaults:
    """Fallback values for fields with no keyword signal."""
    technology_type: str = "Software/SaaS Platform"
    current_stage: str = "Prototype (TRL 4-6)"
    target_market: str = "Mid-Market B2B (500-5000 employees)"
    geographic_location: str = "Remote US"
    team_status: str = "Partial team"
    regulatory_environment: str = "None"


DEFAULT_INPUTS = MapperDefaults()


def build_corpus(project: VianeoProject) -> str:
    """Title, description, tags and raw field values as one lowercase string."""
    parts: list[str] = [project.title, project.description or "", *project.tags]
    parts.extend(project.raw_fields.values())
    return " \n ".join(parts).lower()


def map_project_to_inputs(
    project: VianeoProject, defaults: MapperDefaults = DEFAULT_INPUTS,
) -> EngineInput:
    corpus = build_corpus(project)
    inputs = EngineInput(
        technology_type=first_match(corpus, TECHNOLOGY_RULES, defaults.technology_type),
        current_stage=first_match(corpus, STAGE_RULES, defaults.current_stage),
        target_market=first_match(corpus, MARKET_RULES, defaults.target_market),
        geographic_location=first_pattern(corpus, GEOGRAPHY_RULES, defaults.geographic_location),
        team_status=first_match(corpus, TEAM_RULES, defaults.team_status),
        regulatory_environment=first_match(corpus, REGULATORY_RULES, defaults.regulatory_environment),
    )
    log.debug("Mapped project %s -> %s", project.id, inputs.model_dump())
    return inputs
