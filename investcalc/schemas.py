"""Pydantic models shared by the engine, the importer and the API."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, computed_field, field_validator, model_validator

from investcalc.coefficients import (
    REGULATORY_ENVIRONMENTS,
    STAGES,
    TARGET_MARKETS,
    TEAM_STATUSES,
    TECHNOLOGY_TYPES,
)

ScenarioName = Literal["Optimistic", "Realistic", "Conservative"]
MatrixScale = Literal["percentage", "score-1-5", "score-0-10", "binary", "categorical", "unknown"]
FieldSource = Literal["label", "dl", "table", "json", "text"]
CellValue = int | float | str


# ---------------------------------------------------------------------------
# Engine input / output
# ---------------------------------------------------------------------------


def _check_domain(value: str, domain: tuple[str, ...], label: str) -> str:
    if value not in domain:
        raise ValueError(f"unknown {label} {value!r}")
    return value


class EngineInput(BaseModel):
    """The six categorical inputs of an estimate.

    Every field except ``geographic_location`` must belong to its closed
    domain.  Unresolved locations are accepted and priced as neutral.
    """

    model_config = ConfigDict(frozen=True)

    technology_type: str
    current_stage: str
    target_market: str
    geographic_location: str
    team_status: str
    regulatory_environment: str

    @field_validator("technology_type")
    @classmethod
    def _technology(cls, v: str) -> str:
        return _check_domain(v, TECHNOLOGY_TYPES, "technology type")

    @field_validator("current_stage")
    @classmethod
    def _stage(cls, v: str) -> str:
        return _check_domain(v, STAGES, "stage")

    @field_validator("target_market")
    @classmethod
    def _market(cls, v: str) -> str:
        return _check_domain(v, TARGET_MARKETS, "target market")

    @field_validator("team_status")
    @classmethod
    def _team(cls, v: str) -> str:
        return _check_domain(v, TEAM_STATUSES, "team status")

    @field_validator("regulatory_environment")
    @classmethod
    def _regulatory(cls, v: str) -> str:
        return _check_domain(v, REGULATORY_ENVIRONMENTS, "regulatory environment")

    @field_validator("geographic_location")
    @classmethod
    def _location(cls, v: str) -> str:
        return v.strip()


class CostBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    development: int
    technical: int  # display subset of development, not additive
    regulatory: int
    gtm_year1: int
    gtm_years23: int  # informational, never part of total
    risk_buffer: int
    total: int
    break_even: int


class ScenarioResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: ScenarioName
    total: int
    timeline: int
    break_even: int
    breakdown: CostBreakdown


class ConfidenceInterval(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: int
    max: int


class CalculationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    scenarios: tuple[ScenarioResult, ...]
    confidence_interval: ConfidenceInterval
    inputs: EngineInput


class FundingPhase(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    investment: int
    duration: int
    percentage: int
    objective: str
    key_milestone: str
    decision_gate: str


class StagedFunding(BaseModel):
    model_config = ConfigDict(frozen=True)

    phases: tuple[FundingPhase, ...]
    total_investment: int
    total_duration: int


# ---------------------------------------------------------------------------
# Parsed documents
# ---------------------------------------------------------------------------


class ExtractedField(BaseModel):
    """One label/value pair harvested from a document, tagged with how it was found."""

    label: str
    value: str
    source: FieldSource


class ProjectTask(BaseModel):
    id: str
    title: str
    status: str | None = None


class ProjectAsset(BaseModel):
    path: str
    type: Literal["image"] = "image"
    name: str


class NeedsMatrix(BaseModel):
    """Persona x need grid as found in a document.

    Rows are padded with ``""`` or truncated so each has ``len(needs)`` cells.
    """

    personas: list[str]
    needs: list[str]
    values: list[list[CellValue]]
    source: str | None = None

    @model_validator(mode="after")
    def _square_rows(self) -> NeedsMatrix:
        width = len(self.needs)
        self.values = [(list(row) + [""] * width)[:width] for row in self.values]
        return self


class VianeoProject(BaseModel):
    id: str
    title: str
    description: str | None = None
    tags: list[str] = []
    tasks: list[ProjectTask] = []
    fields: list[ExtractedField] = []
    source_files: list[str] = []
    file_types: dict[str, int] = {}
    diagnostics: list[str] = []
    assets: list[ProjectAsset] = []
    needs_matrix: NeedsMatrix | None = None

    @model_validator(mode="before")
    @classmethod
    def _raw_fields_input(cls, data: Any) -> Any:
        """Accept a ``raw_fields`` mapping when no ``fields`` list is given."""
        if not isinstance(data, dict) or "raw_fields" not in data:
            return data
        data = dict(data)
        raw = data.pop("raw_fields")
        if isinstance(raw, dict) and not data.get("fields"):
            data["fields"] = [
                {"label": str(k), "value": str(v), "source": "json"}
                for k, v in raw.items() if v is not None
            ]
        return data

    @computed_field  # type: ignore[prop-decorator]
    @property
    def raw_fields(self) -> dict[str, str]:
        """Label -> value view of ``fields``; later labels win."""
        return {f.label: f.value for f in self.fields}

    def add_field(self, label: str, value: str, source: FieldSource) -> None:
        self.fields.append(ExtractedField(label=label, value=value, source=source))

    def add_source(self, path: str) -> None:
        if path not in self.source_files:
            self.source_files.append(path)

    def count_file_type(self, kind: str) -> None:
        self.file_types[kind] = self.file_types.get(kind, 0) + 1


class ImportResult(BaseModel):
    projects: list[VianeoProject]
    errors: list[str] = []
    files_seen: int = 0
    files_skipped: int = 0


# ---------------------------------------------------------------------------
# Needs matrix outputs
# ---------------------------------------------------------------------------


class NormalizedMatrix(BaseModel):
    model_config = ConfigDict(frozen=True)

    personas: list[str]
    needs: list[str]
    weights: list[list[float]]
    scale: MatrixScale


class CostAllocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    cells: list[list[int]]
    per_persona: dict[str, int]
    per_need: dict[str, int]
    total: int


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class EstimateOut(BaseModel):
    results: CalculationResult
    staged_funding: StagedFunding


class AllocateRequest(BaseModel):
    results: CalculationResult
    matrix: NeedsMatrix


class AllocateOut(BaseModel):
    normalized: NormalizedMatrix
    allocation: CostAllocation


class MapOut(BaseModel):
    project_id: str
    inputs: EngineInput


class SaveCalculationIn(BaseModel):
    inputs: EngineInput
    results: CalculationResult


class SavedCalculationOut(BaseModel):
    id: str
    created_at: datetime
    inputs: EngineInput
    results: CalculationResult
    link: str = ""


class OptionsOut(BaseModel):
    technology_groups: dict[str, list[str]]
    market_groups: dict[str, list[str]]
    stages: list[str]
    team_statuses: list[str]
    regulatory_environments: list[str]
    geographic_locations: dict[str, float]
    coefficients_version: str


# ---------------------------------------------------------------------------
# Advisory (AI) results
# ---------------------------------------------------------------------------


class InputSuggestion(BaseModel):
    inputs: EngineInput
    source: Literal["heuristic", "ai"] = "heuristic"
    overridden: list[str] = []
    rationale: str | None = None


class MatrixRefinement(BaseModel):
    matrix: NeedsMatrix
    source: Literal["original", "ai"] = "original"
    notes: list[str] = []
