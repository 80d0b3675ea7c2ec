"""Coefficient tables: base costs, timelines and cost indices.

Pure data plus keyed lookups.  The default tables can be overridden from a
YAML file so that a newer data release can be dropped in without touching
the engine.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

log = logging.getLogger(__name__)


class CoefficientError(Exception):
    """Coefficient tables are incomplete or could not be loaded."""


# ---------------------------------------------------------------------------
# Enumerated domains (grouping is for display only)
# ---------------------------------------------------------------------------

TECHNOLOGY_GROUPS: dict[str, tuple[str, ...]] = {
    "Digital & Software": (
        "Software/SaaS Platform", "AI/Machine Learning", "FinTech/Financial Services",
        "EdTech/Learning Platform", "Blockchain/Web3",
    ),
    "Healthcare & Life Sciences": (
        "Biotech/Pharmaceutical", "Medical Devices/MedTech", "Diagnostics/Lab Tech",
        "Digital Health/Telemedicine", "Synthetic Biology",
    ),
    "Hardware & Manufacturing": (
        "Hardware/Physical Product", "Robotics/Automation", "IoT/Connected Devices",
        "Semiconductors/Electronics", "Advanced Materials",
    ),
    "Energy & Environment": (
        "Clean Energy/Renewables", "Climate Tech/Carbon", "Water/Environmental Tech",
        "Nuclear/Advanced Nuclear",
    ),
    "Agriculture & Food": (
        "AgriTech/Precision Agriculture", "Food Tech/Alternative Protein",
        "Aquaculture/Blue Economy",
    ),
    "Industrial & Infrastructure": (
        "Aerospace/Defense", "Space Technology", "Construction/PropTech",
        "Supply Chain/Logistics Tech", "Advanced Manufacturing",
    ),
}

MARKET_GROUPS: dict[str, tuple[str, ...]] = {
    "B2B Enterprise": (
        "Large Enterprise (Fortune 1000)", "Mid-Market B2B (500-5000 employees)",
        "Small Business B2B (<500 employees)",
    ),
    "Government & Public Sector": (
        "Federal/National Government", "State/Local Government", "Military/Defense",
        "International Gov/Multilateral",
    ),
    "Healthcare & Life Sciences": (
        "Hospital Systems/Integrated Delivery", "Pharmaceutical/Biotech Companies",
        "Insurance/Payers", "Individual Providers/Clinics",
    ),
    "Research & Education": (
        "Research Institutions/Labs", "Universities/Higher Ed", "K-12 Education Systems",
    ),
    "Consumer Markets": (
        "Mass Market Consumer (B2C)", "Premium/Luxury Consumer", "Prosumer/Enthusiast Market",
    ),
    "Industry Specific": (
        "Financial Services/Banking", "Energy/Utilities", "Manufacturing/Industrial",
        "Agriculture/Food Production", "Real Estate/Construction",
    ),
    "Impact & Non-Profit": (
        "NGO/Non-Profit Organizations", "Social Enterprises", "Foundations/Philanthropic",
        "Development Organizations",
    ),
    "Platform & Multi-Sided": (
        "Two-Sided Marketplace", "Multi-Sided Platform", "Network Effects Business",
    ),
    "Geographic Focus": ("Emerging Markets Focus", "Global/Multi-Region"),
}

TECHNOLOGY_TYPES: tuple[str, ...] = tuple(t for group in TECHNOLOGY_GROUPS.values() for t in group)
TARGET_MARKETS: tuple[str, ...] = tuple(m for group in MARKET_GROUPS.values() for m in group)
STAGES: tuple[str, ...] = (
    "Concept (TRL 1-3)", "Prototype (TRL 4-6)", "Pilot (TRL 7-8)", "Market Ready (TRL 9)",
)
TEAM_STATUSES: tuple[str, ...] = ("No team yet", "Partial team", "Full team assembled")
REGULATORY_ENVIRONMENTS: tuple[str, ...] = ("None", "Moderate", "Heavy (FDA/EPA level)")

# ---------------------------------------------------------------------------
# Scenario constants
# ---------------------------------------------------------------------------

# name -> (development, gtm, timeline, break-even) multipliers
SCENARIO_MODIFIERS: dict[str, tuple[float, float, float, float]] = {
    "Optimistic": (0.7, 0.6, 0.75, 1.5),
    "Realistic": (1.2, 1.2, 1.0, 1.75),
    "Conservative": (1.8, 2.0, 1.5, 2.25),
}
SCENARIO_NAMES: tuple[str, ...] = tuple(SCENARIO_MODIFIERS)

RISK_BUFFER_RATE = 0.40
TECHNICAL_SHARE = 0.15
CONFIDENCE_BAND = 0.15
NEUTRAL_GEOGRAPHY_INDEX = 1.0

# ---------------------------------------------------------------------------
# Default tables
# ---------------------------------------------------------------------------

# technology -> base development cost per stage, in STAGES order
_DEVELOPMENT_ROWS: dict[str, tuple[int, int, int, int]] = {
    # Digital & Software
    "Software/SaaS Platform": (200_000, 350_000, 500_000, 150_000),
    "AI/Machine Learning": (250_000, 400_000, 600_000, 200_000),
    "FinTech/Financial Services": (300_000, 500_000, 700_000, 250_000),
    "EdTech/Learning Platform": (200_000, 350_000, 500_000, 150_000),
    "Blockchain/Web3": (300_000, 450_000, 650_000, 200_000),
    # Healthcare & Life Sciences
    "Biotech/Pharmaceutical": (800_000, 2_000_000, 3_500_000, 500_000),
    "Medical Devices/MedTech": (700_000, 1_500_000, 2_500_000, 400_000),
    "Diagnostics/Lab Tech": (600_000, 1_200_000, 2_000_000, 350_000),
    "Digital Health/Telemedicine": (350_000, 600_000, 900_000, 250_000),
    "Synthetic Biology": (900_000, 2_200_000, 4_000_000, 600_000),
    # Hardware & Manufacturing
    "Hardware/Physical Product": (400_000, 750_000, 1_200_000, 300_000),
    "Robotics/Automation": (600_000, 1_200_000, 2_000_000, 400_000),
    "IoT/Connected Devices": (350_000, 650_000, 1_000_000, 250_000),
    "Semiconductors/Electronics": (1_000_000, 2_500_000, 4_500_000, 700_000),
    "Advanced Materials": (700_000, 1_500_000, 2_500_000, 450_000),
    # Energy & Environment
    "Clean Energy/Renewables": (600_000, 1_500_000, 2_500_000, 400_000),
    "Climate Tech/Carbon": (500_000, 1_100_000, 1_800_000, 350_000),
    "Water/Environmental Tech": (500_000, 1_000_000, 1_700_000, 300_000),
    "Nuclear/Advanced Nuclear": (1_200_000, 3_000_000, 5_000_000, 800_000),
    # Agriculture & Food
    "AgriTech/Precision Agriculture": (400_000, 800_000, 1_300_000, 250_000),
    "Food Tech/Alternative Protein": (500_000, 1_000_000, 1_600_000, 300_000),
    "Aquaculture/Blue Economy": (500_000, 1_000_000, 1_700_000, 300_000),
    # Industrial & Infrastructure
    "Aerospace/Defense": (1_000_000, 2_500_000, 4_000_000, 700_000),
    "Space Technology": (1_200_000, 3_000_000, 5_000_000, 800_000),
    "Construction/PropTech": (400_000, 800_000, 1_300_000, 250_000),
    "Supply Chain/Logistics Tech": (350_000, 650_000, 1_000_000, 200_000),
    "Advanced Manufacturing": (600_000, 1_300_000, 2_200_000, 400_000),
}

DEVELOPMENT_COSTS: dict[str, dict[str, int]] = {
    tech: dict(zip(STAGES, row)) for tech, row in _DEVELOPMENT_ROWS.items()
}

REGULATORY_COSTS: dict[str, int] = {
    # Digital & Software
    "Software/SaaS Platform": 50_000,
    "AI/Machine Learning": 75_000,
    "FinTech/Financial Services": 200_000,
    "EdTech/Learning Platform": 50_000,
    "Blockchain/Web3": 150_000,
    # Healthcare & Life Sciences
    "Biotech/Pharmaceutical": 2_500_000,
    "Medical Devices/MedTech": 1_500_000,
    "Diagnostics/Lab Tech": 1_200_000,
    "Digital Health/Telemedicine": 400_000,
    "Synthetic Biology": 2_800_000,
    # Hardware & Manufacturing
    "Hardware/Physical Product": 200_000,
    "Robotics/Automation": 300_000,
    "IoT/Connected Devices": 150_000,
    "Semiconductors/Electronics": 400_000,
    "Advanced Materials": 350_000,
    # Energy & Environment
    "Clean Energy/Renewables": 500_000,
    "Climate Tech/Carbon": 300_000,
    "Water/Environmental Tech": 350_000,
    "Nuclear/Advanced Nuclear": 3_000_000,
    # Agriculture & Food
    "AgriTech/Precision Agriculture": 250_000,
    "Food Tech/Alternative Protein": 400_000,
    "Aquaculture/Blue Economy": 350_000,
    # Industrial & Infrastructure
    "Aerospace/Defense": 1_500_000,
    "Space Technology": 2_000_000,
    "Construction/PropTech": 200_000,
    "Supply Chain/Logistics Tech": 150_000,
    "Advanced Manufacturing": 300_000,
}

# market -> (year 1, years 2-3, typical sales cycle)
_GTM_ROWS: dict[str, tuple[int, int, str]] = {
    # B2B Enterprise
    "Large Enterprise (Fortune 1000)": (750_000, 4_500_000, "9-18 months"),
    "Mid-Market B2B (500-5000 employees)": (550_000, 3_200_000, "6-12 months"),
    "Small Business B2B (<500 employees)": (450_000, 2_500_000, "3-6 months"),
    # Government & Public Sector
    "Federal/National Government": (900_000, 4_800_000, "12-24 months"),
    "State/Local Government": (650_000, 3_500_000, "9-18 months"),
    "Military/Defense": (1_000_000, 5_200_000, "18-36 months"),
    "International Gov/Multilateral": (850_000, 4_600_000, "12-24 months"),
    # Healthcare & Life Sciences
    "Hospital Systems/Integrated Delivery": (800_000, 4_200_000, "12-18 months"),
    "Pharmaceutical/Biotech Companies": (850_000, 4_500_000, "12-24 months"),
    "Insurance/Payers": (750_000, 4_000_000, "12-18 months"),
    "Individual Providers/Clinics": (500_000, 2_800_000, "6-12 months"),
    # Research & Education
    "Research Institutions/Labs": (550_000, 3_000_000, "6-12 months"),
    "Universities/Higher Ed": (500_000, 2_800_000, "6-12 months"),
    "K-12 Education Systems": (400_000, 2_200_000, "6-18 months"),
    # Consumer Markets
    "Mass Market Consumer (B2C)": (700_000, 5_000_000, "Immediate"),
    "Premium/Luxury Consumer": (600_000, 3_800_000, "1-3 months"),
    "Prosumer/Enthusiast Market": (450_000, 2_600_000, "1-2 months"),
    # Industry Specific
    "Financial Services/Banking": (800_000, 4_300_000, "12-18 months"),
    "Energy/Utilities": (750_000, 4_000_000, "12-24 months"),
    "Manufacturing/Industrial": (600_000, 3_400_000, "9-15 months"),
    "Agriculture/Food Production": (500_000, 2_800_000, "6-12 months"),
    "Real Estate/Construction": (550_000, 3_000_000, "6-15 months"),
    # Impact & Non-Profit
    "NGO/Non-Profit Organizations": (350_000, 1_800_000, "6-12 months"),
    "Social Enterprises": (400_000, 2_200_000, "6-12 months"),
    "Foundations/Philanthropic": (450_000, 2_400_000, "6-15 months"),
    "Development Organizations": (500_000, 2_600_000, "9-18 months"),
    # Platform & Multi-Sided
    "Two-Sided Marketplace": (800_000, 5_500_000, "6-18 months"),
    "Multi-Sided Platform": (850_000, 5_800_000, "6-18 months"),
    "Network Effects Business": (750_000, 5_200_000, "6-18 months"),
    # Geographic Focus
    "Emerging Markets Focus": (450_000, 2_800_000, "6-18 months"),
    "Global/Multi-Region": (950_000, 5_500_000, "12-24 months"),
}

STAGE_TIMELINES: dict[str, int] = {
    "Concept (TRL 1-3)": 30,
    "Prototype (TRL 4-6)": 24,
    "Pilot (TRL 7-8)": 18,
    "Market Ready (TRL 9)": 12,
}

GEOGRAPHIC_LOCATIONS: dict[str, float] = {
    "Bay Area (San Francisco)": 1.35,
    "New York City": 1.30,
    "Seattle": 1.25,
    "Boston": 1.22,
    "Los Angeles": 1.20,
    "Austin": 1.05,
    "Denver": 1.03,
    "Remote US": 1.00,
    "Chicago": 0.98,
    "Atlanta": 0.95,
    "Miami": 0.92,
    "Toronto": 0.88,
    "London": 1.15,
    "Berlin": 0.85,
    "Singapore": 1.10,
    "Tel Aviv": 1.05,
    "São Paulo": 0.65,
    "Bangalore": 0.45,
    "Warsaw": 0.55,
    "Cape Town": 0.50,
}

TEAM_MULTIPLIERS: dict[str, float] = {
    "No team yet": 1.3,
    "Partial team": 1.1,
    "Full team assembled": 1.0,
}


# ---------------------------------------------------------------------------
# Versioned table bundle
# ---------------------------------------------------------------------------


class GtmCost(BaseModel):
    year1: int
    years23: int
    sales_cycle: str = ""


def _default_gtm() -> dict[str, GtmCost]:
    return {
        market: GtmCost(year1=y1, years23=y23, sales_cycle=cycle)
        for market, (y1, y23, cycle) in _GTM_ROWS.items()
    }


class CoefficientTables(BaseModel):
    """All lookup tables the engine reads, tagged with a data version."""

    version: str = "2025.1"
    development_costs: dict[str, dict[str, int]] = Field(
        default_factory=lambda: {t: dict(row) for t, row in DEVELOPMENT_COSTS.items()}
    )
    regulatory_costs: dict[str, int] = Field(default_factory=lambda: dict(REGULATORY_COSTS))
    gtm_costs: dict[str, GtmCost] = Field(default_factory=_default_gtm)
    stage_timelines: dict[str, int] = Field(default_factory=lambda: dict(STAGE_TIMELINES))
    geographic_locations: dict[str, float] = Field(default_factory=lambda: dict(GEOGRAPHIC_LOCATIONS))
    team_multipliers: dict[str, float] = Field(default_factory=lambda: dict(TEAM_MULTIPLIERS))

    @model_validator(mode="after")
    def _check_coverage(self) -> CoefficientTables:
        missing: list[str] = []
        for tech in TECHNOLOGY_TYPES:
            row = self.development_costs.get(tech)
            if row is None:
                missing.append(f"development_costs[{tech}]")
            else:
                missing.extend(f"development_costs[{tech}][{s}]" for s in STAGES if s not in row)
            if tech not in self.regulatory_costs:
                missing.append(f"regulatory_costs[{tech}]")
        missing.extend(f"gtm_costs[{m}]" for m in TARGET_MARKETS if m not in self.gtm_costs)
        missing.extend(f"stage_timelines[{s}]" for s in STAGES if s not in self.stage_timelines)
        missing.extend(f"team_multipliers[{t}]" for t in TEAM_STATUSES if t not in self.team_multipliers)
        if missing:
            raise ValueError("missing coefficients: " + ", ".join(missing[:10]))
        return self

    def development_cost(self, technology: str, stage: str) -> int:
        return self.development_costs[technology][stage]

    def regulatory_cost(self, technology: str) -> int:
        return self.regulatory_costs[technology]

    def gtm(self, market: str) -> GtmCost:
        return self.gtm_costs[market]

    def timeline(self, stage: str) -> int:
        return self.stage_timelines[stage]

    def geography_index(self, location: str) -> float:
        """Resolve a free-form location name; unknown names are neutral (1.0)."""
        key = (location or "").strip().casefold()
        for name, index in self.geographic_locations.items():
            if name.casefold() == key:
                return index
        return NEUTRAL_GEOGRAPHY_INDEX

    def team_multiplier(self, status: str) -> float:
        return self.team_multipliers.get(status, 1.0)


DEFAULT_TABLES = CoefficientTables()


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_coefficients(path: str | Path | None) -> CoefficientTables:
    """Load tables from a YAML override file on top of the defaults.

    Keys absent from the file keep their default values.  ``None`` or a
    missing file returns the defaults.
    """
    if path is None:
        return DEFAULT_TABLES
    path = Path(path)
    if not path.exists():
        log.warning("Coefficient file %s not found, using defaults", path)
        return DEFAULT_TABLES
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise CoefficientError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise CoefficientError(f"{path} must contain a mapping at the top level")
    try:
        tables = CoefficientTables.model_validate(_merge(DEFAULT_TABLES.model_dump(), raw))
    except ValidationError as exc:
        raise CoefficientError(f"Invalid coefficients in {path}: {exc}") from exc
    log.info("Loaded coefficient tables version %s from %s", tables.version, path)
    return tables
