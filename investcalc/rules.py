"""Ordered keyword rule tables.

Each table is a tuple of ``(keyword, value)`` rules tested in declared order
against a lowercase corpus; the first keyword found as a substring wins.
There is no scoring and no longest-match preference, so order matters:
``"software"`` must stay ahead of ``"ai"``, for instance.
"""
from __future__ import annotations

import re
from typing import TypeVar

T = TypeVar("T")

KeywordRules = tuple[tuple[str, str], ...]


def first_match(corpus: str, rules: tuple[tuple[str, T], ...], default: T) -> T:
    """Return the value of the first rule whose keyword occurs in *corpus*."""
    text = corpus.lower()
    for keyword, value in rules:
        if keyword in text:
            return value
    return default


def first_pattern(text: str, rules: tuple[tuple[re.Pattern[str], T], ...], default: T) -> T:
    """Like :func:`first_match` but with compiled regular expressions."""
    lowered = text.lower()
    for pattern, value in rules:
        if pattern.search(lowered):
            return value
    return default


# ---------------------------------------------------------------------------
# Input mapper tables
# ---------------------------------------------------------------------------

TECHNOLOGY_RULES: KeywordRules = (
    ("software", "Software/SaaS Platform"),
    ("saas", "Software/SaaS Platform"),
    ("ai", "AI/Machine Learning"),
    ("machine", "AI/Machine Learning"),
    ("biotech", "Biotech/Pharmaceutical"),
    ("pharma", "Biotech/Pharmaceutical"),
    ("medtech", "Medical Devices/MedTech"),
    ("device", "Medical Devices/MedTech"),
    ("robotics", "Robotics/Automation"),
    ("hardware", "Hardware/Physical Product"),
    ("iot", "IoT/Connected Devices"),
    ("energy", "Clean Energy/Renewables"),
    ("climate", "Climate Tech/Carbon"),
    ("nuclear", "Nuclear/Advanced Nuclear"),
    ("agriculture", "AgriTech/Precision Agriculture"),
    ("fintech", "FinTech/Financial Services"),
    ("blockchain", "Blockchain/Web3"),
)

STAGE_RULES: KeywordRules = (
    ("concept", "Concept (TRL 1-3)"),
    ("idea", "Concept (TRL 1-3)"),
    ("prototype", "Prototype (TRL 4-6)"),
    ("mvp", "Prototype (TRL 4-6)"),
    ("pilot", "Pilot (TRL 7-8)"),
    ("market", "Market Ready (TRL 9)"),
    ("production", "Market Ready (TRL 9)"),
)

MARKET_RULES: KeywordRules = (
    ("enterprise", "Large Enterprise (Fortune 1000)"),
    ("fortune", "Large Enterprise (Fortune 1000)"),
    ("smb", "Small Business B2B (<500 employees)"),
    ("small", "Small Business B2B (<500 employees)"),
    ("government", "Federal/National Government"),
    ("defense", "Military/Defense"),
    ("hospital", "Hospital Systems/Integrated Delivery"),
    ("pharma", "Pharmaceutical/Biotech Companies"),
    ("insurance", "Insurance/Payers"),
    ("consumer", "Mass Market Consumer (B2C)"),
    ("retail", "Mass Market Consumer (B2C)"),
    ("marketplace", "Two-Sided Marketplace"),
    ("platform", "Multi-Sided Platform"),
    ("manufacturing", "Manufacturing/Industrial"),
    ("energy", "Energy/Utilities"),
    ("agriculture", "Agriculture/Food Production"),
)

TEAM_RULES: KeywordRules = (
    ("no team", "No team yet"),
    ("none", "No team yet"),
    ("partial", "Partial team"),
    ("core", "Partial team"),
    ("full", "Full team assembled"),
    ("complete", "Full team assembled"),
)

REGULATORY_RULES: KeywordRules = (
    ("fda", "Heavy (FDA/EPA level)"),
    ("epa", "Heavy (FDA/EPA level)"),
    ("hipaa", "Moderate"),
    ("moderate", "Moderate"),
    ("heavy", "Heavy (FDA/EPA level)"),
    ("none", "None"),
    ("low", "None"),
)

# Location checks run independently of the tables above.
GEOGRAPHY_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"bay area|san francisco|silicon valley"), "Bay Area (San Francisco)"),
    (re.compile(r"austin"), "Austin"),
    (re.compile(r"new york|nyc"), "New York City"),
    (re.compile(r"london"), "London"),
    (re.compile(r"remote"), "Remote US"),
)

# ---------------------------------------------------------------------------
# Cost allocator driver table
# ---------------------------------------------------------------------------

# (development, gtm, regulatory) emphasis inferred from a need label
DriverWeights = tuple[float, float, float]

DRIVER_RULES: tuple[tuple[re.Pattern[str], DriverWeights], ...] = (
    (re.compile(r"regulat|compliance|approval|certif|fda|epa|hipaa|gdpr"), (0.2, 0.1, 0.7)),
    (re.compile(r"market|sales|pricing|acquisition|demand|distribution|channel|brand|marketing"), (0.2, 0.7, 0.1)),
    (re.compile(r"tech|product|prototype|mvp|build|engineering|performance|scal(ing|ability)|feature"), (0.7, 0.2, 0.1)),
)
DEFAULT_DRIVER_WEIGHTS: DriverWeights = (0.5, 0.4, 0.1)
