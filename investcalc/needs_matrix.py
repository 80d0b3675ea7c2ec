"""Persona x need matrices: weight normalization and cost allocation."""
from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence

from investcalc.engine import find_scenario, round_half_up
from investcalc.rules import DEFAULT_DRIVER_WEIGHTS, DRIVER_RULES, DriverWeights, first_pattern
from investcalc.schemas import CalculationResult, CellValue, CostAllocation, MatrixScale, NormalizedMatrix

log = logging.getLogger(__name__)

CATEGORICAL_WEIGHTS: dict[str, float] = {
    "high": 1.0,
    "medium": 0.6,
    "low": 0.3,
    "yes": 1.0,
    "no": 0.0,
    "critical": 1.0,
    "important": 0.7,
    "optional": 0.3,
}

# Weight for cells that are neither numeric nor a known token.
UNKNOWN_CELL_WEIGHT = 0.2

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_LEADING_NUMBER = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


def parse_number(value: CellValue) -> float | None:
    """Numeric reading of a cell: a native number, or digits left after
    stripping everything but ``0-9 . -`` (leading number only)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    m = _LEADING_NUMBER.match(_NON_NUMERIC.sub("", str(value).strip()))
    return float(m.group(0)) if m else None


def detect_scale(numbers: Sequence[float]) -> MatrixScale:
    if not numbers:
        return "categorical"
    lo, hi = min(numbers), max(numbers)
    if hi <= 1 and lo >= 0:
        return "binary"
    if hi <= 5:
        return "score-1-5"
    if hi <= 10:
        return "score-0-10"
    if hi <= 100:
        return "percentage"
    return "score-0-10"


def normalize_matrix(
    personas: Sequence[str], needs: Sequence[str], values: Sequence[Sequence[CellValue]],
) -> NormalizedMatrix:
    """Turn raw cells into weights in [0, 1] and report the detected scale.

    Numeric cells are scaled against the observed range (or /100 for
    percentages); other cells go through ``CATEGORICAL_WEIGHTS`` and fall back
    to ``UNKNOWN_CELL_WEIGHT``.
    """
    parsed = [[parse_number(v) for v in row] for row in values]
    numbers = [n for row in parsed for n in row if n is not None]
    scale = detect_scale(numbers)

    floor = denom = 0.0
    if numbers:
        lo, hi = min(numbers), max(numbers)
        floor = max(0.0, lo)
        denom = 100.0 if scale == "percentage" else ((hi - floor) or hi or 1.0)

    weights: list[list[float]] = []
    for raw_row, num_row in zip(values, parsed):
        row: list[float] = []
        for raw, num in zip(raw_row, num_row):
            if num is not None:
                w = num / 100.0 if scale == "percentage" else (num - floor) / denom
                row.append(min(1.0, max(0.0, w)))
            else:
                row.append(CATEGORICAL_WEIGHTS.get(str(raw).strip().lower(), UNKNOWN_CELL_WEIGHT))
        weights.append(row)

    return NormalizedMatrix(personas=list(personas), needs=list(needs), weights=weights, scale=scale)


# ---------------------------------------------------------------------------
# Cost allocation
# ---------------------------------------------------------------------------


def infer_driver_weights(need_label: str) -> DriverWeights:
    """(development, gtm, regulatory) emphasis for a need, by keyword."""
    return first_pattern(need_label, DRIVER_RULES, DEFAULT_DRIVER_WEIGHTS)


def estimate_cell_cost(results: CalculationResult, need_label: str, weight: float) -> int:
    realistic = find_scenario(results, "Realistic").breakdown
    dev, gtm, reg = infer_driver_weights(need_label)
    base = realistic.development * dev + realistic.gtm_year1 * gtm + realistic.regulatory * reg
    return round_half_up(base * weight)


def allocate_costs(results: CalculationResult, matrix: NormalizedMatrix) -> CostAllocation:
    """Spread the Realistic breakdown over every persona x need cell.

    Per-persona and per-need totals are sums of the same cell estimates, so
    both add up to ``total``.
    """
    find_scenario(results, "Realistic")
    per_persona: dict[str, int] = {}
    per_need: dict[str, int] = {}
    cells: list[list[int]] = []
    for i, persona in enumerate(matrix.personas):
        row: list[int] = []
        weights = matrix.weights[i] if i < len(matrix.weights) else []
        for j, need in enumerate(matrix.needs):
            w = weights[j] if j < len(weights) else 0.0
            cost = estimate_cell_cost(results, need, w)
            row.append(cost)
            per_persona[persona] = per_persona.get(persona, 0) + cost
            per_need[need] = per_need.get(need, 0) + cost
        cells.append(row)
    total = sum(sum(r) for r in cells)
    log.debug("Allocated %d across %d personas x %d needs", total, len(matrix.personas), len(matrix.needs))
    return CostAllocation(cells=cells, per_persona=per_persona, per_need=per_need, total=total)
