from __future__ import annotations

import pytest

from investcalc.engine import MissingScenarioError, calculate_investment
from investcalc.needs_matrix import (
    UNKNOWN_CELL_WEIGHT,
    allocate_costs,
    detect_scale,
    estimate_cell_cost,
    infer_driver_weights,
    normalize_matrix,
    parse_number,
)
from investcalc.rules import DEFAULT_DRIVER_WEIGHTS
from investcalc.schemas import EngineInput, NormalizedMatrix


@pytest.fixture()
def results():
    return calculate_investment(EngineInput(
        technology_type="Software/SaaS Platform",
        current_stage="Prototype (TRL 4-6)",
        target_market="Large Enterprise (Fortune 1000)",
        geographic_location="Remote US",
        team_status="Partial team",
        regulatory_environment="None",
    ))


class TestParseNumber:
    @pytest.mark.parametrize("value,expected", [
        (3, 3.0),
        (2.5, 2.5),
        ("$1,200", 1200.0),
        ("  42 % ", 42.0),
        ("-4", -4.0),
        ("1.2.3", 1.2),
        ("3-5", 3.0),
        ("v2", 2.0),
    ])
    def test_numbers(self, value, expected):
        assert parse_number(value) == expected

    @pytest.mark.parametrize("value", [True, False, "", "high", "n/a", float("nan"), float("inf")])
    def test_non_numbers(self, value):
        assert parse_number(value) is None


class TestDetectScale:
    @pytest.mark.parametrize("numbers,expected", [
        ([], "categorical"),
        ([0, 1, 1], "binary"),
        ([1, 3, 5], "score-1-5"),
        ([-2, 3], "score-1-5"),
        ([0, 7, 10], "score-0-10"),
        ([0, 50, 100], "percentage"),
        ([20, 150], "score-0-10"),
    ])
    def test_rules(self, numbers, expected):
        assert detect_scale(numbers) == expected


class TestNormalize:
    def test_score_range(self):
        m = normalize_matrix(["A", "B"], ["N1", "N2"], [[1, 5], [3, "high"]])
        assert m.scale == "score-1-5"
        assert m.weights == [[0.0, 1.0], [0.5, 1.0]]

    def test_percentage_divides_by_100(self):
        m = normalize_matrix(["A", "B"], ["N1", "N2"], [[50, 100], [20, "n/a"]])
        assert m.scale == "percentage"
        assert m.weights == [[0.5, 1.0], [0.2, UNKNOWN_CELL_WEIGHT]]

    def test_binary(self):
        m = normalize_matrix(["A", "B"], ["N1", "N2"], [[0, 1], [1, "no"]])
        assert m.scale == "binary"
        assert m.weights == [[0.0, 1.0], [1.0, 0.0]]

    def test_categorical_tokens(self):
        m = normalize_matrix(["A", "B"], ["N1", "N2"], [["High", " medium "], ["whatever", "YES"]])
        assert m.scale == "categorical"
        assert m.weights == [[1.0, 0.6], [UNKNOWN_CELL_WEIGHT, 1.0]]

    def test_negative_values_clamped(self):
        m = normalize_matrix(["A"], ["N1", "N2"], [[-5, 5]])
        assert m.weights == [[0.0, 1.0]]

    def test_constant_values(self):
        m = normalize_matrix(["A"], ["N1", "N2"], [[3, 3]])
        assert m.weights == [[0.0, 0.0]]

    @pytest.mark.parametrize("values", [
        [[1, 2, 3], [4, 5, "low"]],
        [["12%", "97%", "x"], ["3", "optional", "critical"]],
        [[0.1, 0.9, 1], ["yes", "no", ""]],
        [[250, -10, 7], [1e6, "important", 0]],
    ])
    def test_weights_in_unit_interval(self, values):
        m = normalize_matrix(["A", "B"], ["N1", "N2", "N3"], values)
        assert all(0.0 <= w <= 1.0 for row in m.weights for w in row)
        assert len(m.weights) == 2
        assert all(len(row) == 3 for row in m.weights)

    def test_labels_carried(self):
        m = normalize_matrix(("A",), ("N1",), [[1]])
        assert m.personas == ["A"]
        assert m.needs == ["N1"]


class TestDriverWeights:
    @pytest.mark.parametrize("label,expected", [
        ("Regulatory approval", (0.2, 0.1, 0.7)),
        ("GDPR compliance", (0.2, 0.1, 0.7)),
        ("Market demand", (0.2, 0.7, 0.1)),
        ("Pricing", (0.2, 0.7, 0.1)),
        ("Product build", (0.7, 0.2, 0.1)),
        ("Scalability", (0.7, 0.2, 0.1)),
        ("Happiness", DEFAULT_DRIVER_WEIGHTS),
    ])
    def test_keywords(self, label, expected):
        assert infer_driver_weights(label) == expected

    def test_first_rule_wins(self):
        # mentions both a regulatory and a market keyword
        assert infer_driver_weights("Market approval") == (0.2, 0.1, 0.7)


class TestAllocation:
    NEEDS = ["Regulatory approval", "Market demand", "Product build", "Other"]

    def test_cell_costs_from_realistic_breakdown(self, results):
        # Realistic: development 420k, gtm year 1 900k, regulatory 50k
        assert estimate_cell_cost(results, "Regulatory approval", 1.0) == 209_000
        assert estimate_cell_cost(results, "Market demand", 1.0) == 719_000
        assert estimate_cell_cost(results, "Product build", 1.0) == 479_000
        assert estimate_cell_cost(results, "Other", 1.0) == 575_000
        assert estimate_cell_cost(results, "Other", 0.5) == 287_500
        assert estimate_cell_cost(results, "Other", 0.0) == 0

    def test_totals_agree(self, results):
        matrix = normalize_matrix(
            ["Ops", "CFO", "Engineer"], self.NEEDS,
            [[5, 1, 3, "high"], [2, 4, "low", 1], ["n/a", 5, 5, 2]],
        )
        alloc = allocate_costs(results, matrix)
        assert sum(alloc.per_persona.values()) == alloc.total
        assert sum(alloc.per_need.values()) == alloc.total
        assert alloc.total == sum(sum(row) for row in alloc.cells)
        assert list(alloc.per_persona) == ["Ops", "CFO", "Engineer"]
        assert list(alloc.per_need) == self.NEEDS

    def test_full_weight_row(self, results):
        matrix = NormalizedMatrix(personas=["P"], needs=self.NEEDS, weights=[[1.0] * 4], scale="binary")
        alloc = allocate_costs(results, matrix)
        assert alloc.cells == [[209_000, 719_000, 479_000, 575_000]]
        assert alloc.per_persona == {"P": 1_982_000}

    def test_missing_weights_count_as_zero(self, results):
        matrix = NormalizedMatrix(personas=["P", "Q"], needs=["Other", "Pricing"], weights=[[1.0]], scale="binary")
        alloc = allocate_costs(results, matrix)
        assert alloc.cells == [[575_000, 0], [0, 0]]
        assert alloc.per_need == {"Other": 575_000, "Pricing": 0}

    def test_requires_realistic(self, results):
        broken = results.model_copy(update={
            "scenarios": tuple(s for s in results.scenarios if s.name != "Realistic"),
        })
        matrix = NormalizedMatrix(personas=["P"], needs=["N"], weights=[[1.0]], scale="binary")
        with pytest.raises(MissingScenarioError):
            allocate_costs(broken, matrix)

    def test_empty_matrix(self, results):
        matrix = NormalizedMatrix(personas=[], needs=[], weights=[], scale="categorical")
        alloc = allocate_costs(results, matrix)
        assert alloc.total == 0
        assert alloc.cells == []
