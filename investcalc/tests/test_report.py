from __future__ import annotations

from unittest.mock import patch

import pytest

from investcalc.engine import calculate_investment, calculate_staged_funding
from investcalc.report import (
    TOP_NEEDS,
    build_report,
    render_markdown,
    report_for_project,
    run_batch,
)
from investcalc.schemas import EngineInput, NeedsMatrix, VianeoProject


@pytest.fixture()
def inputs() -> EngineInput:
    return EngineInput(
        technology_type="Software/SaaS Platform",
        current_stage="Prototype (TRL 4-6)",
        target_market="Large Enterprise (Fortune 1000)",
        geographic_location="London",
        team_status="Partial team",
        regulatory_environment="None",
    )


@pytest.fixture()
def project() -> VianeoProject:
    return VianeoProject(
        id="alpha",
        title="Alpha Analytics",
        description="SaaS analytics for enterprise finance teams",
        needs_matrix=NeedsMatrix(
            personas=["Analyst", "CFO"],
            needs=["Pricing", "Product build", "Compliance"],
            values=[[5, 3, 1], [2, 4, 5]],
        ),
    )


class TestBuildReport:
    def test_summary(self, inputs):
        results = calculate_investment(inputs)
        report = build_report(inputs, results, calculate_staged_funding(results))
        assert report.summary.recommended_total == 1_538_000
        assert report.summary.timeline == 24
        assert report.summary.break_even == 42
        assert report.summary.geography_index == 1.15
        assert report.summary.sales_cycle == "9-18 months"
        assert [s.name for s in report.scenarios] == ["Optimistic", "Realistic", "Conservative"]
        assert report.needs is None
        assert report.project_id is None

    def test_needs_section(self, inputs, project):
        results = calculate_investment(inputs)
        report = build_report(inputs, results, calculate_staged_funding(results), project)
        needs = report.needs
        assert needs is not None
        assert needs.scale == "score-1-5"
        assert needs.allocation.total == sum(needs.per_persona.values())
        costs = [cost for _, cost in needs.top_needs]
        assert costs == sorted(costs, reverse=True)
        assert len(needs.top_needs) <= TOP_NEEDS
        assert report.project_title == "Alpha Analytics"


class TestMarkdown:
    @pytest.fixture()
    def markdown(self, inputs, project) -> str:
        results = calculate_investment(inputs)
        return render_markdown(build_report(inputs, results, calculate_staged_funding(results), project))

    def test_sections(self, markdown):
        for heading in (
            "# Innovation Investment Report",
            "## Executive Summary",
            "## Investment Breakdown",
            "## Staged Funding Model",
            "## Methodology",
            "## Needs Qualification Matrix",
        ):
            assert heading in markdown

    def test_figures(self, markdown):
        assert "**Recommended Investment: $1.54M**" in markdown
        assert "Confidence Range: $1.31M - $1.77M" in markdown
        assert "| Realistic | $1,538,000 | $420,000 | $50,000 | $900,000 | $168,000 | 24 mo | 42 mo |" in markdown
        assert "### Phase 1: Validate" in markdown
        assert "Decision Gate: Technical milestone achieved?" in markdown
        assert "Scale detected: score-1-5" in markdown
        assert "London (cost index 1.15)" in markdown

    def test_without_project(self, inputs):
        results = calculate_investment(inputs)
        md = render_markdown(build_report(inputs, results, calculate_staged_funding(results)))
        assert "## Needs Qualification Matrix" not in md


class TestBatch:
    def test_all_projects(self, project):
        other = VianeoProject(id="beta", title="Beta biotech pilot")
        progress = []
        result = run_batch([project, other], on_progress=lambda i, n, p: progress.append((i, n, p.id)))
        assert result.processed == 2
        assert result.failed == 0
        assert [r.project_id for r in result.reports] == ["alpha", "beta"]
        assert progress == [(1, 2, "alpha"), (2, 2, "beta")]

    def test_failure_does_not_stop_batch(self, project):
        real = report_for_project
        calls = []

        def flaky(p, tables):
            calls.append(p.id)
            if p.id == "bad":
                raise RuntimeError("boom")
            return real(p, tables)

        bad = VianeoProject(id="bad", title="Broken")
        with patch("investcalc.report.report_for_project", side_effect=flaky):
            result = run_batch([bad, project])
        assert calls == ["bad", "alpha"]
        assert result.processed == 1
        assert result.failed == 1
        assert result.errors == ["bad: boom"]
        assert result.reports[0].project_id == "alpha"

    def test_mapped_inputs(self, project):
        report = report_for_project(project)
        assert report.summary.inputs.technology_type == "Software/SaaS Platform"
        assert report.summary.inputs.target_market == "Large Enterprise (Fortune 1000)"
