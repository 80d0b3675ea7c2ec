"""Tests for the optional LLM assistance: domain filtering, fallbacks, caching."""
from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from investcalc.advisor import (
    INPUTS_PROMPT,
    ClassifierError,
    DbCache,
    LLMClassifier,
    LLMClient,
    MemoryCache,
    build_classifiers,
    project_text,
    refine_matrix,
    suggest_inputs,
)
from investcalc.mapper import map_project_to_inputs
from investcalc.models import AICacheEntry, Base
from investcalc.schemas import NeedsMatrix, VianeoProject


def _classifier(result=None, **kwargs) -> AsyncMock:
    mock = AsyncMock(return_value=result, **kwargs)
    mock.tag = "test:model"
    return mock


@pytest.fixture()
def project() -> VianeoProject:
    return VianeoProject(
        id="p1",
        title="Autonomous warehouse robots",
        description="Robotics pilot with two enterprise customers",
        tags=["logistics"],
    )


@pytest.fixture()
def matrix() -> NeedsMatrix:
    return NeedsMatrix(
        personas=["ops mgr", "cfo"],
        needs=["speed", "cost"],
        values=[[4, "high"], [2, 5]],
        source="export/saved_resource.html",
    )


# ---------------------------------------------------------------------------
# suggest_inputs
# ---------------------------------------------------------------------------


class TestSuggestInputs:
    @pytest.mark.asyncio
    async def test_without_classifier(self, project):
        suggestion = await suggest_inputs(project)
        assert suggestion.source == "heuristic"
        assert suggestion.inputs == map_project_to_inputs(project)
        assert suggestion.overridden == []

    @pytest.mark.asyncio
    async def test_in_domain_values_override(self, project):
        heuristic = map_project_to_inputs(project)
        classifier = _classifier({
            "technology_type": "AI/Machine Learning",
            "currentStage": "Market Ready (TRL 9)",
            "target_market": "Martians",
            "team_status": heuristic.team_status,
            "geographic_location": "London",
            "rationale": "Vision models drive the robots.",
        })
        suggestion = await suggest_inputs(project, classifier)

        assert suggestion.source == "ai"
        assert suggestion.overridden == ["technology_type", "current_stage", "geographic_location"]
        assert suggestion.inputs.technology_type == "AI/Machine Learning"
        assert suggestion.inputs.current_stage == "Market Ready (TRL 9)"
        assert suggestion.inputs.geographic_location == "London"
        assert suggestion.inputs.target_market == heuristic.target_market
        assert suggestion.rationale == "Vision models drive the robots."
        classifier.assert_awaited_once_with(project_text(project))

    @pytest.mark.asyncio
    async def test_no_usable_values(self, project):
        suggestion = await suggest_inputs(project, _classifier({"technology_type": 42}))
        assert suggestion.source == "heuristic"
        assert suggestion.inputs == map_project_to_inputs(project)

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, project, caplog):
        async def slow(text):
            await asyncio.sleep(5)
            return {"technology_type": "AI/Machine Learning"}

        with caplog.at_level(logging.WARNING, logger="investcalc.advisor"):
            suggestion = await suggest_inputs(project, slow, timeout=0.01)
        assert suggestion.source == "heuristic"
        assert "timed out" in caplog.text

    @pytest.mark.asyncio
    async def test_error_falls_back(self, project):
        classifier = _classifier(side_effect=ClassifierError("rate limited", retryable=True))
        suggestion = await suggest_inputs(project, classifier)
        assert suggestion.inputs == map_project_to_inputs(project)

    @pytest.mark.asyncio
    async def test_non_object_output_falls_back(self, project):
        suggestion = await suggest_inputs(project, _classifier(["AI/Machine Learning"]))
        assert suggestion.source == "heuristic"


class TestCaching:
    @pytest.mark.asyncio
    async def test_second_call_hits_cache(self, project):
        cache = MemoryCache()
        classifier = _classifier({"technology_type": "AI/Machine Learning"})
        first = await suggest_inputs(project, classifier, cache)
        second = await suggest_inputs(project, classifier, cache)
        assert first == second
        assert classifier.await_count == 1
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_failures_not_cached(self, project):
        cache = MemoryCache()
        await suggest_inputs(project, _classifier(side_effect=RuntimeError("down")), cache)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_changed_text_misses(self, project):
        cache = MemoryCache()
        classifier = _classifier({})
        await suggest_inputs(project, classifier, cache)
        await suggest_inputs(project.model_copy(update={"title": "Other"}), classifier, cache)
        assert classifier.await_count == 2

    @pytest.mark.asyncio
    async def test_kinds_do_not_collide(self, project, matrix):
        cache = MemoryCache()
        classifier = _classifier({})
        await suggest_inputs(project, classifier, cache)
        await refine_matrix(matrix, classifier=classifier, cache=cache)
        assert len(cache) == 2


class TestDbCache:
    @pytest.fixture()
    def session(self):
        engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
        Base.metadata.create_all(engine)
        sess = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
        try:
            yield sess
        finally:
            sess.close()

    def test_set_get(self, session):
        cache = DbCache(session)
        assert cache.get("k") is None
        cache.set("k", {"a": 1})
        assert cache.get("k") == {"a": 1}
        cache.set("k", {"a": 2})
        assert cache.get("k") == {"a": 2}
        assert session.query(AICacheEntry).count() == 1

    def test_corrupt_row(self, session):
        session.add(AICacheEntry(key="bad", value_json="{nope"))
        session.commit()
        assert DbCache(session).get("bad") is None

    @pytest.mark.asyncio
    async def test_used_by_suggest(self, session, project):
        classifier = _classifier({"technology_type": "AI/Machine Learning"})
        await suggest_inputs(project, classifier, DbCache(session))
        again = await suggest_inputs(project, classifier, DbCache(session))
        assert again.inputs.technology_type == "AI/Machine Learning"
        assert classifier.await_count == 1
        key = session.query(AICacheEntry).one().key
        assert key.startswith("inputs:test:model:")


# ---------------------------------------------------------------------------
# refine_matrix
# ---------------------------------------------------------------------------


class TestRefineMatrix:
    @pytest.mark.asyncio
    async def test_without_classifier(self, matrix):
        refinement = await refine_matrix(matrix)
        assert refinement.source == "original"
        assert refinement.matrix == matrix

    @pytest.mark.asyncio
    async def test_accepts_same_shape(self, matrix):
        classifier = _classifier({
            "personas": ["Operations Manager", "CFO"],
            "needs": ["Speed", "Cost"],
            "values": [[4, "high"], [2, 5]],
            "notes": ["a", "b", "c", "d"],
        })
        refinement = await refine_matrix(matrix, "warehouse robots", classifier)
        assert refinement.source == "ai"
        assert refinement.matrix.personas == ["Operations Manager", "CFO"]
        assert refinement.matrix.source == matrix.source
        assert refinement.notes == ["a", "b", "c"]
        sent = classifier.await_args.args[0]
        assert "warehouse robots" in sent
        assert "ops mgr" in sent

    @pytest.mark.parametrize("raw", [
        {"personas": ["Ops"], "needs": ["Speed", "Cost"], "values": [[4, "high"]]},
        {"personas": ["Ops", "CFO"], "needs": ["Speed"], "values": [[4], [2]]},
        {"personas": ["Ops", "CFO"], "needs": ["Speed", "Cost"], "values": [[4, "high"], [2]]},
        {"personas": ["Ops", ""], "needs": ["Speed", "Cost"], "values": [[4, "high"], [2, 5]]},
        {"personas": ["Ops", "CFO"], "needs": ["Speed", "Cost"], "values": [[4, True], [2, 5]]},
        {"personas": ["Ops", "CFO"], "needs": ["Speed", "Cost"], "values": [[4, None], [2, 5]]},
        {"personas": "Ops, CFO", "needs": ["Speed", "Cost"], "values": [[4, "high"], [2, 5]]},
        {"notes": ["no matrix"]},
    ])
    @pytest.mark.asyncio
    async def test_rejects_other_shapes(self, matrix, raw):
        refinement = await refine_matrix(matrix, classifier=_classifier(raw))
        assert refinement.source == "original"
        assert refinement.matrix == matrix

    @pytest.mark.asyncio
    async def test_error_falls_back(self, matrix):
        refinement = await refine_matrix(matrix, classifier=_classifier(side_effect=ClassifierError("x")))
        assert refinement.matrix == matrix


# ---------------------------------------------------------------------------
# LLM client plumbing
# ---------------------------------------------------------------------------


def _anthropic_client(text: str | None = None, exc: Exception | None = None) -> LLMClient:
    client = LLMClient.__new__(LLMClient)
    client.provider = "anthropic"
    client.model = "test-model"
    client._client = MagicMock()
    if exc is not None:
        client._client.messages.create = AsyncMock(side_effect=exc)
    else:
        response = SimpleNamespace(content=[SimpleNamespace(text=text)])
        client._client.messages.create = AsyncMock(return_value=response)
    return client


class TestLLMClient:
    @pytest.mark.asyncio
    async def test_parses_fenced_json(self):
        client = _anthropic_client('Here you go:\n```json\n{"technology_type": "AI/Machine Learning"}\n```')
        assert await client.call("sys", "user") == {"technology_type": "AI/Machine Learning"}
        kwargs = client._client.messages.create.await_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = _anthropic_client("not json")
        with pytest.raises(ClassifierError) as exc_info:
            await client.call("sys", "user")
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_api_error_is_retryable(self):
        client = _anthropic_client(exc=ConnectionError("reset"))
        with pytest.raises(ClassifierError) as exc_info:
            await client.call("sys", "user")
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_classifier_wraps_client(self):
        client = _anthropic_client('{"a": 1}')
        classifier = LLMClassifier(client, "system prompt", max_tokens=123)
        assert classifier.tag == "anthropic:test-model"
        assert await classifier("text") == {"a": 1}
        kwargs = client._client.messages.create.await_args.kwargs
        assert kwargs["max_tokens"] == 123
        assert kwargs["messages"] == [{"role": "user", "content": "text"}]

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            LLMClient(provider="carrier-pigeon")
        assert build_classifiers("carrier-pigeon") is None

    def test_prompt_lists_domains(self):
        assert "Software/SaaS Platform" in INPUTS_PROMPT
        assert "Heavy (FDA/EPA level)" in INPUTS_PROMPT
