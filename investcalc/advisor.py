"""Optional LLM assistance for input mapping and needs-matrix cleanup.

Everything here is advisory.  The heuristic mapper always runs first and its
answer stands unless the classifier returns a value from the field's own
domain.  A missing classifier, a timeout, an API error or malformed output
all degrade to the heuristic result with a warning in the log.

Answers are cached under a SHA-256 of the exact text sent, so re-importing
the same export costs nothing.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import re
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

from sqlalchemy.orm import Session

from investcalc.coefficients import (
    GEOGRAPHIC_LOCATIONS,
    REGULATORY_ENVIRONMENTS,
    STAGES,
    TARGET_MARKETS,
    TEAM_STATUSES,
    TECHNOLOGY_TYPES,
)
from investcalc.mapper import map_project_to_inputs
from investcalc.models import AICacheEntry
from investcalc.schemas import InputSuggestion, MatrixRefinement, NeedsMatrix, VianeoProject

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0
_MAX_PROJECT_TEXT = 6_000
_MAX_CONTEXT = 1_200
_MAX_MATRIX_JSON = 8_000
_MAX_NOTES = 3


class ClassifierError(Exception):
    """Classifier call failed or returned unparseable output."""
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


Classifier = Callable[[str], Awaitable[dict[str, Any]]]


# ---------------------------------------------------------------------------
# Caches
# ---------------------------------------------------------------------------


class KeyValueCache(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any) -> None: ...


class MemoryCache:
    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __len__(self) -> int:
        return len(self._data)


class DbCache:
    """Cache backed by the ``ai_cache`` table of an open session."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, key: str) -> Any | None:
        row = self.session.get(AICacheEntry, key)
        if row is None:
            return None
        try:
            return json.loads(row.value_json)
        except json.JSONDecodeError:
            return None

    def set(self, key: str, value: Any) -> None:
        self.session.merge(AICacheEntry(key=key, value_json=json.dumps(value)))
        self.session.commit()


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# LLM client
# ---------------------------------------------------------------------------


class LLMClient:
    """Unified async LLM client supporting Anthropic and OpenAI."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
        self.model = model or os.environ.get("LLM_MODEL", "")
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self.model = self.model or "claude-haiku-4-5-20251001"
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY")
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.model = self.model or "gpt-4o-mini"
            kwargs: dict[str, Any] = {}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    async def call(self, system: str, user: str, max_tokens: int = 800) -> dict[str, Any]:
        """Send system+user message to the LLM, return parsed JSON."""
        try:
            if self.provider == "anthropic":
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    temperature=0.2,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                )
                text = response.content[0].text.strip()
                m = re.search(r'```(?:json)?\s*(\{.*\})\s*```', text, re.DOTALL)
                if m:
                    text = m.group(1)
            else:
                response = await self._client.chat.completions.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    temperature=0.2,
                    response_format={"type": "json_object"},
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                )
                text = response.choices[0].message.content or "{}"
        except Exception as exc:
            raise ClassifierError(f"LLM API call failed: {exc}", retryable=True) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ClassifierError(
                f"LLM returned invalid JSON: {text[:200]}", retryable=False,
            ) from exc


def _bullets(values: Iterable[str]) -> str:
    return "\n".join(f"- {v}" for v in values)


INPUTS_PROMPT = f"""\
You map innovation project text to the fixed dropdowns of an investment \
calculator. Pick each value verbatim from its list, or omit the field.

technology_type:
{_bullets(TECHNOLOGY_TYPES)}

current_stage:
{_bullets(STAGES)}

target_market:
{_bullets(TARGET_MARKETS)}

geographic_location:
{_bullets(GEOGRAPHIC_LOCATIONS)}

team_status:
{_bullets(TEAM_STATUSES)}

regulatory_environment:
{_bullets(REGULATORY_ENVIRONMENTS)}

Respond with ONLY valid JSON:
{{
  "technology_type": "...", "current_stage": "...", "target_market": "...",
  "geographic_location": "...", "team_status": "...",
  "regulatory_environment": "...", "rationale": "<one sentence>"
}}
"""

MATRIX_PROMPT = """\
Given a persona x need matrix and brief project context, normalize the labels \
and infer the rating scale. Keep the same number of personas, needs and cells; \
keep numeric values numeric.

Respond with ONLY valid JSON:
{"personas": [...], "needs": [...], "values": [[...], ...], "notes": ["<1-3 short notes>"]}
"""


class LLMClassifier:
    """Classifier backed by :class:`LLMClient` with a fixed system prompt."""

    def __init__(self, client: LLMClient, system: str, max_tokens: int = 800):
        self.client = client
        self.system = system
        self.max_tokens = max_tokens

    @property
    def tag(self) -> str:
        return f"{self.client.provider}:{self.client.model}"

    async def __call__(self, text: str) -> dict[str, Any]:
        return await self.client.call(self.system, text, max_tokens=self.max_tokens)


def build_classifiers(
    provider: str | None = None, model: str | None = None,
) -> tuple[LLMClassifier, LLMClassifier] | None:
    """(inputs, matrix) classifiers, or None when no LLM SDK is usable."""
    try:
        client = LLMClient(provider=provider, model=model)
    except (ImportError, ValueError) as exc:
        log.warning("AI assistance unavailable: %s", exc)
        return None
    return (
        LLMClassifier(client, INPUTS_PROMPT, max_tokens=400),
        LLMClassifier(client, MATRIX_PROMPT, max_tokens=800),
    )


# ---------------------------------------------------------------------------
# Advisory operations
# ---------------------------------------------------------------------------

_FIELD_DOMAINS: dict[str, tuple[str, ...]] = {
    "technology_type": TECHNOLOGY_TYPES,
    "current_stage": STAGES,
    "target_market": TARGET_MARKETS,
    "geographic_location": tuple(GEOGRAPHIC_LOCATIONS),
    "team_status": TEAM_STATUSES,
    "regulatory_environment": REGULATORY_ENVIRONMENTS,
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.title() for p in rest)


def project_text(project: VianeoProject) -> str:
    parts = [project.title, project.description or "", ", ".join(project.tags)]
    parts.extend(f"{k}: {v}" for k, v in project.raw_fields.items())
    return "\n".join(p for p in parts if p)[:_MAX_PROJECT_TEXT]


def _cache_key(kind: str, classifier: Classifier, text: str) -> str:
    tag = getattr(classifier, "tag", "custom")
    return f"{kind}:{tag}:{content_hash(text)}"


async def _classify(
    kind: str,
    text: str,
    classifier: Classifier,
    cache: KeyValueCache | None,
    timeout: float,
) -> dict[str, Any] | None:
    key = _cache_key(kind, classifier, text)
    if cache is not None:
        hit = cache.get(key)
        if isinstance(hit, dict):
            log.debug("AI cache hit for %s", key)
            return hit
    try:
        raw = await asyncio.wait_for(classifier(text), timeout=timeout)
    except TimeoutError:
        log.warning("AI %s classification timed out after %.0fs", kind, timeout)
        return None
    except Exception as exc:
        log.warning("AI %s classification failed: %s", kind, exc)
        return None
    if not isinstance(raw, dict):
        log.warning("AI %s classification returned %s, expected an object", kind, type(raw).__name__)
        return None
    if cache is not None:
        cache.set(key, raw)
    return raw


async def suggest_inputs(
    project: VianeoProject,
    classifier: Classifier | None = None,
    cache: KeyValueCache | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> InputSuggestion:
    """Heuristic inputs for *project*, refined by the classifier when given."""
    heuristic = map_project_to_inputs(project)
    if classifier is None:
        return InputSuggestion(inputs=heuristic)

    raw = await _classify("inputs", project_text(project), classifier, cache, timeout)
    if raw is None:
        return InputSuggestion(inputs=heuristic)

    overrides: dict[str, str] = {}
    for field, domain in _FIELD_DOMAINS.items():
        value = raw.get(field, raw.get(_camel(field)))
        if isinstance(value, str) and value in domain and value != getattr(heuristic, field):
            overrides[field] = value
        elif value is not None and value not in domain:
            log.debug("Ignoring AI %s value outside its domain: %r", field, value)
    rationale = raw.get("rationale")
    return InputSuggestion(
        inputs=heuristic.model_copy(update=overrides),
        source="ai" if overrides else "heuristic",
        overridden=list(overrides),
        rationale=str(rationale) if rationale else None,
    )


def _valid_cell(value: object) -> bool:
    return isinstance(value, (int, float, str)) and not isinstance(value, bool)


def _consistent(raw: dict[str, Any], matrix: NeedsMatrix) -> bool:
    personas, needs, values = raw.get("personas"), raw.get("needs"), raw.get("values")
    if not isinstance(personas, list) or not isinstance(needs, list) or not isinstance(values, list):
        return False
    if len(personas) != len(matrix.personas) or len(needs) != len(matrix.needs):
        return False
    if not all(isinstance(p, str) and p for p in personas) or not all(isinstance(n, str) and n for n in needs):
        return False
    if len(values) != len(personas):
        return False
    return all(
        isinstance(row, list) and len(row) == len(needs) and all(_valid_cell(c) for c in row)
        for row in values
    )


async def refine_matrix(
    matrix: NeedsMatrix,
    context: str = "",
    classifier: Classifier | None = None,
    cache: KeyValueCache | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> MatrixRefinement:
    """Relabelled matrix from the classifier, or *matrix* itself.

    A refinement is only taken if it keeps the persona, need and cell counts.
    """
    if classifier is None:
        return MatrixRefinement(matrix=matrix)

    grid = json.dumps(matrix.model_dump(exclude={"source"}))[:_MAX_MATRIX_JSON]
    text = f"Context:\n{context[:_MAX_CONTEXT]}\nMatrix JSON:\n{grid}"
    raw = await _classify("matrix", text, classifier, cache, timeout)
    if raw is None:
        return MatrixRefinement(matrix=matrix)
    if not _consistent(raw, matrix):
        log.warning("Discarding AI matrix refinement with a different shape")
        return MatrixRefinement(matrix=matrix)

    notes = raw.get("notes")
    notes = [str(n) for n in notes][:_MAX_NOTES] if isinstance(notes, list) else []
    refined = NeedsMatrix(
        personas=raw["personas"], needs=raw["needs"], values=raw["values"], source=matrix.source,
    )
    return MatrixRefinement(matrix=refined, source="ai", notes=notes)
