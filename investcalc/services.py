"""Saved calculations: shared by the API, the CLI and the MCP server."""
from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from urllib.parse import urlencode

from sqlalchemy import select
from sqlalchemy.orm import Session

from investcalc.models import SavedCalculation
from investcalc.schemas import CalculationResult, EngineInput, SavedCalculationOut

log = logging.getLogger(__name__)

# Rows returned by list_calculations when no limit is given
DEFAULT_LIST_LIMIT = 50


def new_calculation_id() -> str:
    return uuid.uuid4().hex


def share_link(base_url: str, calc_id: str) -> str:
    """Locator that reopens a saved calculation: ``<base>?load=<id>``."""
    return f"{base_url.split('?', 1)[0]}?{urlencode({'load': calc_id})}"


def _to_out(row: SavedCalculation, base_url: str | None = None) -> SavedCalculationOut:
    return SavedCalculationOut(
        id=row.id,
        created_at=row.created_at,
        inputs=EngineInput.model_validate_json(row.inputs_json),
        results=CalculationResult.model_validate_json(row.results_json),
        link=share_link(base_url, row.id) if base_url else "",
    )


def save_calculation(
    session: Session, inputs: EngineInput, results: CalculationResult,
) -> str:
    """Store an input/result pair and return its opaque id."""
    calc_id = new_calculation_id()
    session.add(SavedCalculation(
        id=calc_id,
        inputs_json=inputs.model_dump_json(),
        results_json=results.model_dump_json(),
        created_at=datetime.now(UTC),
    ))
    session.commit()
    log.info("Saved calculation %s", calc_id)
    return calc_id


def load_calculation(
    session: Session, calc_id: str, base_url: str | None = None,
) -> SavedCalculationOut | None:
    row = session.get(SavedCalculation, calc_id)
    if row is None:
        return None
    return _to_out(row, base_url)


def list_calculations(
    session: Session, limit: int = DEFAULT_LIST_LIMIT, base_url: str | None = None,
) -> list[SavedCalculationOut]:
    """Saved calculations, newest first."""
    rows = session.execute(
        select(SavedCalculation)
        .order_by(SavedCalculation.created_at.desc(), SavedCalculation.id)
        .limit(limit)
    ).scalars().all()
    return [_to_out(r, base_url) for r in rows]


def delete_calculation(session: Session, calc_id: str) -> bool:
    row = session.get(SavedCalculation, calc_id)
    if row is None:
        return False
    session.delete(row)
    session.commit()
    return True


def calculation_summary(saved: SavedCalculationOut) -> dict:
    """Compact dict for tool and CLI listings."""
    realistic = next((s for s in saved.results.scenarios if s.name == "Realistic"), None)
    return {
        "id": saved.id,
        "created_at": saved.created_at.isoformat() if saved.created_at else None,
        "technology_type": saved.inputs.technology_type,
        "current_stage": saved.inputs.current_stage,
        "target_market": saved.inputs.target_market,
        "realistic_total": realistic.total if realistic else None,
        "link": saved.link,
    }
