from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import models
from ..database import insert_for

logger = logging.getLogger(__name__)

DEFAULT_TTL = dt.timedelta(days=30)


class ExtractionKind(str, Enum):
    SALES_PROFILE = "sales-profile"
    ICP_SUGGESTION = "icp-suggestion"


@dataclass(frozen=True)
class ModelRate:
    input_usd_per_million: float
    output_usd_per_million: float
    # Prefix for cost item names reported to the runs-service.
    cost_slug: str


MODEL_RATES: dict[str, ModelRate] = {
    "claude-3-haiku-20240307": ModelRate(0.25, 1.25, "anthropic-haiku-3"),
    "claude-3-5-haiku-latest": ModelRate(0.80, 4.0, "anthropic-haiku-3.5"),
    "claude-sonnet-4-5": ModelRate(3.0, 15.0, "anthropic-sonnet-4.5"),
    "claude-opus-4-5": ModelRate(5.0, 25.0, "anthropic-opus-4.5"),
}


def rate_for(model: str) -> ModelRate:
    try:
        return MODEL_RATES[model]
    except KeyError:
        raise ValueError(f"No token rates configured for model {model!r}") from None


def token_cost_usd(model: str, input_tokens: int, output_tokens: int) -> float:
    rate = rate_for(model)
    return (input_tokens * rate.input_usd_per_million + output_tokens * rate.output_usd_per_million) / 1_000_000


def get_cached(
    db: Session, brand_id: str, kind: ExtractionKind | str, now: dt.datetime | None = None
) -> models.CachedExtraction | None:
    """Live row for (brand, kind). Expired rows stay in the table but are never returned."""
    kind = ExtractionKind(kind).value
    now = now or models.utcnow()
    return db.scalars(
        select(models.CachedExtraction)
        .where(
            models.CachedExtraction.brand_id == brand_id,
            models.CachedExtraction.kind == kind,
            models.CachedExtraction.expires_at > now,
        )
        .limit(1)
    ).first()


def upsert_cached(
    db: Session,
    brand_id: str,
    kind: ExtractionKind | str,
    payload: dict[str, Any],
    model: str,
    input_tokens: int,
    output_tokens: int,
    ttl: dt.timedelta = DEFAULT_TTL,
    now: dt.datetime | None = None,
) -> models.CachedExtraction:
    """Write the extraction for (brand, kind), replacing payload, usage and expiry of any previous one."""
    kind = ExtractionKind(kind).value
    now = now or models.utcnow()
    values = {
        "payload": payload,
        "extraction_model": model,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "cost_usd": token_cost_usd(model, input_tokens, output_tokens),
        "extracted_at": now,
        "expires_at": now + ttl,
    }
    stmt = insert_for(db, models.CachedExtraction).values(brand_id=brand_id, kind=kind, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["brand_id", "kind"],
        set_={name: stmt.excluded[name] for name in values},
    ).returning(models.CachedExtraction)
    row = db.scalars(stmt, execution_options={"populate_existing": True}).one()
    db.commit()
    logger.info(
        "Cached %s for brand %s (model=%s, cost=$%.6f, expires=%s)",
        kind,
        brand_id,
        model,
        row.cost_usd,
        row.expires_at.isoformat(),
    )
    return row
