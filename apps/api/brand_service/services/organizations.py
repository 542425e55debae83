from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import models
from ..database import insert_for
from ..errors import NotFoundError

logger = logging.getLogger(__name__)


def find_organization(db: Session, app_id: str, external_org_id: str) -> models.Organization | None:
    return db.scalars(
        select(models.Organization)
        .where(models.Organization.app_id == app_id, models.Organization.external_org_id == external_org_id)
        .limit(1)
    ).first()


def resolve_org_id(db: Session, external_org_id: str, app_id: str) -> str:
    org = find_organization(db, app_id=app_id, external_org_id=external_org_id)
    if org is None:
        raise NotFoundError(f"Organization not found for externalOrgId={external_org_id}, appId={app_id}")
    return org.id


def resolve_or_create_organization(db: Session, app_id: str, external_org_id: str) -> models.Organization:
    """
    Get-or-create keyed by (app_id, external_org_id).

    Concurrent callers converge on one row: the insert is `ON CONFLICT DO NOTHING`
    and a caller that loses the race re-reads the winner's row.
    """
    existing = find_organization(db, app_id=app_id, external_org_id=external_org_id)
    if existing is not None:
        return existing

    stmt = (
        insert_for(db, models.Organization)
        .values(id=models.new_id(), app_id=app_id, external_org_id=external_org_id, created_at=models.utcnow())
        .on_conflict_do_nothing(index_elements=["app_id", "external_org_id"])
        .returning(models.Organization)
    )
    created = db.scalars(stmt).first()
    db.commit()
    if created is not None:
        logger.info("Created organization %s for appId=%s externalOrgId=%s", created.id, app_id, external_org_id)
        return created

    winner = find_organization(db, app_id=app_id, external_org_id=external_org_id)
    if winner is None:
        raise RuntimeError(
            f"Organization insert for appId={app_id} externalOrgId={external_org_id} conflicted but no row is visible"
        )
    return winner
