from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select

from brand_service import models
from brand_service.database import SessionLocal
from brand_service.errors import NotFoundError
from brand_service.services.organizations import (
    find_organization,
    resolve_or_create_organization,
    resolve_org_id,
)


def test_resolve_or_create_is_idempotent(db) -> None:
    first = resolve_or_create_organization(db, app_id="mcpfactory", external_org_id="org_abc")
    second = resolve_or_create_organization(db, app_id="mcpfactory", external_org_id="org_abc")
    other_app = resolve_or_create_organization(db, app_id="other-app", external_org_id="org_abc")

    assert first.id == second.id
    assert other_app.id != first.id
    assert db.scalar(select(func.count()).select_from(models.Organization)) == 2


def test_concurrent_resolution_creates_one_row(db) -> None:
    def resolve(_: int) -> str:
        session = SessionLocal()
        try:
            return resolve_or_create_organization(session, app_id="mcpfactory", external_org_id="org_abc").id
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=5) as pool:
        ids = list(pool.map(resolve, range(5)))

    assert len(set(ids)) == 1
    assert db.scalar(select(func.count()).select_from(models.Organization)) == 1


def test_lookups_never_create(db) -> None:
    assert find_organization(db, app_id="mcpfactory", external_org_id="org_missing") is None
    with pytest.raises(NotFoundError):
        resolve_org_id(db, external_org_id="org_missing", app_id="mcpfactory")
    assert db.scalar(select(func.count()).select_from(models.Organization)) == 0

    created = resolve_or_create_organization(db, app_id="mcpfactory", external_org_id="org_abc")
    assert resolve_org_id(db, external_org_id="org_abc", app_id="mcpfactory") == created.id
