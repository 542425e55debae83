from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select

from brand_service import models
from brand_service.database import SessionLocal
from brand_service.errors import InvalidUrlError
from brand_service.services.brands import (
    BrandOutcome,
    get_brand,
    get_or_create_brand,
    list_brands,
    resolve_or_create_brand,
    resolve_or_merge_brand_by_tenant_id,
)
from brand_service.services.organizations import resolve_or_create_organization


def _brand_count(db) -> int:
    return db.scalar(select(func.count()).select_from(models.Brand))


def test_create_then_update_url_keeps_id(db, org) -> None:
    created = resolve_or_create_brand(db, org.id, "https://www.acme.test/")
    assert created.outcome == BrandOutcome.CREATED
    assert created.brand.domain == "acme.test"

    same = resolve_or_create_brand(db, org.id, "https://www.acme.test/")
    assert same.outcome == BrandOutcome.UNCHANGED
    assert same.brand.id == created.brand.id

    updated = resolve_or_create_brand(db, org.id, "https://acme.test/pricing")
    assert updated.outcome == BrandOutcome.URL_UPDATED
    assert updated.brand.id == created.brand.id

    db.expire_all()
    assert get_brand(db, created.brand.id).url == "https://acme.test/pricing"
    assert _brand_count(db) == 1


def test_concurrent_resolution_creates_one_brand(db, org) -> None:
    def resolve(_: int) -> str:
        session = SessionLocal()
        try:
            return resolve_or_create_brand(session, org.id, "https://concurrent-test.example.com").brand.id
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=5) as pool:
        ids = list(pool.map(resolve, range(5)))

    assert len(set(ids)) == 1
    assert _brand_count(db) == 1


def test_cross_org_domain_is_returned_read_only(db, org) -> None:
    owned = resolve_or_create_brand(db, org.id, "https://acme.test")
    other = resolve_or_create_organization(db, app_id="mcpfactory", external_org_id="org_other")

    result = resolve_or_create_brand(db, other.id, "https://www.acme.test/careers")

    assert result.outcome == BrandOutcome.FOREIGN_OWNED
    assert result.foreign_owned
    assert result.brand.id == owned.brand.id
    db.expire_all()
    stored = get_brand(db, owned.brand.id)
    assert stored.organization_id == org.id
    assert stored.url == "https://acme.test"
    assert list_brands(db, other.id) == []
    assert _brand_count(db) == 1


def test_skeleton_is_promoted_in_place(db, org) -> None:
    skeleton = models.Brand(organization_id=org.id, name="Acme")
    db.add(skeleton)
    db.commit()

    result = resolve_or_create_brand(db, org.id, "https://acme.test")

    assert result.outcome == BrandOutcome.PROMOTED
    assert result.brand.id == skeleton.id
    assert result.brand.domain == "acme.test"
    assert result.brand.name == "Acme"
    assert _brand_count(db) == 1


def test_unowned_domain_is_claimed(db, org) -> None:
    brand_id = resolve_or_merge_brand_by_tenant_id(db, tenant_id="tenant-1", url="https://acme.test")

    result = resolve_or_create_brand(db, org.id, "https://acme.test/about")

    assert result.outcome == BrandOutcome.CLAIMED
    assert result.brand.id == brand_id
    assert result.brand.organization_id == org.id


def test_get_or_create_brand_resolves_the_organization(db) -> None:
    result = get_or_create_brand(db, app_id="mcpfactory", external_org_id="org_new", url="acme.test")

    assert result.created
    assert result.brand.organization.external_org_id == "org_new"
    assert [b.id for b in list_brands(db, result.brand.organization_id)] == [result.brand.id]


def test_invalid_url_is_rejected(db, org) -> None:
    with pytest.raises(InvalidUrlError):
        resolve_or_create_brand(db, org.id, "   ")
    assert _brand_count(db) == 0


# --- tenant-keyed resolution ---------------------------------------------------


def test_tenant_without_url_creates_skeleton_then_fills_it(db) -> None:
    skeleton_id = resolve_or_merge_brand_by_tenant_id(db, tenant_id="tenant-1", name="Acme")
    skeleton = get_brand(db, skeleton_id)
    assert skeleton.is_skeleton

    same_id = resolve_or_merge_brand_by_tenant_id(db, tenant_id="tenant-1", url="https://www.acme.test")

    assert same_id == skeleton_id
    db.expire_all()
    filled = get_brand(db, skeleton_id)
    assert filled.domain == "acme.test"
    # Omitted fields keep what was stored.
    assert filled.name == "Acme"
    assert _brand_count(db) == 1


def test_tenant_attaches_to_existing_domain_brand(db, org) -> None:
    existing = resolve_or_create_brand(db, org.id, "https://acme.test").brand

    brand_id = resolve_or_merge_brand_by_tenant_id(
        db, tenant_id="tenant-1", url="https://acme.test", external_organization_id="ext-9"
    )

    assert brand_id == existing.id
    db.expire_all()
    stored = get_brand(db, brand_id)
    assert stored.tenant_id == "tenant-1"
    assert stored.external_organization_id == "ext-9"
    assert stored.organization_id == org.id


def test_tenant_skeleton_merges_into_domain_owner(db, org) -> None:
    skeleton_id = resolve_or_merge_brand_by_tenant_id(db, tenant_id="tenant-1", name="Acme Corp")
    owner = resolve_or_create_brand(db, org.id, "https://acme.test").brand

    merged_id = resolve_or_merge_brand_by_tenant_id(db, tenant_id="tenant-1", url="https://acme.test")

    assert merged_id == owner.id
    db.expire_all()
    assert get_brand(db, skeleton_id) is None
    survivor = get_brand(db, owner.id)
    assert survivor.tenant_id == "tenant-1"
    assert survivor.name is None
    assert _brand_count(db) == 1


def test_tenant_moving_between_domains_keeps_the_old_brand(db) -> None:
    old_id = resolve_or_merge_brand_by_tenant_id(db, tenant_id="tenant-1", url="https://old.test")
    new_id = resolve_or_merge_brand_by_tenant_id(db, tenant_id="tenant-2", url="https://new.test", name="New")

    merged_id = resolve_or_merge_brand_by_tenant_id(db, tenant_id="tenant-1", url="https://new.test")

    assert merged_id == new_id
    db.expire_all()
    old = get_brand(db, old_id)
    assert old is not None
    assert old.tenant_id is None
    assert old.domain == "old.test"
    new = get_brand(db, new_id)
    assert new.tenant_id == "tenant-1"
    assert new.name == "New"


def test_concurrent_tenant_resolution_creates_one_brand(db) -> None:
    def resolve(_: int) -> str:
        session = SessionLocal()
        try:
            return resolve_or_merge_brand_by_tenant_id(session, tenant_id="tenant-1", url="https://acme.test")
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=5) as pool:
        ids = list(pool.map(resolve, range(5)))

    assert len(set(ids)) == 1
    assert _brand_count(db) == 1
