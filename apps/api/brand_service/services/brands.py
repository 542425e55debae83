from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from ..database import insert_for
from ..errors import NotFoundError
from .domains import extract_domain
from .organizations import resolve_or_create_organization

logger = logging.getLogger(__name__)


class BrandOutcome(str, Enum):
    UNCHANGED = "unchanged"
    URL_UPDATED = "url_updated"
    # Domain row existed without an owning organization and was attached to the caller's.
    CLAIMED = "claimed"
    # The organization's skeleton brand received its first domain.
    PROMOTED = "promoted"
    CREATED = "created"
    # Domain belongs to another organization; returned read-only, nothing reassigned.
    FOREIGN_OWNED = "foreign_owned"


@dataclass
class BrandResolution:
    brand: models.Brand
    outcome: BrandOutcome

    @property
    def created(self) -> bool:
        return self.outcome == BrandOutcome.CREATED

    @property
    def foreign_owned(self) -> bool:
        return self.outcome == BrandOutcome.FOREIGN_OWNED


def get_brand(db: Session, brand_id: str) -> models.Brand | None:
    return db.get(models.Brand, brand_id)


def require_brand(db: Session, brand_id: str) -> models.Brand:
    brand = get_brand(db, brand_id)
    if brand is None:
        raise NotFoundError(f"Brand {brand_id} not found")
    return brand


def list_brands(db: Session, organization_id: str) -> list[models.Brand]:
    return list(
        db.scalars(
            select(models.Brand)
            .where(models.Brand.organization_id == organization_id)
            .order_by(models.Brand.created_at.desc())
        )
    )


def _find_by_org_and_domain(db: Session, organization_id: str, domain: str) -> models.Brand | None:
    return db.scalars(
        select(models.Brand)
        .where(models.Brand.organization_id == organization_id, models.Brand.domain == domain)
        .limit(1)
    ).first()


def _find_by_domain(db: Session, domain: str) -> models.Brand | None:
    return db.scalars(select(models.Brand).where(models.Brand.domain == domain).limit(1)).first()


def _find_by_tenant(db: Session, tenant_id: str) -> models.Brand | None:
    return db.scalars(select(models.Brand).where(models.Brand.tenant_id == tenant_id).limit(1)).first()


def _find_skeleton(db: Session, organization_id: str) -> models.Brand | None:
    return db.scalars(
        select(models.Brand)
        .where(models.Brand.organization_id == organization_id, models.Brand.domain.is_(None))
        .order_by(models.Brand.created_at)
        .limit(1)
    ).first()


# --- Entry point A: organization already resolved, URL known ------------------


def _refresh_url(db: Session, brand: models.Brand, url: str) -> BrandResolution:
    if brand.url == url:
        return BrandResolution(brand=brand, outcome=BrandOutcome.UNCHANGED)
    brand.url = url
    db.commit()
    return BrandResolution(brand=brand, outcome=BrandOutcome.URL_UPDATED)


def _claim_unowned(db: Session, brand: models.Brand, organization_id: str, url: str) -> BrandResolution:
    brand.organization_id = organization_id
    brand.url = url
    db.commit()
    logger.info("Attached unowned brand %s (%s) to organization %s", brand.id, brand.domain, organization_id)
    return BrandResolution(brand=brand, outcome=BrandOutcome.CLAIMED)


def _promote_skeleton(
    db: Session, skeleton: models.Brand, domain: str, url: str
) -> BrandResolution | None:
    # Guarded on `domain IS NULL` so two concurrent promotions cannot both apply.
    result = db.execute(
        update(models.Brand)
        .where(models.Brand.id == skeleton.id, models.Brand.domain.is_(None))
        .values(domain=domain, url=url, updated_at=models.utcnow())
    )
    db.commit()
    if result.rowcount == 0:
        return None
    db.refresh(skeleton)
    logger.info("Promoted skeleton brand %s with domain %s", skeleton.id, domain)
    return BrandResolution(brand=skeleton, outcome=BrandOutcome.PROMOTED)


def _insert_brand(db: Session, organization_id: str, domain: str, url: str) -> models.Brand | None:
    now = models.utcnow()
    stmt = (
        insert_for(db, models.Brand)
        .values(
            id=models.new_id(),
            organization_id=organization_id,
            domain=domain,
            url=url,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["domain"])
        .returning(models.Brand)
    )
    created = db.scalars(stmt).first()
    db.commit()
    return created


def _resolve_for_organization(db: Session, organization_id: str, domain: str, url: str) -> BrandResolution:
    owned = _find_by_org_and_domain(db, organization_id, domain)
    if owned is not None:
        return _refresh_url(db, owned, url)

    by_domain = _find_by_domain(db, domain)
    if by_domain is not None:
        if by_domain.organization_id is None:
            return _claim_unowned(db, by_domain, organization_id, url)
        if by_domain.organization_id != organization_id:
            logger.warning(
                "Domain %s is owned by organization %s; organization %s gets the existing brand %s read-only",
                domain,
                by_domain.organization_id,
                organization_id,
                by_domain.id,
            )
            return BrandResolution(brand=by_domain, outcome=BrandOutcome.FOREIGN_OWNED)
        return _refresh_url(db, by_domain, url)

    skeleton = _find_skeleton(db, organization_id)
    if skeleton is not None:
        promoted = _promote_skeleton(db, skeleton, domain, url)
        if promoted is not None:
            return promoted

    created = _insert_brand(db, organization_id, domain, url)
    if created is not None:
        logger.info("Created brand %s for %s under organization %s", created.id, domain, organization_id)
        return BrandResolution(brand=created, outcome=BrandOutcome.CREATED)

    # Lost the insert race; whoever won now owns the domain.
    winner = _find_by_domain(db, domain)
    if winner is None:
        raise RuntimeError(f"Brand insert for {domain} conflicted but no row is visible")
    if winner.organization_id != organization_id:
        return BrandResolution(brand=winner, outcome=BrandOutcome.FOREIGN_OWNED)
    return _refresh_url(db, winner, url)


def resolve_or_create_brand(db: Session, organization_id: str, url: str) -> BrandResolution:
    """
    Resolve the canonical brand for `url` within an organization.

    The domain is a global key. When another organization already owns it the
    existing brand comes back with `BrandOutcome.FOREIGN_OWNED` and is left untouched;
    callers decide what that means for them.
    """
    domain = extract_domain(url)
    try:
        return _resolve_for_organization(db, organization_id, domain, url)
    except IntegrityError:
        # A concurrent writer took the domain between our read and our write.
        db.rollback()
        logger.info("Brand write for %s raced a concurrent writer; resolving again", domain)
        return _resolve_for_organization(db, organization_id, domain, url)


def get_or_create_brand(db: Session, app_id: str, external_org_id: str, url: str) -> BrandResolution:
    org = resolve_or_create_organization(db, app_id=app_id, external_org_id=external_org_id)
    return resolve_or_create_brand(db, organization_id=org.id, url=url)


# --- Entry point B: tenant id first, URL may not be known yet -----------------


def _apply_present(brand: models.Brand, **fields: str | None) -> None:
    # COALESCE semantics: a supplied value wins, an omitted one keeps what is stored.
    for name, value in fields.items():
        if value is not None:
            setattr(brand, name, value)


def _merge_into_domain_owner(
    db: Session,
    tenant_brand: models.Brand,
    domain_brand: models.Brand,
    tenant_id: str,
    name: str | None,
    url: str | None,
    external_organization_id: str | None,
) -> str:
    if tenant_brand.is_skeleton:
        db.delete(tenant_brand)
        logger.info("Deleted skeleton brand %s while merging tenant %s into %s", tenant_brand.id, tenant_id, domain_brand.id)
    else:
        # A real brand on another domain keeps its row but gives up the tenant link.
        tenant_brand.tenant_id = None
        logger.warning(
            "Tenant %s moved from brand %s (%s) to brand %s (%s)",
            tenant_id,
            tenant_brand.id,
            tenant_brand.domain,
            domain_brand.id,
            domain_brand.domain,
        )
    # Release the tenant_id unique key before it is reassigned.
    db.flush()

    domain_brand.tenant_id = tenant_id
    _apply_present(domain_brand, name=name, url=url, external_organization_id=external_organization_id)
    db.commit()
    logger.info("Merged tenant %s into domain brand %s", tenant_id, domain_brand.id)
    return domain_brand.id


def _update_tenant_brand(
    db: Session,
    brand: models.Brand,
    name: str | None,
    url: str | None,
    domain: str | None,
    external_organization_id: str | None,
) -> str:
    _apply_present(brand, name=name, url=url, domain=domain, external_organization_id=external_organization_id)
    db.commit()
    return brand.id


def _attach_tenant(
    db: Session,
    brand: models.Brand,
    tenant_id: str,
    name: str | None,
    url: str | None,
    external_organization_id: str | None,
) -> str:
    brand.tenant_id = tenant_id
    _apply_present(brand, name=name, url=url, external_organization_id=external_organization_id)
    db.commit()
    logger.info("Attached tenant %s to existing brand %s (%s)", tenant_id, brand.id, brand.domain)
    return brand.id


def _insert_tenant_brand(
    db: Session,
    tenant_id: str,
    name: str | None,
    url: str | None,
    domain: str | None,
    external_organization_id: str | None,
) -> str | None:
    now = models.utcnow()
    stmt = (
        insert_for(db, models.Brand)
        .values(
            id=models.new_id(),
            tenant_id=tenant_id,
            name=name,
            url=url,
            domain=domain,
            external_organization_id=external_organization_id,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing()
        .returning(models.Brand.id)
    )
    brand_id = db.execute(stmt).scalar_one_or_none()
    db.commit()
    if brand_id is not None:
        kind = "skeleton brand" if domain is None else "brand"
        logger.info("Created %s %s for tenant %s", kind, brand_id, tenant_id)
    return brand_id


def _resolve_by_tenant(
    db: Session,
    tenant_id: str,
    name: str | None,
    url: str | None,
    domain: str | None,
    external_organization_id: str | None,
) -> str | None:
    by_tenant = _find_by_tenant(db, tenant_id)
    by_domain = _find_by_domain(db, domain) if domain else None

    if by_tenant is not None and by_domain is not None and by_tenant.id != by_domain.id:
        return _merge_into_domain_owner(db, by_tenant, by_domain, tenant_id, name, url, external_organization_id)
    if by_tenant is not None:
        return _update_tenant_brand(db, by_tenant, name, url, domain, external_organization_id)
    if by_domain is not None:
        return _attach_tenant(db, by_domain, tenant_id, name, url, external_organization_id)
    return _insert_tenant_brand(db, tenant_id, name, url, domain, external_organization_id)


def resolve_or_merge_brand_by_tenant_id(
    db: Session,
    tenant_id: str,
    name: str | None = None,
    url: str | None = None,
    external_organization_id: str | None = None,
) -> str:
    """
    Converge a tenant id (and, when known, its URL) onto one brand row; returns its id.

    | by tenant | by domain | action                                             |
    |-----------|-----------|----------------------------------------------------|
    | A         | B (≠ A)   | merge into B; delete A if it is a skeleton         |
    | A         | -         | update A in place                                  |
    | -         | B         | attach tenant to B                                 |
    | -         | -         | insert (a skeleton when no URL was given)          |

    Supplied fields overwrite stored ones; omitted (None) fields never clear them.
    """
    domain = extract_domain(url) if url else None
    try:
        brand_id = _resolve_by_tenant(db, tenant_id, name, url, domain, external_organization_id)
    except IntegrityError:
        # A concurrent writer claimed the tenant id or domain between our read and our write.
        db.rollback()
        brand_id = None
    if brand_id is not None:
        return brand_id

    logger.info("Brand write for tenant %s raced a concurrent writer; resolving again", tenant_id)
    brand_id = _resolve_by_tenant(db, tenant_id, name, url, domain, external_organization_id)
    if brand_id is None:
        raise RuntimeError(f"Brand insert for tenant {tenant_id} conflicted but no row is visible")
    return brand_id
