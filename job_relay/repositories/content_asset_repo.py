"""
Repository for content asset data access.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from job_relay.entities.base import utcnow
from job_relay.entities.content_asset import ContentAsset
from job_relay.entities.content_taxonomy import ContentCategory, ContentType
from job_relay.repositories.base_repo import BaseRepository, merge_json


class ContentAssetRepository(BaseRepository[ContentAsset]):
    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=ContentAsset)

    def find_existing_urls(self, contract_id: str, urls: Iterable[str]) -> set[str]:
        """
        Return the lower-cased URLs that already have an asset in this contract.

        Args:
            contract_id: Contract to search
            urls: Candidate URLs (any case)

        Returns:
            Set of lower-cased external URLs that already exist
        """
        lowered = sorted({u.lower() for u in urls})
        if not lowered:
            return set()
        stmt = select(ContentAsset.external_url).where(
            ContentAsset.contract_id == contract_id,
            func.lower(ContentAsset.external_url).in_(lowered),
        )
        return {url.lower() for url in self.session.execute(stmt).scalars() if url}

    def merge_metadata(self, asset: ContentAsset, patch: dict) -> None:
        asset.metadata_ = merge_json(asset.metadata_, patch)
        asset.updated_at = utcnow()


class TaxonomyRepository:
    """Read-only access to content types and categories."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def active_types(self) -> list[ContentType]:
        stmt = select(ContentType).where(ContentType.is_active.is_(True)).order_by(ContentType.slug)
        return list(self.session.execute(stmt).scalars().all())

    def active_categories(self) -> list[ContentCategory]:
        stmt = (
            select(ContentCategory)
            .where(ContentCategory.is_active.is_(True))
            .order_by(ContentCategory.slug)
        )
        return list(self.session.execute(stmt).scalars().all())

    def resolve_type_id(self, slug: str | None) -> str | None:
        if not slug:
            return None
        stmt = select(ContentType.type_id).where(
            ContentType.slug == slug, ContentType.is_active.is_(True)
        )
        return self.session.execute(stmt).scalars().first()

    def resolve_category_id(self, slug: str | None) -> str | None:
        if not slug:
            return None
        stmt = select(ContentCategory.category_id).where(
            ContentCategory.slug == slug, ContentCategory.is_active.is_(True)
        )
        return self.session.execute(stmt).scalars().first()
