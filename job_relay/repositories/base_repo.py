from __future__ import annotations

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

T = TypeVar("T")


class BaseRepository(Generic[T]):
    def __init__(self, session: Session, model: Type[T]) -> None:
        self.session = session
        self.model = model

    def create(self, obj: T, *, commit: bool = True) -> T:
        self.session.add(obj)
        if commit:
            self.session.commit()
            self.session.refresh(obj)
        else:
            self.session.flush()
        return obj

    def get_by_id(self, id_: Any, *, fresh: bool = False) -> Optional[T]:
        """Load a row by primary key.

        ``fresh=True`` bypasses the identity map so that values written by
        bulk UPDATE statements (counters, CAS transitions) are re-read.
        """
        if fresh:
            return self.session.get(self.model, id_, populate_existing=True)
        return self.session.get(self.model, id_)

    def find(
        self,
        *criteria: Any,
        order_by: Sequence[Any] = (),
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[T]:
        """Select rows matching SQLAlchemy *criteria* (==, !=, ranges, in_)."""
        stmt = select(self.model).where(*criteria).order_by(*order_by).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())


def merge_json(existing: dict | None, patch: dict) -> dict:
    """Overlay *patch* on *existing*; keys absent from the patch survive.

    Always returns a new dict so SQLAlchemy sees the JSON column as changed.
    """
    merged = dict(existing or {})
    merged.update(patch)
    return merged
