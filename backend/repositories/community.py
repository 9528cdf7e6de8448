"""
Community listing repository backed by SQLAlchemy/SQLite.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from domain.errors import RemoteWriteError
from domain.models import CommunityItem
from repositories.models import CommunityItemORM

DEFAULT_USERNAME = "anon"
DEFAULT_PAGE_SIZE = 60


def _item_from_orm(orm: CommunityItemORM) -> CommunityItem:
    return CommunityItem(
        id=str(orm.id),
        username=orm.username or DEFAULT_USERNAME,
        image_path=orm.image_path,
        created_at=orm.created_at,
    )


class CommunityRepository:
    """Insert and read back community wall records."""

    def add_item(
        self,
        session: Session,
        username: str,
        image_path: str,
        created_at: Optional[datetime] = None,
    ) -> CommunityItem:
        orm = CommunityItemORM(
            username=username or DEFAULT_USERNAME,
            image_path=image_path,
            created_at=created_at or datetime.utcnow(),
        )
        try:
            session.add(orm)
            session.commit()
            session.refresh(orm)
        except SQLAlchemyError as exc:
            session.rollback()
            raise RemoteWriteError(f"failed to record community item: {exc}") from exc
        return _item_from_orm(orm)

    def list_recent(self, session: Session, limit: int = DEFAULT_PAGE_SIZE) -> List[CommunityItem]:
        """Newest first, capped at `limit`."""
        rows = (
            session.query(CommunityItemORM)
            .order_by(CommunityItemORM.created_at.desc(), CommunityItemORM.id.desc())
            .limit(limit)
            .all()
        )
        return [_item_from_orm(r) for r in rows]
