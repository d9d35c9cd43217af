from sqlalchemy import Column, DateTime
from sqlalchemy.sql import func


class TimestampMixin:
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(),
                        onupdate=func.now(), nullable=False)


class ArchivableMixin:
    """Rows leave the active working set by stamping archived_at, never by delete."""

    archived_at = Column(DateTime, nullable=True, index=True)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None
