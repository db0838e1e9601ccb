from typing import Optional
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column, DeclarativeBase

# Fields a `set` on an existing record may overwrite. Everything else is kept from storage.
PATCHABLE_FIELDS = ("role",)

IDENTITY_FIELDS = ("user_id", "resource_id", "resource_type")

class Base(DeclarativeBase):
    pass

class AuthorizationRecord(Base):
    __tablename__ = 'authorizations'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    resource_id: Mapped[str] = mapped_column(String, nullable=False)
    resource_type: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        # Uniqueness holds among live rows only, so a tuple can be granted again after a soft delete
        Index(
            'uq_authorizations_identity',
            'user_id', 'resource_id', 'resource_type',
            unique=True,
            postgresql_where=text('deleted_at IS NULL'),
            sqlite_where=text('deleted_at IS NULL'),
        ),
        # Keep ids monotonic on SQLite; Postgres sequences never reuse them
        {'sqlite_autoincrement': True},
    )

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None

    def __repr__(self) -> str:
        return (
            f"AuthorizationRecord(id={self.id!r}, user_id={self.user_id!r}, "
            f"resource_id={self.resource_id!r}, resource_type={self.resource_type!r}, role={self.role!r})"
        )
