import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from app.db import Base


class RestorePoint(Base):
    """Audit record of a completed restore. Rows are written once and never updated."""

    __tablename__ = "restore_points"

    restore_point_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # Not a foreign key: the audit trail outlives the backup once retention prunes it.
    backup_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    restored_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), index=True
    )
    version: Mapped[str] = mapped_column(String(40), default="1.0.0")
    description: Mapped[str | None] = mapped_column(Text)
    target_location: Mapped[str | None] = mapped_column(String(512))
    data_integrity: Mapped[bool] = mapped_column(Boolean, default=False)
    dependencies: Mapped[list] = mapped_column(JSON, default=list)
