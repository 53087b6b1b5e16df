"""Profile SQLAlchemy model: a party to escrow contracts."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from escrow_api.database import Base


class ProfileRole(enum.Enum):
    PROJECT_OWNER = "project_owner"
    AUDITOR = "auditor"
    ADMIN = "admin"
    GENERAL = "general"


class Profile(Base):
    __tablename__ = "profiles"

    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    public_key: Mapped[str] = mapped_column(
        String(128), unique=True, nullable=False
    )
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[ProfileRole] = mapped_column(
        Enum(ProfileRole, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ProfileRole.GENERAL,
    )
    is_arbitrator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
