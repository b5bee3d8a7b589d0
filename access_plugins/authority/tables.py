"""SQLAlchemy tables backing the local authority."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class AccessRequestRecord(Base):
    """Persistent form of an access request."""

    __tablename__ = "access_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user: Mapped[str] = mapped_column(String(255), nullable=False)
    roles_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    state: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    request_reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    resolve_reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    delegator: Mapped[str | None] = mapped_column(String(255), nullable=True)
    suggested_reviewers_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    system_annotations_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    resolve_annotations_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class PluginDataRecord(Base):
    """One plugin's string map attached to a resource."""

    __tablename__ = "plugin_data"
    __table_args__ = (
        UniqueConstraint("kind", "resource", "plugin", name="uq_plugin_data_entry"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    resource: Mapped[str] = mapped_column(String(64), nullable=False)
    plugin: Mapped[str] = mapped_column(String(64), nullable=False)
    data_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
