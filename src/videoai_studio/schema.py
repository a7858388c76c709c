from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VideoProject(Base):
    __tablename__ = "video_projects"

    id = Column(UUID(as_uuid=False), primary_key=True, server_default=text("gen_random_uuid()"))
    user_id = Column(UUID(as_uuid=False), nullable=False, index=True)
    title = Column(String, nullable=False, default="")
    prompt = Column(Text)
    script = Column(JSONB)
    media = Column(JSONB, nullable=False, server_default=text("'{\"version\": 1, \"scenes\": {}}'::jsonb"))
    status = Column(String, nullable=False, default="draft", server_default="draft")
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=text("now()"))
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=text("now()"))


class Subscription(Base):
    __tablename__ = "subscriptions"

    user_id = Column(UUID(as_uuid=False), primary_key=True)
    plan_name = Column(String, nullable=False)
    plan_display_name = Column(String)
    status = Column(String, nullable=False, default="inactive", server_default="inactive")
    videos_generated = Column(Integer, nullable=False, default=0, server_default="0")
    videos_quota = Column(Integer, nullable=False, default=0, server_default="0")
    current_period_end = Column(DateTime(timezone=True))
    cancel_at_period_end = Column(Boolean, nullable=False, default=False, server_default=text("false"))


PROJECT_METADATA_COLUMNS = ("id", "user_id", "title", "prompt", "status", "created_at", "updated_at")
PROJECT_FULL_COLUMNS = PROJECT_METADATA_COLUMNS + ("script", "media")
