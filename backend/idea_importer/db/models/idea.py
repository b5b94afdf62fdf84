"""SQLAlchemy model for imported idea records."""

import uuid

from sqlalchemy import JSON, Boolean, Column, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import DateTime

from idea_importer.db.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Idea(Base):
    __tablename__ = "ideas"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(Text, nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    image_url = Column(String(2048))
    preview_url = Column(String(2048))

    # Categorization
    type = Column(String(64), nullable=False, default="web_app")
    market = Column(String(16), nullable=False, default="B2C")
    target_audience = Column(Text)
    problem = Column(Text)
    solution = Column(Text)
    keyword = Column(String(255))

    # Scoring (1-10 scale, optional on import)
    opportunity_score = Column(Integer)
    problem_score = Column(Integer)
    feasibility_score = Column(Integer)
    timing_score = Column(Integer)
    revenue_potential = Column(Text)

    is_published = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    signal_badges = Column(JSONType)
    framework_data = Column(JSONType)

    source_type = Column(String(32), nullable=False, default="user_import")
    source_data = Column(JSONType)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
