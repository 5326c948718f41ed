"""Scenario model for generated artifacts that can be shared."""

from sqlalchemy import Column, DateTime, JSON, String, Text
from sqlalchemy.sql import func
import uuid

from database import Base


class Scenario(Base):
    """Generated scenario owned by a user. Written by the generation side, read here."""

    __tablename__ = "scenarios"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    topic = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    prompt_type = Column(String, nullable=False, default="default")
    tags = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
