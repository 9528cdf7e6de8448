"""
SQLAlchemy ORM models for persistence.
"""
from datetime import datetime
from sqlalchemy import Column, DateTime, Integer, String

from db import Base


class CommunityItemORM(Base):
    __tablename__ = "community_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(40), nullable=False, default="anon")
    image_path = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
