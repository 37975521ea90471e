"""
SQLAlchemy ORM models for the FitRate Arena.
Tables: battles
"""

from sqlalchemy import Boolean, Column, DateTime, Float, String, Text, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Battle(Base):
    """A 1v1 outfit battle between a creator and a responder (live or ghost)."""

    __tablename__ = "battles"

    id = Column(String(16), primary_key=True)
    creator_id = Column(String(128), nullable=False, index=True)
    creator_score = Column(Float, nullable=False)
    creator_thumb = Column(Text, nullable=True)
    responder_id = Column(String(128), nullable=True, index=True)
    responder_score = Column(Float, nullable=True)
    responder_thumb = Column(Text, nullable=True)
    mode = Column(String(32), nullable=False, default="nice")
    status = Column(String(16), nullable=False, default="waiting")
    winner = Column(String(16), nullable=True)
    is_ghost = Column(Boolean, nullable=False, default=False)

    # Filled by the comparative-analysis job when both photos exist
    battle_commentary = Column(Text, nullable=True)
    winning_factor = Column(Text, nullable=True)
    outfit1_verdict = Column(Text, nullable=True)
    outfit2_verdict = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Battle(id='{self.id}', status='{self.status}', winner={self.winner!r})>"
