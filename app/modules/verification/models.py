from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from app.core.database import Base


class CreditReport(Base):
    """Latest bureau profile fetched for a borrower, reused until it goes stale"""
    __tablename__ = "credit_reports"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True, index=True)

    score = Column(Integer, nullable=False)
    trend = Column(String(20), nullable=True)
    factors = Column(JSON, nullable=True)
    fetched_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<CreditReport(user_id={self.user_id}, score={self.score})>"
