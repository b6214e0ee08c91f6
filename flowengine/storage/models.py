"""SQLAlchemy database models for execution records."""

from sqlalchemy import Column, String, DateTime, Text, JSON, Integer, Float, ForeignKey
from sqlalchemy.orm import relationship

from ..models.core import utc_now
from .database import Base


class ExecutionModel(Base):
    """Database model for flow executions."""
    __tablename__ = "executions"

    id = Column(String, primary_key=True)
    flow_id = Column(String, nullable=False, index=True)
    flow_name = Column(String)
    status = Column(String, nullable=False)  # pending, running, completed, failed, cancelled
    input_data = Column(JSON)
    output_data = Column(JSON)
    error_message = Column(Text)
    error_detail = Column(JSON)
    execution_path = Column(JSON)  # List of visited node IDs
    started_at = Column(DateTime, default=utc_now, nullable=False)
    completed_at = Column(DateTime)
    duration_ms = Column(Float)

    logs = relationship(
        "ExecutionLogModel",
        back_populates="execution",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ExecutionLogModel(Base):
    """Database model for execution log entries."""
    __tablename__ = "execution_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String, ForeignKey("executions.id", ondelete="CASCADE"), nullable=False)
    node_id = Column(String)
    level = Column(String, nullable=False)  # debug, info, warn, error
    message = Column(Text, nullable=False)
    data = Column(JSON)
    timestamp = Column(DateTime, default=utc_now, nullable=False)
    sequence = Column(Integer, nullable=False, default=0)

    execution = relationship("ExecutionModel", back_populates="logs")
