"""
SQLAlchemy database models for the precast import backend.
"""

from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()

JSONDocument = JSON().with_variant(JSONB, "postgresql")


class Project(Base):
    __tablename__ = "project"

    project_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(255))
    last_name = Column(String(255))
    email = Column(String(255))


class UserSession(Base):
    __tablename__ = "session"

    session_id = Column(String(255), primary_key=True)
    user_id = Column(Integer, nullable=False)
    host_name = Column(String(255))
    ip_address = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    expires_at = Column(DateTime(timezone=True))


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    user_name = Column(String(255))
    host_name = Column(String(255))
    event_context = Column(String(255))
    ip_address = Column(String(64))
    description = Column(Text)
    event_name = Column(String(255))
    affected_user_name = Column(String(255))
    affected_user_email = Column(String(255))
    project_id = Column(Integer)


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Integer, nullable=False, index=True)
    job_type = Column(String(50), nullable=False, default="element_type")
    state = Column(String(20), nullable=False, default="pending")
    total = Column(Integer, nullable=False, default=0)
    processed = Column(Integer, nullable=False, default=0)
    succeeded = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    batch_size = Column(Integer, nullable=False)
    concurrent_batches = Column(Integer, nullable=False)
    file_path = Column(Text, nullable=False)
    error_summary_json = Column(JSONDocument)
    created_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
