"""
Database models for the import worker.

Reference dictionaries (drawing types, stages, hierarchy nodes, BOM products)
are owned by the catalog screens and are only ever read here.
"""

from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, ForeignKey, UniqueConstraint, JSON, Uuid
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()

# JSONB / integer[] on PostgreSQL, plain JSON elsewhere
JSONDocument = JSON().with_variant(JSONB, "postgresql")
IdList = JSON().with_variant(ARRAY(Integer), "postgresql")


class DrawingType(Base):
    __tablename__ = "drawing_type"
    __table_args__ = (UniqueConstraint("project_id", "drawing_type_name"),)

    drawing_type_id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, nullable=False, index=True)
    drawing_type_name = Column(String(255), nullable=False)


class ProjectStage(Base):
    __tablename__ = "project_stages"
    __table_args__ = (UniqueConstraint("project_id", "name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    order = Column("order", Integer, nullable=False, default=0)


class HierarchyNode(Base):
    __tablename__ = "precast"
    __table_args__ = (UniqueConstraint("project_id", "path"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("precast.id"), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    path = Column(String(512), nullable=False)
    prefix = Column(String(64))
    naming_convention = Column(String(255), nullable=False, default="")


class BomProduct(Base):
    __tablename__ = "inv_bom"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    product_type = Column(String(255), nullable=False)
    unit = Column(String(64))

    @property
    def name_id(self) -> str:
        return f"{self.product_name}_{self.product_type}"


class ElementType(Base):
    __tablename__ = "element_type"
    __table_args__ = (
        UniqueConstraint("project_id", "element_type", name="uq_element_type_project_code"),
    )

    element_type_id = Column(Integer, primary_key=True, autoincrement=True)
    element_type = Column(String(150), nullable=False)
    element_type_name = Column(String(255), nullable=False)
    thickness = Column(Float, nullable=False, default=0)
    length = Column(Float, nullable=False, default=0)
    height = Column(Float, nullable=False, default=0)
    volume = Column(Float, nullable=False, default=0)
    mass = Column(Float, nullable=False, default=0)
    area = Column(Float, nullable=False, default=0)
    width = Column(Float, nullable=False, default=0)
    density = Column(Float, nullable=False, default=0)
    element_type_version = Column(String(32))
    total_count_element = Column(Integer, nullable=False, default=0)
    project_id = Column(Integer, nullable=False, index=True)
    job_id = Column(Uuid, nullable=True)
    created_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    update_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ElementTypePath(Base):
    __tablename__ = "element_type_path"

    id = Column(Integer, primary_key=True, autoincrement=True)
    element_type_id = Column(Integer, ForeignKey("element_type.element_type_id", ondelete="CASCADE"), nullable=False)
    stage_path = Column(IdList, nullable=False)


class ElementDrawing(Base):
    __tablename__ = "drawings"

    drawing_id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, nullable=False)
    element_type_id = Column(Integer, ForeignKey("element_type.element_type_id", ondelete="CASCADE"), nullable=False)
    drawing_type_id = Column(Integer, nullable=False)
    current_version = Column(String(32), nullable=False)
    file = Column(Text, nullable=False)
    comments = Column(Text)
    created_by = Column(String(255))
    updated_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    update_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ElementTypeHierarchyQuantity(Base):
    __tablename__ = "element_type_hierarchy_quantity"
    __table_args__ = (UniqueConstraint("element_type_id", "hierarchy_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    element_type_id = Column(Integer, ForeignKey("element_type.element_type_id", ondelete="CASCADE"), nullable=False)
    hierarchy_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    naming_convention = Column(String(255), nullable=False)
    element_type_name = Column(String(255))
    element_type = Column(String(150))
    left_quantity = Column(Integer, default=0)
    project_id = Column(Integer)


class ElementTypeBom(Base):
    __tablename__ = "element_type_bom"

    id = Column(Integer, primary_key=True, autoincrement=True)
    element_type_id = Column(Integer, ForeignKey("element_type.element_type_id", ondelete="CASCADE"), nullable=False)
    project_id = Column(Integer, nullable=False)
    product = Column(JSONDocument, nullable=False)
    created_by = Column(String(255))
    updated_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Element(Base):
    __tablename__ = "element"

    id = Column(Integer, primary_key=True, autoincrement=True)
    element_type_id = Column(Integer, ForeignKey("element_type.element_type_id", ondelete="CASCADE"), nullable=False)
    element_id = Column(String(255), nullable=False)
    element_name = Column(String(255))
    project_id = Column(Integer, nullable=False)
    status = Column(Integer, nullable=False, default=1)
    element_type_version = Column(String(32))
    target_location = Column(Integer)
    created_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    update_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


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
