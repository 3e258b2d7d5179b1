"""
Template service producing the element-type import template for a project.
"""

from io import BytesIO
from typing import Optional, Tuple
from sqlalchemy.orm import Session
import structlog

from worker.importer.template import build_template_csv, build_template_workbook, load_template_columns

from ..models.database_models import Project

logger = structlog.get_logger()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MEDIA_TYPE = "text/csv"

class TemplateService:
    """Builds the downloadable template in spreadsheet or CSV form."""
    
    def project_name(self, db: Session, project_id: int) -> Optional[str]:
        return db.query(Project.name).filter(Project.project_id == project_id).scalar()
    
    def build(self, db: Session, project_id: int, project_name: Optional[str],
              fmt: str = "xlsx") -> Tuple[BytesIO, str, str]:
        """
        Returns:
            Tuple of (content, media_type, filename)
        """
        columns = load_template_columns(db, project_id)
        
        logger.info(
            "Element type template built",
            project_id=project_id,
            format=fmt,
            stages=len(columns.stages),
            drawing_types=len(columns.drawing_types),
            hierarchy_nodes=len(columns.hierarchy_paths),
            bom_products=len(columns.bom_name_ids)
        )
        
        if fmt == "csv":
            content = BytesIO(build_template_csv(columns).encode("utf-8"))
            return content, CSV_MEDIA_TYPE, f"element_type_template_{project_id}.csv"
        
        content = build_template_workbook(columns, project_id, project_name)
        return content, XLSX_MEDIA_TYPE, f"element_type_template_{project_id}.xlsx"
