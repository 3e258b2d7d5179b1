"""
File service staging uploaded import files where the worker can read them.
"""

import os
import hashlib
import uuid
from typing import Optional, Tuple
import aiofiles
from ..config import settings

ALLOWED_IMPORT_EXTENSIONS = (".csv", ".xlsx", ".xlsm")

class FileService:
    """Validates uploads and stages them under ``upload_dir/project_<id>``."""

    def __init__(self, upload_dir: str = None, max_file_size: int = None):
        self.upload_dir = upload_dir or settings.upload_dir
        self.max_file_size = max_file_size

    @staticmethod
    def extension(filename: Optional[str]) -> str:
        return os.path.splitext(filename or "")[1].lower()

    def check_import(self, filename: Optional[str], size: int) -> Optional[str]:
        """Reason the upload cannot be imported, or None when it can."""
        if self.extension(filename) not in ALLOWED_IMPORT_EXTENSIONS:
            return f"Unsupported file type; expected one of {', '.join(ALLOWED_IMPORT_EXTENSIONS)}"
        if size == 0:
            return "file is empty"
        limit = self.max_file_size or settings.max_file_size
        if size > limit:
            return f"file exceeds the maximum upload size of {limit} bytes"
        return None

    async def stage_import_file(self, project_id: int, filename: str, content: bytes) -> Tuple[str, str]:
        """
        Write the upload under a fresh name and return (file_path, sha256).

        The extension is kept because the worker picks its reader from it.
        """
        file_hash = hashlib.sha256(content).hexdigest()

        project_dir = os.path.join(self.upload_dir, f"project_{project_id}")
        os.makedirs(project_dir, exist_ok=True)
        file_path = os.path.join(project_dir, f"{uuid.uuid4()}{self.extension(filename)}")

        async with aiofiles.open(file_path, 'wb') as f:
            await f.write(content)

        return file_path, file_hash

    def delete_file(self, file_path: str) -> bool:
        """Delete a staged file if it exists."""
        try:
            if os.path.exists(file_path):
                os.remove(file_path)
                return True
            return False
        except OSError:
            return False
