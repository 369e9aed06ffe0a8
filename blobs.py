"""
Blob storage for uploaded images.

Entities only keep the returned filename; the bytes live in the upload
directory, which main.py serves under /uploads.
"""

import logging
import os
import shutil
import time
import uuid
from typing import Any

logger = logging.getLogger(__name__)


class LocalBlobStore:
    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(self.directory, exist_ok=True)

    def save(self, upload: Any) -> str:
        """Write an uploaded file and return the stored filename."""
        ext = os.path.splitext(upload.filename or "")[1].lower()
        filename = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"
        with open(os.path.join(self.directory, filename), "wb") as out:
            shutil.copyfileobj(upload.file, out)
        logger.info(f"Stored upload {upload.filename!r} as {filename}")
        return filename

    def remove(self, filename: str) -> None:
        """Delete a stored blob; a missing file is not an error."""
        try:
            os.remove(os.path.join(self.directory, filename))
        except FileNotFoundError:
            return
        logger.info(f"Removed upload {filename}")
