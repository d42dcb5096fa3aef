import base64
import binascii
import logging
import re
import secrets
import time
from pathlib import Path
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException

from ..schemas import ProcessedImage
from .storage import BucketStorage

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:image/([a-zA-Z]+);base64,(.+)$")


def get_content_type(filename: str) -> str:
    ext = Path(filename).suffix.lower()
    if ext == ".png":
        return "image/png"
    if ext == ".webp":
        return "image/webp"
    return "image/jpeg"


class UploadService:
    def __init__(self, uploads_dir: Path, storage: BucketStorage):
        self.uploads_dir = Path(uploads_dir)
        self.storage = storage
        self.uploads_dir.mkdir(parents = True, exist_ok = True)

    def local_path(self, filename: str) -> Path:
        # only the final component, so a filename can't escape uploads_dir
        return self.uploads_dir / Path(filename).name

    def process_image(self, filename: str, size: Optional[int] = None) -> ProcessedImage:
        """Mirror a file already staged in ``uploads_dir`` to the bucket."""
        file_path = self.local_path(filename)
        if not file_path.exists():
            raise HTTPException(status_code = 404, detail = "Uploaded file not found")

        data = file_path.read_bytes()
        image_url = self.storage.upload(file_path.name, data, get_content_type(file_path.name))
        logger.info("Uploaded %s (%d bytes)", file_path.name, len(data))

        return ProcessedImage(
            filename=file_path.name,
            image_url=image_url,
            file_path=str(file_path),
            size=size if size is not None else len(data),
        )

    def save_base64_image(self, data_uri: str) -> ProcessedImage:
        matches = DATA_URI_RE.match(data_uri)
        if not matches:
            raise HTTPException(status_code = 400, detail = "Invalid base64 image format")

        ext = "jpg" if matches.group(1) == "jpeg" else matches.group(1)
        try:
            image_bytes = base64.b64decode(matches.group(2), validate=True)
        except binascii.Error:
            raise HTTPException(status_code = 400, detail = "Invalid base64 image format")

        filename = f"seg_{int(time.time() * 1000)}_{secrets.token_hex(3)}.{ext}"
        file_path = self.local_path(filename)
        file_path.write_bytes(image_bytes)

        image_url = self.storage.upload(filename, image_bytes, get_content_type(filename))

        return ProcessedImage(
            filename=filename,
            image_url=image_url,
            file_path=str(file_path),
            size=len(image_bytes),
        )

    def delete_image(self, filename: str) -> None:
        file_path = self.local_path(filename)
        try:
            if file_path.exists():
                file_path.unlink()
        except OSError as e:
            logger.exception("Delete image error: %s", e)
            raise HTTPException(status_code = 500, detail = "Failed to delete image")

        try:
            self.storage.remove(file_path.name)
        except (ClientError, BotoCoreError) as e:
            logger.warning("Storage delete warning for %s: %s", file_path.name, e)
