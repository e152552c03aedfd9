import logging
import os
import re
import shutil
import uuid
from dataclasses import dataclass
from typing import BinaryIO

from .errors import ValidationError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")


@dataclass(frozen=True)
class StoredUpload:
    filename: str
    url: str


class UploadStorage:
    """Photo uploads kept in a flat directory served under ``url_prefix``."""

    def __init__(self, directory: str, url_prefix: str = "/uploads"):
        self.directory = directory
        self.url_prefix = url_prefix.rstrip("/")
        os.makedirs(self.directory, exist_ok=True)

    def url_for(self, filename: str) -> str:
        return f"{self.url_prefix}/{filename}"

    def save(self, original_name: str | None, fileobj: BinaryIO) -> StoredUpload:
        stem, ext = os.path.splitext(os.path.basename(original_name or ""))
        stem = _UNSAFE.sub("_", stem).strip("_")[:40] or "upload"
        ext = ext.lower() if re.fullmatch(r"\.[A-Za-z0-9]{1,8}", ext) else ""
        filename = f"{uuid.uuid4().hex}-{stem}{ext}"
        with open(os.path.join(self.directory, filename), "wb") as buffer:
            shutil.copyfileobj(fileobj, buffer)
        logger.info(f"Upload stored as {filename}")
        return StoredUpload(filename=filename, url=self.url_for(filename))

    def list_files(self) -> list[StoredUpload]:
        names = sorted(
            name for name in os.listdir(self.directory)
            if os.path.isfile(os.path.join(self.directory, name))
        )
        return [StoredUpload(filename=name, url=self.url_for(name)) for name in names]

    def delete(self, filename: str) -> bool:
        if not filename or filename != os.path.basename(filename) or filename in (".", "..") or "\\" in filename:
            raise ValidationError("Invalid file name")
        try:
            os.remove(os.path.join(self.directory, filename))
        except FileNotFoundError:
            return False
        logger.info(f"Upload {filename} deleted")
        return True
