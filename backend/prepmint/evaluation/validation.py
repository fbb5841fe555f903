"""Answer-sheet upload validation, shared by the workflow and the intake route."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path

from prepmint.core.errors import ValidationError

ALLOWED_MIME_TYPES: dict[str, tuple[str, ...]] = {
    "application/pdf": (".pdf",),
    "image/jpeg": (".jpg", ".jpeg"),
    "image/jpg": (".jpg", ".jpeg"),
    "image/png": (".png",),
}
MAX_FILE_NAME_LENGTH = 255
MB = 1024 * 1024


@dataclass(slots=True)
class SelectedFile:
    """A file picked for upload, either in memory or on disk."""

    name: str
    size: int
    content_type: str
    content: bytes | None = None
    path: Path | None = None

    @classmethod
    def from_path(cls, path: Path, content_type: str | None = None) -> "SelectedFile":
        path = Path(path).expanduser()
        guessed = content_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(name=path.name, size=path.stat().st_size, content_type=guessed, path=path)

    @classmethod
    def from_bytes(cls, name: str, content: bytes, content_type: str) -> "SelectedFile":
        return cls(name=name, size=len(content), content_type=content_type, content=content)

    def read_bytes(self) -> bytes:
        if self.content is not None:
            return self.content
        if self.path is None:
            raise ValidationError("No file content to upload")
        return self.path.read_bytes()


def rejection_reason(file: SelectedFile, max_bytes: int) -> str | None:
    """Return why ``file`` cannot be uploaded, or ``None`` when it is acceptable."""
    if file.size <= 0:
        return "File is empty. Please select a valid file."
    if file.size > max_bytes:
        return f"File size must be less than {max_bytes / MB:g}MB"
    content_type = (file.content_type or "").lower()
    if content_type not in ALLOWED_MIME_TYPES:
        return "Only PDF, JPG, and PNG files are allowed"

    name = file.name
    if ".." in name or "/" in name or "\\" in name:
        return "Invalid file name. Please remove special characters."
    if "\0" in name:
        return "Invalid file name detected"
    if len(name) > MAX_FILE_NAME_LENGTH:
        return "File name is too long. Please rename the file."
    extension = Path(name).suffix.lower()
    if extension not in ALLOWED_MIME_TYPES[content_type]:
        return "Invalid file extension. Only PDF, JPG, and PNG files are allowed."
    return None


def validate_upload(file: SelectedFile, max_bytes: int) -> SelectedFile:
    reason = rejection_reason(file, max_bytes)
    if reason is not None:
        raise ValidationError(reason)
    return file


__all__ = ["ALLOWED_MIME_TYPES", "SelectedFile", "rejection_reason", "validate_upload"]
