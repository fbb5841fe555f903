"""Upload validation rules."""

from __future__ import annotations

from pathlib import Path

import pytest

from prepmint.core.errors import ValidationError
from prepmint.evaluation.validation import SelectedFile, rejection_reason, validate_upload

MAX = 10 * 1024 * 1024


def _file(name: str = "sheet.pdf", size: int = 1024, content_type: str = "application/pdf") -> SelectedFile:
    return SelectedFile(name=name, size=size, content_type=content_type)


def test_accepts_supported_files() -> None:
    assert rejection_reason(_file(), MAX) is None
    assert rejection_reason(_file("scan.JPEG", content_type="image/jpeg"), MAX) is None
    assert rejection_reason(_file("scan.jpg", content_type="image/jpg"), MAX) is None
    assert rejection_reason(_file("scan.png", content_type="IMAGE/PNG"), MAX) is None


@pytest.mark.parametrize(
    ("selected", "reason"),
    [
        (_file(size=0), "File is empty. Please select a valid file."),
        (_file(size=MAX + 1), "File size must be less than 10MB"),
        (_file("notes.txt", content_type="text/plain"), "Only PDF, JPG, and PNG files are allowed"),
        (_file("../etc/passwd.pdf"), "Invalid file name. Please remove special characters."),
        (_file("dir\\sheet.pdf"), "Invalid file name. Please remove special characters."),
        (_file("sheet\0.pdf"), "Invalid file name detected"),
        (_file("a" * 252 + ".pdf"), "File name is too long. Please rename the file."),
        (_file("sheet.png"), "Invalid file extension. Only PDF, JPG, and PNG files are allowed."),
        (_file("sheet", content_type="image/png"), "Invalid file extension. Only PDF, JPG, and PNG files are allowed."),
    ],
)
def test_rejections_carry_specific_reasons(selected: SelectedFile, reason: str) -> None:
    assert rejection_reason(selected, MAX) == reason


def test_empty_file_wins_over_other_problems() -> None:
    assert rejection_reason(_file("notes.txt", size=0, content_type="text/plain"), MAX).startswith("File is empty")


def test_validate_upload_raises(tmp_path: Path) -> None:
    path = tmp_path / "blank.pdf"
    path.write_bytes(b"")
    with pytest.raises(ValidationError, match="File is empty"):
        validate_upload(SelectedFile.from_path(path), MAX)


def test_from_path_guesses_type(tmp_path: Path) -> None:
    path = tmp_path / "answers.png"
    path.write_bytes(b"\x89PNG....")
    selected = SelectedFile.from_path(path)
    assert selected.content_type == "image/png"
    assert selected.size == 8
    assert selected.read_bytes() == b"\x89PNG...."
