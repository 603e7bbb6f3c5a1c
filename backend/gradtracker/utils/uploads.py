"""Validation helpers for uploaded document files."""

from __future__ import annotations

import io

import docx
from PIL import Image

from ..errors import ValidationError

ALLOWED_EXTENSIONS = ("pdf", "docx", "doc", "txt", "jpg", "jpeg", "png")
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png")
# legacy Word files are OLE compound documents
OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def file_extension(filename: str) -> str:
    lower = filename.lower()
    idx = lower.rfind(".")
    if idx < 0 or idx == len(lower) - 1:
        return ""
    return lower[idx + 1:]


def validate_upload_filename(filename: str | None) -> str:
    """Check the client-supplied name and return its extension."""
    if not filename or len(filename) > 200:
        raise ValidationError("invalid filename")
    if "/" in filename or "\\" in filename:
        raise ValidationError("invalid filename path")
    ext = file_extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(f"file type not allowed: {ext or 'none'}")
    return ext


def validate_upload_size(payload: bytes, max_bytes: int) -> None:
    if not payload:
        raise ValidationError("file is required")
    if len(payload) > max_bytes:
        raise ValidationError(f"file size exceeds maximum of {max_bytes} bytes")


def _match_content(payload: bytes, ext: str) -> None:
    if ext == "pdf":
        if payload[:4] != b"%PDF":
            raise ValidationError("file content is not a PDF")
    elif ext == "doc":
        if payload[:8] != OLE_MAGIC:
            raise ValidationError("file content is not a Word document")
    elif ext == "docx":
        try:
            docx.Document(io.BytesIO(payload))
        except Exception:
            raise ValidationError("file content is not a DOCX document")
    elif ext in IMAGE_EXTENSIONS:
        try:
            Image.open(io.BytesIO(payload)).verify()
        except Exception:
            raise ValidationError("file content is not a valid image")
    elif ext == "txt":
        try:
            payload.decode("utf-8")
        except UnicodeDecodeError:
            raise ValidationError("text file must be UTF-8")


def sniff_upload_kind(payload: bytes, filename: str) -> str:
    """Confirm the bytes look like the type the extension claims.

    Returns the extension on success and raises `ValidationError` when the
    content does not match.
    """
    ext = validate_upload_filename(filename)
    _match_content(payload, ext)
    return ext


def check_upload(payload: bytes, filename: str | None, max_bytes: int) -> str:
    """Run every upload check in order: name, size, then content."""
    ext = validate_upload_filename(filename)
    validate_upload_size(payload, max_bytes)
    _match_content(payload, ext)
    return ext
