"""User input validation: free text plus data-URI attachments.

Attachments arrive as ``data:<mime>;base64,<payload>`` strings.  Only a
small set of image types and PDF are accepted, each with a size ceiling,
and at most ``MAX_FILES`` attachments per message.

Original file names (optional) travel inside the text part as a leading
HTML comment so they survive in the event log without a schema change::

    <!-- FILE_NAMES: ["a.png", "b.pdf"] -->
    describe these
"""

from __future__ import annotations

import base64
import binascii
import json
import re

from loomchat.chat_runtime.models.enums import Role
from loomchat.chat_runtime.models.events import Blob, Content, Part

MAX_FILES = 4
MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_PDF_BYTES = 20 * 1024 * 1024

PDF_MIME = "application/pdf"
ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp", PDF_MIME})
_MIME_ALIASES = {"image/jpg": "image/jpeg"}

_PDF_MAGIC = b"%PDF-"
_DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<payload>.*)$", re.DOTALL)

_FILE_NAMES_PREFIX = "<!-- FILE_NAMES: "
_FILE_NAMES_RE = re.compile(r"^<!-- FILE_NAMES: (?P<names>\[.*?\]) -->\n?", re.DOTALL)


class InvalidInputError(ValueError):
    """Raised when a chat or edit payload fails validation."""


# ---------------------------------------------------------------------------
# Data URIs
# ---------------------------------------------------------------------------


def normalize_mime(mime: str) -> str:
    mime = mime.strip().lower()
    return _MIME_ALIASES.get(mime, mime)


def parse_data_uri(uri: str) -> tuple[bytes, str]:
    """Decode a data URI into ``(data, mime_type)``.

    Raises ``InvalidInputError`` for a malformed URI, a disallowed MIME type,
    bad base64, an oversized payload, or a PDF without the PDF header.
    """
    match = _DATA_URI_RE.match(uri.strip())
    if match is None:
        msg = "File must be a base64 data URI (data:<mime>;base64,...)"
        raise InvalidInputError(msg)

    mime = normalize_mime(match.group("mime"))
    if mime not in ALLOWED_MIME_TYPES:
        msg = f"Unsupported file type: {mime}"
        raise InvalidInputError(msg)

    try:
        data = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError):
        msg = "File payload is not valid base64"
        raise InvalidInputError(msg) from None

    limit = MAX_PDF_BYTES if mime == PDF_MIME else MAX_IMAGE_BYTES
    if len(data) > limit:
        msg = f"File too large: {len(data)} bytes (limit {limit // (1024 * 1024)}MB for {mime})"
        raise InvalidInputError(msg)

    if mime == PDF_MIME and not data.startswith(_PDF_MAGIC):
        msg = "File declared as PDF does not contain PDF data"
        raise InvalidInputError(msg)

    return data, mime


def to_data_uri(data: bytes, mime_type: str | None) -> str:
    mime = mime_type or "image/png"
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


# ---------------------------------------------------------------------------
# File-name metadata
# ---------------------------------------------------------------------------


def embed_file_names(text: str, file_names: list[str]) -> str:
    if not file_names:
        return text
    return f"{_FILE_NAMES_PREFIX}{json.dumps(file_names, ensure_ascii=False)} -->\n{text}"


def extract_file_names(text: str) -> tuple[str, list[str]]:
    """Split the file-name comment off *text*.  Malformed comments are left in place."""
    match = _FILE_NAMES_RE.match(text)
    if match is None:
        return text, []
    try:
        names = json.loads(match.group("names"))
    except json.JSONDecodeError:
        return text, []
    if not isinstance(names, list):
        return text, []
    return text[match.end() :], [str(n) for n in names]


# ---------------------------------------------------------------------------
# User content
# ---------------------------------------------------------------------------


def build_user_content(
    message: str,
    files: list[str] | None = None,
    file_names: list[str] | None = None,
) -> Content:
    """Validate a user submission and build the ``Content`` sent to the engine.

    All checks run before anything is returned, so a rejected submission has
    no side effects.
    """
    files = files or []
    file_names = file_names or []
    text = message.strip()

    if not text and not files:
        msg = "Message text is required when no files are attached"
        raise InvalidInputError(msg)
    if len(files) > MAX_FILES:
        msg = f"Too many files: {len(files)} (maximum {MAX_FILES})"
        raise InvalidInputError(msg)
    if file_names and len(file_names) != len(files):
        msg = f"file_names has {len(file_names)} entries but {len(files)} files were attached"
        raise InvalidInputError(msg)

    blobs = [Blob(data=data, mime_type=mime) for data, mime in map(parse_data_uri, files)]

    parts: list[Part] = []
    text = embed_file_names(text, file_names)
    if text:
        parts.append(Part(text=text))
    parts.extend(Part(inline_data=blob) for blob in blobs)
    return Content(role=Role.USER, parts=parts)


def describe_for_title(message: str, file_count: int) -> str:
    """Text used to title a conversation from its first submission."""
    text = message.strip()
    if text:
        return text
    return f"User sent {file_count} file" + ("s" if file_count != 1 else "")
