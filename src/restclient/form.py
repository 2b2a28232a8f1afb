"""
multipart/form-data support for restclient.

FormBuilder collects form fields in order; encode_multipart turns them
into a request body when the request is executed. File fields are read
only at that point, so a missing file is reported by the transaction,
never by the call that added it.
"""

import mimetypes
import os
import secrets
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from typing_extensions import Self

from .exceptions import FormError


@dataclass(frozen=True)
class PlainField:
    """A form input with a literal value (text, hidden, submit...)."""
    name: str
    value: str


@dataclass(frozen=True)
class FileField:
    """A file input whose content is read from ``file_path``."""
    name: str
    file_path: str


FormField = Union[PlainField, FileField]


class FormBuilder:
    """
    Ordered, append-only collection of multipart form fields.

    The builder owns its field list and releases it exactly once, either
    explicitly through :meth:`release`, when leaving a ``with`` block, or
    when a Connection consumes it in ``post_form``. A released builder
    rejects further use with FormError.

    Example::

        with FormBuilder() as form:
            form.add_form_field("title", "holiday")
            form.add_form_file("photo", "/tmp/beach.jpg")
            response = conn.post_form("/upload", form)
    """

    def __init__(self) -> None:
        self._fields: Optional[List[FormField]] = []

    def add_form_field(self, name: str, value: str) -> None:
        """Append a plain field. Neither name nor value is validated."""
        self._require_open().append(PlainField(name, value))

    # Older name for the same operation
    add_form_content = add_form_field

    def add_form_file(self, name: str, file_path: str) -> None:
        """Append a file-upload field; ``file_path`` is read at send time."""
        self._require_open().append(FileField(name, os.fspath(file_path)))

    @property
    def fields(self) -> Tuple[FormField, ...]:
        """Snapshot of the fields in append order."""
        return tuple(self._require_open())

    @property
    def released(self) -> bool:
        return self._fields is None

    def release(self) -> None:
        """Drop the accumulated fields. Safe to call more than once."""
        if self._fields is not None:
            self._fields.clear()
            self._fields = None

    def consume(self) -> Tuple[FormField, ...]:
        """Hand the fields to a request and release the builder."""
        fields = self.fields
        self.release()
        return fields

    def _require_open(self) -> List[FormField]:
        if self._fields is None:
            raise FormError("FormBuilder was already released; build a new one per request")
        return self._fields

    def __len__(self) -> int:
        return len(self._fields or [])

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


def _escape(value: str) -> str:
    # Browsers percent-escape these in Content-Disposition parameters
    return value.replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")


def _guess_content_type(filename: str) -> str:
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


def encode_multipart(
    fields: Sequence[FormField],
    boundary: Optional[str] = None,
) -> Tuple[str, bytes]:
    """
    Serialise form fields as a multipart/form-data body.

    Args:
        fields: Fields in the order they should appear
        boundary: Part delimiter; a random one is generated when omitted

    Returns:
        The Content-Type header value and the body

    Raises:
        FileNotFoundError: If a file field points at a missing file
        OSError: If a file field cannot be read
    """
    if boundary is None:
        boundary = "------------------------" + secrets.token_hex(12)
    delimiter = f"--{boundary}\r\n".encode()

    parts: List[bytes] = []
    for form_field in fields:
        name = _escape(form_field.name)
        if isinstance(form_field, FileField):
            with open(form_field.file_path, "rb") as f:
                content = f.read()
            filename = os.path.basename(form_field.file_path)
            head = (
                f'Content-Disposition: form-data; name="{name}"; '
                f'filename="{_escape(filename)}"\r\n'
                f"Content-Type: {_guess_content_type(filename)}\r\n\r\n"
            )
        else:
            content = form_field.value.encode("utf-8")
            head = f'Content-Disposition: form-data; name="{name}"\r\n\r\n'

        parts.append(delimiter + head.encode("utf-8") + content + b"\r\n")

    parts.append(f"--{boundary}--\r\n".encode())
    return f"multipart/form-data; boundary={boundary}", b"".join(parts)
