"""
One-shot request functions for restclient.

Each function opens a Connection with an empty base URL, issues a
single request against the full URL it was given, and closes the
Connection before returning the Response.
"""

from .connection import Connection
from .form import FormBuilder
from .http_primitives import Response


def get(url: str) -> Response:
    """HTTP GET ``url``."""
    with Connection("") as conn:
        return conn.get(url)


def post(url: str, content_type: str, data) -> Response:
    """
    HTTP POST ``data`` to ``url``.

    Args:
        url: Full URL to query
        content_type: Value of the Content-Type header
        data: Request body (str or bytes), sent verbatim
    """
    with Connection("") as conn:
        conn.append_header("Content-Type", content_type)
        return conn.post(url, data)


def post_form(url: str, form: FormBuilder) -> Response:
    """HTTP POST ``form`` as multipart/form-data; consumes the builder."""
    with Connection("") as conn:
        return conn.post_form(url, form)


def put(url: str, content_type: str, data) -> Response:
    """HTTP PUT ``data`` to ``url`` with the given Content-Type."""
    with Connection("") as conn:
        conn.append_header("Content-Type", content_type)
        return conn.put(url, data)


def patch(url: str, content_type: str, data) -> Response:
    """HTTP PATCH ``data`` to ``url`` with the given Content-Type."""
    with Connection("") as conn:
        conn.append_header("Content-Type", content_type)
        return conn.patch(url, data)


def delete(url: str) -> Response:
    """HTTP DELETE ``url``."""
    with Connection("") as conn:
        return conn.delete(url)


def head(url: str) -> Response:
    """HTTP HEAD ``url``; the body of the result is always empty."""
    with Connection("") as conn:
        return conn.head(url)


def options(url: str) -> Response:
    """HTTP OPTIONS ``url``."""
    with Connection("") as conn:
        return conn.options(url)
