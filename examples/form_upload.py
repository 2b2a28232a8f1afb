"""
Multipart upload example using restclient.

Builds a form with plain fields and a file and posts it as
multipart/form-data.
"""

import logging
import sys
import tempfile

from restclient import Connection, FormBuilder

# Configure logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)


def upload(path: str):
    """Post a form holding ``path`` and two plain fields."""
    form = FormBuilder()
    form.add_form_field("title", "Quarterly report")
    form.add_form_field("visibility", "private")
    form.add_form_file("attachment", path)

    with Connection("http://httpbin.org") as conn:
        # The builder is consumed by this call
        response = conn.post_form("/post", form)

    if response.is_transport_error:
        logger.error(f"Upload failed ({response.code}): {response.text}")
        return
    logger.info(f"Upload -> {response.code}")
    logger.info(response.text)


def main():
    if len(sys.argv) > 1:
        upload(sys.argv[1])
        return

    with tempfile.NamedTemporaryFile("w", suffix=".txt", delete=False) as handle:
        handle.write("example attachment\n")
    upload(handle.name)


if __name__ == "__main__":
    main()
