"""
Basic restclient example.

This example demonstrates the one-shot functions and a configured
Connection reused for several requests.
"""

import logging

import restclient
from restclient import Connection

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def one_shot_requests():
    """Demonstrate the module-level functions."""
    logger.info("Making one-shot requests...")

    response = restclient.get("http://httpbin.org/get")
    logger.info(f"GET -> {response.code}, {len(response.body)} bytes")

    response = restclient.post(
        "http://httpbin.org/post", "application/json", '{"hello": "world"}'
    )
    logger.info(f"POST -> {response.code}")

    response = restclient.head("http://httpbin.org/get")
    logger.info(f"HEAD -> {response.code}, headers: {response.headers}")


def configured_connection():
    """Demonstrate a Connection with shared configuration."""
    logger.info("Using a configured Connection...")

    with Connection("https://httpbin.org") as conn:
        conn.set_timeout(10)
        conn.set_user_agent("basic-example/1.0")
        conn.append_header("Accept", "application/json")
        conn.set_basic_auth("user", "passwd")
        conn.follow_redirects(True, max_redirects=5)

        for path in ("/basic-auth/user/passwd", "/redirect/2", "/status/418"):
            response = conn.get(path)
            if response.is_transport_error:
                logger.error(f"{path}: transport failure {response.code}: {response.text}")
                continue
            logger.info(f"{path} -> {response.code}")

        info = conn.get_info().last_request
        logger.info(
            f"Last request: {info.total_time:.3f}s total, "
            f"{info.redirect_count} redirects, ended at {info.effective_url}"
        )


def main():
    """Run all examples."""
    if restclient.init() != 0:
        logger.error("Transport initialisation failed")
        return

    try:
        one_shot_requests()
        configured_connection()
    finally:
        restclient.disable()


if __name__ == "__main__":
    main()
