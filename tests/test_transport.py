"""
Tests for the transport engine: request building, redirects, proxies,
keep-alive pooling and the mapping of failures to error codes.
"""

import logging
import socket
import ssl

import pytest

from restclient.form import FileField, PlainField
from restclient.http_primitives import TransportErrorCode
from restclient.network.utils import parse_proxy_url
from restclient.transport import TransportEngine, TransportOptions

from conftest import http_response, parse_requests


@pytest.fixture
def engine(mock_backend, lifecycle):
    """Transport engine over the mock backend."""
    engine = TransportEngine(backend=mock_backend, lifecycle=lifecycle)
    yield engine
    engine.close()


class TestRequestBuilding:
    """Test the headers the engine adds."""

    def test_default_headers(self, engine, mock_backend, sent_requests):
        """Test Host comes first and Accept is added."""
        mock_backend.add_response("example.com", 80, http_response(200, body=b"ok"))

        response = engine.perform("GET", "http://example.com/a?b=1", [("X-Trace", "1")])

        assert response.code == 200
        assert response.body == b"ok"
        request = sent_requests()[0]
        assert request.target == "/a?b=1"
        assert request.headers[0] == ("Host", "example.com")
        assert request.header("Accept") == "*/*"
        assert request.header("X-Trace") == "1"
        assert request.header("Content-Length") is None

    def test_non_default_port_in_host(self, engine, mock_backend, sent_requests):
        """Test the Host header carries a non-default port."""
        mock_backend.add_response("example.com", 8080, http_response(200))
        engine.perform("GET", "http://example.com:8080/", [])
        assert sent_requests()[0].header("Host") == "example.com:8080"

    def test_caller_host_and_length_ignored(self, engine, mock_backend, sent_requests):
        """Test framing headers always come from the engine."""
        mock_backend.add_response("example.com", 80, http_response(200))
        engine.perform(
            "PUT",
            "http://example.com/",
            [("Host", "evil.com"), ("Content-Length", "999")],
            body=b"abc",
        )
        request = sent_requests()[0]
        assert request.header("Host") == "example.com"
        assert request.header("Content-Length") == "3"
        assert request.body == b"abc"

    def test_post_default_content_type(self, engine, mock_backend, sent_requests):
        """Test a POST body without Content-Type is sent as a form."""
        mock_backend.add_response("example.com", 80, http_response(200))
        engine.perform("POST", "http://example.com/", [], body=b"a=1")
        assert sent_requests()[0].header("Content-Type") == "application/x-www-form-urlencoded"

    def test_put_has_no_default_content_type(self, engine, mock_backend, sent_requests):
        """Test only POST and PATCH get the form default."""
        mock_backend.add_response("example.com", 80, http_response(200))
        engine.perform("PUT", "http://example.com/", [], body=b"raw")
        assert sent_requests()[0].header("Content-Type") is None

    def test_empty_body_is_still_a_body(self, engine, mock_backend, sent_requests):
        """Test an empty payload sends Content-Length: 0."""
        mock_backend.add_response("example.com", 80, http_response(200))
        engine.perform("POST", "http://example.com/", [("Content-Type", "text/plain")], body=b"")
        request = sent_requests()[0]
        assert request.header("Content-Length") == "0"
        assert request.body == b""

    def test_form_replaces_content_type(self, engine, mock_backend, sent_requests):
        """Test a form call uses the multipart Content-Type."""
        mock_backend.add_response("example.com", 80, http_response(200))
        engine.perform(
            "POST",
            "http://example.com/upload",
            [("Content-Type", "application/json")],
            form=[PlainField("a", "1")],
        )
        request = sent_requests()[0]
        content_types = [v for k, v in request.headers if k.lower() == "content-type"]
        assert len(content_types) == 1
        assert content_types[0].startswith("multipart/form-data; boundary=")
        assert b'name="a"' in request.body

    def test_http_error_status_is_a_response(self, engine, mock_backend):
        """Test 4xx/5xx are returned, not mapped to failures."""
        mock_backend.add_response("example.com", 80, http_response(404, body=b"nope", reason="Not Found"))
        response = engine.perform("GET", "http://example.com/missing", [])
        assert response.code == 404
        assert response.body == b"nope"
        assert not response.is_transport_error


class TestRedirects:
    """Test redirect following."""

    def test_not_followed_by_default(self, engine, mock_backend):
        """Test a redirect is returned as-is when following is off."""
        mock_backend.add_response(
            "example.com", 80, http_response(302, [("Location", "/next")], reason="Found")
        )
        response = engine.perform("GET", "http://example.com/", [])
        assert response.code == 302
        assert response.headers["Location"] == "/next"

    def test_303_switches_to_get(self, engine, mock_backend, sent_requests):
        """Test 303 turns a POST into a bodyless GET."""
        mock_backend.add_response("example.com", 80, http_response(303, [("Location", "/done")]))
        mock_backend.add_response("example.com", 80, http_response(200, body=b"done"))

        response = engine.perform(
            "POST",
            "http://example.com/submit",
            [("Content-Type", "application/json")],
            body=b"{}",
            options=TransportOptions(follow_redirects=True),
        )

        assert response.code == 200
        assert response.body == b"done"
        first, second = sent_requests()
        assert first.method == "POST"
        assert second.method == "GET"
        assert second.target == "/done"
        assert second.body == b""
        assert second.header("Content-Length") is None
        assert second.header("Content-Type") is None
        assert response.info.redirect_count == 1
        assert response.info.effective_url == "http://example.com/done"

    def test_307_keeps_method_and_body(self, engine, mock_backend, sent_requests):
        """Test 307 repeats the request unchanged."""
        mock_backend.add_response("example.com", 80, http_response(307, [("Location", "/v2")]))
        mock_backend.add_response("example.com", 80, http_response(201))

        response = engine.perform(
            "PUT",
            "http://example.com/v1",
            [],
            body=b"payload",
            options=TransportOptions(follow_redirects=True),
        )

        assert response.code == 201
        second = sent_requests()[1]
        assert second.method == "PUT"
        assert second.target == "/v2"
        assert second.body == b"payload"

    def test_cross_host_drops_authorization(self, engine, mock_backend, sent_requests):
        """Test credentials are not forwarded to another host."""
        mock_backend.add_response(
            "example.com", 80, http_response(302, [("Location", "http://other.com:8080/x")])
        )
        mock_backend.add_response("other.com", 8080, http_response(200))

        engine.perform(
            "GET",
            "http://example.com/",
            [("Authorization", "Bearer secret")],
            options=TransportOptions(follow_redirects=True),
        )

        first, second = sent_requests()
        assert first.header("Authorization") == "Bearer secret"
        assert second.header("Authorization") is None
        assert second.header("Host") == "other.com:8080"

    def test_same_host_keeps_authorization(self, engine, mock_backend, sent_requests):
        """Test credentials survive a same-host redirect."""
        mock_backend.add_response("example.com", 80, http_response(301, [("Location", "/b")]))
        mock_backend.add_response("example.com", 80, http_response(200))

        engine.perform(
            "GET",
            "http://example.com/a",
            [("Authorization", "Bearer secret")],
            options=TransportOptions(follow_redirects=True),
        )
        assert sent_requests()[1].header("Authorization") == "Bearer secret"

    def test_too_many_redirects(self, engine, mock_backend):
        """Test exceeding max_redirects is a transport failure."""
        for _ in range(2):
            mock_backend.add_response("example.com", 80, http_response(302, [("Location", "/loop")]))

        response = engine.perform(
            "GET",
            "http://example.com/loop",
            [],
            options=TransportOptions(follow_redirects=True, max_redirects=1),
        )

        assert response.code == TransportErrorCode.TOO_MANY_REDIRECTS
        assert response.is_transport_error
        assert b"Maximum (1) redirects followed" in response.body

    def test_zero_redirects_allowed(self, engine, mock_backend):
        """Test max_redirects=0 fails on the first redirect."""
        mock_backend.add_response("example.com", 80, http_response(302, [("Location", "/x")]))
        response = engine.perform(
            "GET",
            "http://example.com/",
            [],
            options=TransportOptions(follow_redirects=True, max_redirects=0),
        )
        assert response.code == TransportErrorCode.TOO_MANY_REDIRECTS


class TestProxy:
    """Test requests routed through an HTTP proxy."""

    def test_plain_http_uses_absolute_form(self, engine, mock_backend, sent_requests):
        """Test the proxy receives the absolute URL and credentials."""
        mock_backend.add_response("proxy.local", 3128, http_response(200, body=b"proxied"))
        options = TransportOptions(proxy=parse_proxy_url("http://u:p@proxy.local:3128"))

        response = engine.perform("GET", "http://example.com/a", [], options=options)

        assert response.body == b"proxied"
        assert mock_backend.connections == [("proxy.local", 3128)]
        request = sent_requests()[0]
        assert request.target == "http://example.com/a"
        assert request.header("Host") == "example.com"
        assert request.header("Proxy-Authorization") == "Basic dTpw"

    def test_https_uses_connect_tunnel(self, engine, mock_backend, sent_requests):
        """Test HTTPS goes through CONNECT and TLS to the origin."""
        mock_backend.add_response(
            "proxy.local",
            3128,
            b"HTTP/1.1 200 Connection established\r\n\r\n",
            http_response(200, body=b"secure"),
        )
        options = TransportOptions(proxy=parse_proxy_url("proxy.local:3128"))

        response = engine.perform("GET", "https://example.com/a", [], options=options)

        assert response.code == 200
        assert response.body == b"secure"
        assert mock_backend.tls_hosts == ["example.com"]
        connect, get = sent_requests()
        assert connect.method == "CONNECT"
        assert connect.target == "example.com:443"
        assert connect.header("Proxy-Authorization") is None
        assert get.target == "/a"

    def test_tunnel_refused(self, engine, mock_backend):
        """Test a refused CONNECT is a transport failure."""
        mock_backend.add_response(
            "proxy.local",
            3128,
            http_response(403, reason="Forbidden"),
        )
        options = TransportOptions(proxy=parse_proxy_url("proxy.local:3128"))
        response = engine.perform("GET", "https://example.com/", [], options=options)
        assert response.code == TransportErrorCode.FAILED
        assert b"403" in response.body


class TestKeepAlive:
    """Test connection reuse."""

    def test_reuse_same_origin(self, engine, mock_backend, sent_requests):
        """Test two requests share one connection."""
        mock_backend.add_response(
            "example.com",
            80,
            http_response(200, body=b"1", close=False),
            http_response(200, body=b"2", close=False),
        )

        assert engine.perform("GET", "http://example.com/1", []).body == b"1"
        assert engine.perform("GET", "http://example.com/2", []).body == b"2"

        assert len(mock_backend.connections) == 1
        assert [r.target for r in sent_requests()] == ["/1", "/2"]

    def test_no_reuse_after_close(self, engine, mock_backend):
        """Test Connection: close forces a new connection."""
        mock_backend.add_response("example.com", 80, http_response(200, body=b"1"))
        mock_backend.add_response("example.com", 80, http_response(200, body=b"2"))

        engine.perform("GET", "http://example.com/1", [])
        engine.perform("GET", "http://example.com/2", [])

        assert len(mock_backend.connections) == 2

    def test_stale_connection_replaced(self, engine, mock_backend, sent_requests):
        """Test a reused connection closed by the server is retried once."""
        mock_backend.add_response("example.com", 80, http_response(200, body=b"1", close=False))
        mock_backend.add_response("example.com", 80, http_response(200, body=b"2"))

        engine.perform("GET", "http://example.com/1", [])
        response = engine.perform("GET", "http://example.com/2", [])

        assert response.code == 200
        assert response.body == b"2"
        assert len(mock_backend.connections) == 2
        assert [r.target for r in sent_requests()] == ["/1", "/2", "/2"]

    def test_different_origins_not_shared(self, engine, mock_backend):
        """Test the pool is keyed by origin."""
        mock_backend.add_response("example.com", 80, http_response(200, close=False))
        mock_backend.add_response("other.com", 80, http_response(200, close=False))

        engine.perform("GET", "http://example.com/", [])
        engine.perform("GET", "http://other.com/", [])

        assert mock_backend.connections == [("example.com", 80), ("other.com", 80)]

    def test_stray_bytes_after_head_not_reused(self, engine, mock_backend):
        """Test a body sent after a HEAD response discards the connection."""
        first = mock_backend.add_response(
            "example.com", 80, http_response(200, content_length=5, close=False) + b"hello"
        )
        mock_backend.add_response("example.com", 80, http_response(200, body=b"ok"))

        head = engine.perform("HEAD", "http://example.com/", [])
        response = engine.perform("GET", "http://example.com/", [])

        assert head.code == 200
        assert head.body == b""
        assert response.code == 200
        assert response.body == b"ok"
        assert first.is_closed
        assert len(mock_backend.connections) == 2

    def test_expired_connections_to_other_origins_closed(self, engine, mock_backend):
        """Test idle connections past their keep-alive time are closed on the next request."""
        old = mock_backend.add_response("a.example", 80, http_response(200, close=False))
        fresh = mock_backend.add_response("b.example", 80, http_response(200, close=False))
        mock_backend.add_response("c.example", 80, http_response(200, close=False))

        engine.perform("GET", "http://a.example/", [])
        engine.perform("GET", "http://b.example/", [])
        for pooled in engine._idle.values():
            if pooled.stream is old:
                pooled._idle_since -= 3600

        engine.perform("GET", "http://c.example/", [])

        assert old.is_closed
        assert not fresh.is_closed
        assert all(pooled.stream is not old for pooled in engine._idle.values())
        assert len(engine._idle) == 2

    def test_server_closed_idle_connections_dropped(self, engine, mock_backend):
        """Test idle connections whose socket was closed leave the pool."""
        gone = mock_backend.add_response("a.example", 80, http_response(200, close=False))
        mock_backend.add_response("b.example", 80, http_response(200, close=False))

        engine.perform("GET", "http://a.example/", [])
        gone.close()
        engine.perform("GET", "http://b.example/", [])

        assert len(engine._idle) == 1
        assert all(pooled.stream is not gone for pooled in engine._idle.values())

    def test_close_closes_idle(self, engine, mock_backend):
        """Test closing the engine closes pooled sockets."""
        stream = mock_backend.add_response("example.com", 80, http_response(200, close=False))
        engine.perform("GET", "http://example.com/", [])
        assert not stream.is_closed
        engine.close()
        assert stream.is_closed


class TestFailures:
    """Test that transport failures become error-coded responses."""

    def test_connection_refused(self, engine):
        """Test nothing listening maps to FAILED."""
        response = engine.perform("GET", "http://example.com/", [])
        assert response.code == TransportErrorCode.FAILED
        assert response.body.startswith(b"Failed to query:")
        assert response.headers == {}

    def test_dns_failure(self, engine, mock_backend):
        """Test name resolution errors map to FAILED."""
        mock_backend.fail_connect("nowhere.invalid", 80, socket.gaierror("Name or service not known"))
        response = engine.perform("GET", "http://nowhere.invalid/", [])
        assert response.code == TransportErrorCode.FAILED

    def test_read_timeout(self, engine, mock_backend):
        """Test socket timeouts map to TIMEOUT."""
        mock_backend.add_response("example.com", 80, read_error=socket.timeout("timed out"))
        response = engine.perform(
            "GET", "http://example.com/", [], options=TransportOptions(timeout=0.5)
        )
        assert response.code == TransportErrorCode.TIMEOUT
        assert response.body == b"Operation Timeout."

    def test_timeout_applied_to_stream(self, engine, mock_backend):
        """Test the transaction timeout bounds each socket operation."""
        stream = mock_backend.add_response("example.com", 80, http_response(200))
        engine.perform("GET", "http://example.com/", [], options=TransportOptions(timeout=5))
        assert stream.timeouts
        assert all(t is not None and 0 < t <= 5 for t in stream.timeouts)

    def test_ssl_error(self, engine, mock_backend):
        """Test TLS failures map to SSL_ERROR."""
        mock_backend.add_response("example.com", 443)
        mock_backend.fail_tls("example.com", ssl.SSLError("certificate verify failed"))
        response = engine.perform("GET", "https://example.com/", [])
        assert response.code == TransportErrorCode.SSL_ERROR

    def test_protocol_error(self, engine, mock_backend):
        """Test malformed responses map to PROTOCOL_ERROR."""
        mock_backend.add_response("example.com", 80, b"SMTP ready\r\n\r\n")
        response = engine.perform("GET", "http://example.com/", [])
        assert response.code == TransportErrorCode.PROTOCOL_ERROR

    def test_missing_form_file(self, engine, mock_backend, tmp_path):
        """Test an unreadable form file maps to RESOURCE_ERROR without connecting."""
        response = engine.perform(
            "POST",
            "http://example.com/upload",
            [],
            form=[FileField("f", str(tmp_path / "missing.bin"))],
        )
        assert response.code == TransportErrorCode.RESOURCE_ERROR
        assert mock_backend.connections == []

    def test_invalid_url(self, engine):
        """Test an unsupported scheme maps to FAILED."""
        response = engine.perform("GET", "ftp://example.com/file", [])
        assert response.code == TransportErrorCode.FAILED

    def test_failure_is_logged(self, engine, caplog):
        """Test failures are logged at error level."""
        with caplog.at_level(logging.ERROR, logger="restclient.transport"):
            engine.perform("GET", "http://example.com/", [])
        assert "GET http://example.com/ failed (FAILED)" in caplog.text

    def test_failure_carries_timing(self, engine):
        """Test failed transactions still report timing info."""
        response = engine.perform("GET", "http://example.com/", [])
        assert response.info.total_time >= 0.0
        assert response.info.effective_url == "http://example.com/"


class TestTLS:
    """Test SSL context selection."""

    def test_shared_context_from_started_lifecycle(self, engine, mock_backend, lifecycle):
        """Test verifying requests use the lifecycle's context."""
        assert lifecycle.start() == 0
        mock_backend.add_response("example.com", 443, http_response(200))

        engine.perform("GET", "https://example.com/", [])

        assert mock_backend.tls_contexts == [lifecycle.ssl_context]
        lifecycle.stop()

    def test_unverified_context(self, engine, mock_backend):
        """Test disabling peer verification."""
        mock_backend.add_response("example.com", 443, http_response(200))
        engine.perform(
            "GET", "https://example.com/", [], options=TransportOptions(ssl_verify_peer=False)
        )
        context = mock_backend.tls_contexts[0]
        assert context.verify_mode == ssl.CERT_NONE

    def test_context_cached_per_settings(self, engine, mock_backend):
        """Test the engine builds one context per TLS configuration."""
        mock_backend.add_response("example.com", 443, http_response(200))
        mock_backend.add_response("example.com", 443, http_response(200))

        engine.perform("GET", "https://example.com/", [])
        engine.perform("GET", "https://example.com/", [])

        first, second = mock_backend.tls_contexts
        assert first is second

    def test_timing_info(self, engine, mock_backend):
        """Test HTTPS transactions record TLS timing."""
        mock_backend.add_response("example.com", 443, http_response(200))
        response = engine.perform("GET", "https://example.com/", [])
        info = response.info
        assert info.connect_time <= info.app_connect_time <= info.total_time
        assert info.start_transfer_time >= info.pre_transfer_time


class TestUnixSocket:
    """Test requests over a Unix domain socket."""

    def test_unix_socket_route(self, engine, mock_backend, sent_requests):
        """Test the request goes to the socket with the URL's Host."""
        mock_backend.add_unix_response("/run/app.sock", http_response(200, body=b"local"))

        response = engine.perform(
            "GET",
            "http://localhost/status",
            [],
            options=TransportOptions(unix_socket_path="/run/app.sock"),
        )

        assert response.body == b"local"
        assert mock_backend.connections == [("unix", "/run/app.sock")]
        request = sent_requests()[0]
        assert request.target == "/status"
        assert request.header("Host") == "localhost"


def test_parse_requests_helper_handles_pipelined_data():
    """Sanity check for the test helper itself."""
    raw = (
        b"GET /a HTTP/1.1\r\nHost: x\r\n\r\n"
        b"POST /b HTTP/1.1\r\nHost: x\r\nContent-Length: 2\r\n\r\nhi"
    )
    parsed = parse_requests(raw)
    assert [(r.method, r.target, r.body) for r in parsed] == [("GET", "/a", b""), ("POST", "/b", b"hi")]
