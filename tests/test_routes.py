"""Tests for dualhttpd/routes.py - request routing."""

import http.client
import threading
from unittest.mock import MagicMock

import pytest

from dualhttpd.httpd import Listener
from dualhttpd.routes import (
    HTML_CONTENT_TYPE,
    RequestHandler,
    Response,
    build_route_table,
    handler_for,
    index,
    make_favicon_handler,
    not_found,
    redirect_to_index,
)


@pytest.fixture
def request_stub():
    stub = MagicMock(spec=RequestHandler)
    stub.address_string.return_value = "127.0.0.1"
    stub.requestline = "GET /index.html HTTP/1.1"
    return stub


class TestRouteHandlers:
    """Tests for the individual route handlers."""

    def test_index(self, request_stub):
        response = index(request_stub)

        assert response.status == 200
        assert response.content_type == HTML_CONTENT_TYPE
        assert b"Welcome" in response.body

    def test_redirect_to_index(self, request_stub):
        response = redirect_to_index(request_stub)

        assert response.status == 302
        assert response.headers == {"Location": "/index.html"}
        assert response.body == b""

    def test_not_found(self, request_stub):
        assert not_found(request_stub).status == 404

    def test_favicon_served(self, tmp_path, request_stub):
        (tmp_path / "favicon.ico").write_bytes(b"\x00\x00\x01\x00icon")

        response = make_favicon_handler(tmp_path)(request_stub)

        assert response.status == 200
        assert response.content_type == "image/x-icon"
        assert response.body == b"\x00\x00\x01\x00icon"

    def test_favicon_missing(self, tmp_path, request_stub):
        response = make_favicon_handler(tmp_path)(request_stub)
        assert response.status == 404


class TestRouteTable:
    """Tests for build_route_table."""

    def test_paths(self, tmp_path):
        routes = build_route_table(tmp_path)
        assert set(routes) == {"/", "/index.html", "/favicon.ico"}

    def test_read_only(self, tmp_path):
        """The table cannot be modified after construction."""
        routes = build_route_table(tmp_path)
        with pytest.raises(TypeError):
            routes["/admin"] = not_found

    def test_handler_for_shares_table(self, tmp_path):
        """Bound handler classes reference the table, not a copy."""
        routes = build_route_table(tmp_path)
        handler_class = handler_for(routes)

        assert issubclass(handler_class, RequestHandler)
        assert handler_class.routes is routes
        assert RequestHandler.routes is not routes


class TestRequestHandler:
    """Tests for RequestHandler over a real socket."""

    @pytest.fixture
    def server(self, tmp_path):
        (tmp_path / "favicon.ico").write_bytes(b"icon-bytes")
        routes = dict(build_route_table(tmp_path))
        routes["/boom"] = lambda request: 1 / 0
        listener = Listener(("127.0.0.1", 0), handler_for(routes))
        thread = threading.Thread(target=listener.serve_forever, daemon=True)
        thread.start()

        yield listener.server_address[1]

        listener.shutdown()
        listener.server_close()

    def _request(self, port, method, path):
        conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
        try:
            conn.request(method, path)
            response = conn.getresponse()
            return response.status, response.getheader("Content-Type"), response.getheader("Location"), response.read()
        finally:
            conn.close()

    def test_get_index(self, server):
        status, content_type, _, body = self._request(server, "GET", "/index.html")

        assert status == 200
        assert content_type == "text/html; charset=utf-8"
        assert body.startswith(b"<!DOCTYPE html>")

    def test_root_redirects(self, server):
        status, _, location, _ = self._request(server, "GET", "/")

        assert status == 302
        assert location == "/index.html"

    def test_query_string_ignored(self, server):
        status, _, _, _ = self._request(server, "GET", "/index.html?lang=en")
        assert status == 200

    def test_head_has_no_body(self, server):
        status, content_type, _, body = self._request(server, "HEAD", "/index.html")

        assert status == 200
        assert content_type == "text/html; charset=utf-8"
        assert body == b""

    def test_favicon(self, server):
        status, content_type, _, body = self._request(server, "GET", "/favicon.ico")

        assert status == 200
        assert content_type == "image/x-icon"
        assert body == b"icon-bytes"

    def test_unknown_path(self, server):
        status, _, _, _ = self._request(server, "GET", "/unknown")
        assert status == 404

    def test_unsupported_method(self, server):
        status, _, _, _ = self._request(server, "POST", "/index.html")
        assert status == 501

    def test_handler_error_does_not_stop_listener(self, server):
        """A failing handler ends its connection; the listener keeps serving."""
        with pytest.raises(http.client.HTTPException):
            self._request(server, "GET", "/boom")

        status, _, _, _ = self._request(server, "GET", "/index.html")
        assert status == 200


def test_response_defaults():
    response = Response(204)
    assert response.body == b""
    assert response.content_type is None
    assert dict(response.headers) == {}
