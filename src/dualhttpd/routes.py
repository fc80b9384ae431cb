"""Request routing shared by the plaintext and TLS listeners.

The route table maps an exact request path to a handler function. It is
built once at startup and never mutated.
"""

import logging
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping, Optional
from urllib.parse import urlparse

from dualhttpd import __version__

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPE = "text/html; charset=utf-8"
FAVICON_CONTENT_TYPE = "image/x-icon"

WELCOME_PAGE = b"<!DOCTYPE html><html><body><p>Welcome!</p></body></html>"
NOT_FOUND_PAGE = b"<!DOCTYPE html><html><body><p>Not Found</p></body></html>"


@dataclass(frozen=True)
class Response:
    """HTTP response produced by a route handler."""

    status: int
    body: bytes = b""
    content_type: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)


RouteHandler = Callable[["RequestHandler"], Response]
RouteTable = Mapping[str, RouteHandler]


def index(request: "RequestHandler") -> Response:
    """Static welcome page."""
    logger.debug("index requested by %s: %s", request.address_string(), request.requestline)
    return Response(200, WELCOME_PAGE, HTML_CONTENT_TYPE)


def redirect_to_index(request: "RequestHandler") -> Response:
    """Redirect the bare root to the welcome page."""
    return Response(302, headers={"Location": "/index.html"})


def not_found(request: "RequestHandler") -> Response:
    return Response(404, NOT_FOUND_PAGE, HTML_CONTENT_TYPE)


def make_favicon_handler(static_dir: Path) -> RouteHandler:
    """Return a handler serving favicon.ico from static_dir, or 404."""
    favicon_path = Path(static_dir) / "favicon.ico"

    def favicon(request: "RequestHandler") -> Response:
        try:
            content = favicon_path.read_bytes()
        except OSError:
            return not_found(request)
        return Response(200, content, FAVICON_CONTENT_TYPE)

    return favicon


def build_route_table(static_dir: Path) -> RouteTable:
    """Build the read-only route table.

    Args:
        static_dir: Directory holding static assets (favicon.ico)

    Returns:
        Immutable mapping of request path to handler
    """
    return MappingProxyType({
        "/": redirect_to_index,
        "/index.html": index,
        "/favicon.ico": make_favicon_handler(static_dir),
    })


class RequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler dispatching on the route table.

    Bind a table with handler_for(); the base class has none.
    """

    routes: RouteTable = MappingProxyType({})
    server_version = f"dualhttpd/{__version__}"
    # Bounds idle and stalled connections so shutdown can drain them
    timeout = 30

    def log_message(self, format: str, *args):
        """Override to use Python logging."""
        logger.info("%s - %s", self.address_string(), format % args)

    def send(self, response: Response, include_body: bool = True):
        """Write a Response to the client."""
        self.send_response(response.status)
        if response.content_type:
            self.send_header("Content-Type", response.content_type)
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        if include_body and response.body:
            self.wfile.write(response.body)

    def dispatch(self) -> Response:
        """Resolve the request path to a Response."""
        path = urlparse(self.path).path
        route = self.routes.get(path, not_found)
        return route(self)

    def do_GET(self):
        """Handle GET requests."""
        self.send(self.dispatch())

    def do_HEAD(self):
        """Handle HEAD requests."""
        self.send(self.dispatch(), include_body=False)


def handler_for(routes: RouteTable) -> type:
    """Create a RequestHandler subclass bound to a route table.

    Both listeners of one server get the same class, so they share the
    table by reference.
    """
    return type("BoundRequestHandler", (RequestHandler,), {"routes": routes})
