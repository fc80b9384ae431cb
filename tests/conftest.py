"""Shared pytest fixtures for dualhttpd tests."""

import http.client
import socket
import ssl
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dualhttpd.tls import generate_self_signed_cert


def get_free_port() -> int:
    """Return a port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def http_get(url_host: str, port: int, path: str, tls: bool = False):
    """GET path and return (status, headers, body)."""
    if tls:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        conn = http.client.HTTPSConnection(url_host, port, timeout=5, context=context)
    else:
        conn = http.client.HTTPConnection(url_host, port, timeout=5)
    try:
        conn.request("GET", path)
        response = conn.getresponse()
        return response.status, dict(response.getheaders()), response.read()
    finally:
        conn.close()


@pytest.fixture
def cert_files(tmp_path):
    """Self-signed cert.pem/key.pem for localhost."""
    return generate_self_signed_cert(
        cert_dir=tmp_path / "certs", hostname="localhost", key_size=2048
    )


@pytest.fixture
def other_cert_files(tmp_path):
    """A second, unrelated certificate/key pair."""
    return generate_self_signed_cert(
        cert_dir=tmp_path / "other-certs", hostname="localhost", key_size=2048
    )
