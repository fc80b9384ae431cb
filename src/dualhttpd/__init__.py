"""Dual-listener web server.

Serves one route table over plaintext HTTP and, when certificate material
loads, over HTTPS as well. Missing or broken certificates disable HTTPS
with a warning; a port that cannot be bound aborts startup.
"""

__version__ = "0.1.0"

from dualhttpd.tls import (
    CertError,
    CertFileUnreadable,
    KeyFileUnreadable,
    NoPrivateKey,
    ConfigConstructionFailed,
    TLSServerConfig,
    load_certificates,
    try_load_certificates,
    generate_self_signed_cert,
)
from dualhttpd.routes import (
    Response,
    RouteTable,
    build_route_table,
)
from dualhttpd.httpd import (
    Protocol,
    ListenerBinding,
)
from dualhttpd.bootstrap import (
    BootstrapError,
    BootstrapState,
    RunningServer,
    bootstrap,
)
from dualhttpd.config import (
    ConfigError,
    ServerConfig,
    load_config,
)

__all__ = [
    "__version__",
    # TLS
    "CertError",
    "CertFileUnreadable",
    "KeyFileUnreadable",
    "NoPrivateKey",
    "ConfigConstructionFailed",
    "TLSServerConfig",
    "load_certificates",
    "try_load_certificates",
    "generate_self_signed_cert",
    # Routing
    "Response",
    "RouteTable",
    "build_route_table",
    # Listeners
    "Protocol",
    "ListenerBinding",
    # Bootstrap
    "BootstrapError",
    "BootstrapState",
    "RunningServer",
    "bootstrap",
    # Config
    "ConfigError",
    "ServerConfig",
    "load_config",
]
