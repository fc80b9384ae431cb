"""Command-line interface.

Subcommands:
- serve: Run the server in the foreground
- gen-cert: Write a self-signed cert.pem/key.pem pair
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from dualhttpd.bootstrap import BootstrapError, RunningServer, bootstrap
from dualhttpd.config import ConfigError, load_config
from dualhttpd.httpd import Protocol
from dualhttpd.routes import build_route_table
from dualhttpd.tls import (
    DEFAULT_CERT_DAYS,
    DEFAULT_KEY_SIZE,
    generate_self_signed_cert,
    try_load_certificates,
)

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _setup_signal_handlers(server: RunningServer):
    """Stop the server on SIGTERM (SIGINT arrives as KeyboardInterrupt)."""

    def handle_sigterm(signum, frame):
        logger.info("Received SIGTERM")
        server.request_stop()

    signal.signal(signal.SIGTERM, handle_sigterm)


def _handle_serve(argv):
    """Handle 'serve': bind listeners and serve until stopped."""
    parser = argparse.ArgumentParser(
        prog="dualhttpd serve",
        description="Serve over HTTP, and over HTTPS when certificates load",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="YAML configuration file (default: $DUALHTTPD_CONFIG)",
    )
    parser.add_argument("--host", "-b", help="Address to bind to (default: 127.0.0.1)")
    parser.add_argument("--http-port", type=int, help="Plaintext port (default: 8080)")
    parser.add_argument("--https-port", type=int, help="TLS port (default: 8443)")
    parser.add_argument("--cert", type=Path, help="PEM certificate chain (default: cert.pem)")
    parser.add_argument("--key", type=Path, help="PEM PKCS#8 private key (default: key.pem)")
    parser.add_argument("--static-dir", type=Path, help="Static asset directory (default: static)")
    parser.add_argument(
        "--grace",
        type=float,
        help="Seconds to let in-flight requests finish on shutdown (default: 5)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output startup info as JSON",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = load_config(args.config).with_overrides(
            host=args.host,
            http_port=args.http_port,
            https_port=args.https_port,
            cert_path=args.cert,
            key_path=args.key,
            static_dir=args.static_dir,
            shutdown_grace=args.grace,
        )
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    cert_result = try_load_certificates(config.cert_path, config.key_path)
    routes = build_route_table(config.static_dir)

    try:
        server = bootstrap(routes, cert_result, config)
    except BootstrapError as e:
        logger.error("Failed to start server: %s", e)
        return 1

    _setup_signal_handlers(server)

    if args.json:
        info = {
            "listeners": {b.protocol.value: b.url for b in server.bindings},
            "tls_error": str(server.tls_error) if server.tls_error else None,
        }
        if server.tls_enabled:
            info["fingerprint"] = server.listeners[Protocol.TLS].tls_config.fingerprint
        print(json.dumps(info, indent=2))
    else:
        for binding in server.bindings:
            print(f"Listening on {binding.url}")
        if server.tls_enabled:
            print(f"Certificate fingerprint: {server.listeners[Protocol.TLS].tls_config.fingerprint}")
        print("\nPress Ctrl+C to stop...")

    server.serve_forever()
    return 0


def _handle_gen_cert(argv):
    """Handle 'gen-cert': write a self-signed certificate."""
    parser = argparse.ArgumentParser(
        prog="dualhttpd gen-cert",
        description="Generate a self-signed cert.pem and PKCS#8 key.pem",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--cert-dir",
        type=Path,
        default=Path("."),
        help="Directory to write cert.pem and key.pem into",
    )
    parser.add_argument("--hostname", help="Certificate CN (default: system hostname)")
    parser.add_argument("--days", type=int, default=DEFAULT_CERT_DAYS, help="Validity in days")
    parser.add_argument("--key-size", type=int, default=DEFAULT_KEY_SIZE, help="RSA key size in bits")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing certificate",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        files = generate_self_signed_cert(
            cert_dir=args.cert_dir,
            hostname=args.hostname,
            days=args.days,
            key_size=args.key_size,
            force=args.force,
        )
    except (OSError, ValueError) as e:
        logger.error("Failed to generate certificate: %s", e)
        return 1

    print(f"Certificate: {files.cert_path}")
    print(f"Private key: {files.key_path}")
    print(f"Fingerprint (SHA256): {files.fingerprint}")
    return 0


def main(argv=None):
    """CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    subcommands = {
        "serve": _handle_serve,
        "gen-cert": _handle_gen_cert,
    }

    if not argv or argv[0] in ("-h", "--help"):
        print("Usage: dualhttpd <command> [options]")
        print()
        print("Commands:")
        print("  serve      Serve over HTTP and, when certificates load, HTTPS")
        print("  gen-cert   Generate a self-signed certificate")
        print()
        print("Run 'dualhttpd <command> --help' for command-specific options.")
        return 0

    subcmd = argv[0]
    if subcmd not in subcommands:
        print(f"Error: Unknown command '{subcmd}'")
        print(f"Available commands: {', '.join(subcommands)}")
        return 1

    return subcommands[subcmd](argv[1:])


if __name__ == "__main__":
    sys.exit(main())
