"""TLS certificate loading for the HTTPS listener.

Reads a PEM certificate chain and a PKCS#8 private key from disk and turns
them into a server-side ``ssl.SSLContext``. Every failure is reported as a
``CertError`` subclass so the caller can decide to run without TLS.

Also provides self-signed certificate generation for first deployments
(``dualhttpd gen-cert``).
"""

import base64
import binascii
import datetime
import ipaddress
import logging
import os
import re
import socket
import ssl
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

logger = logging.getLogger(__name__)

# Certificate defaults
DEFAULT_CERT_FILE = "cert.pem"
DEFAULT_KEY_FILE = "key.pem"
DEFAULT_CERT_DAYS = 365
DEFAULT_KEY_SIZE = 4096

_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN (?P<label>[A-Z0-9 ]+)-----\s*"
    rb"(?P<body>[^-]*)"
    rb"-----END (?P=label)-----",
)


class CertError(Exception):
    """Certificate material could not be turned into a TLS configuration.

    Attributes:
        path: File the failure relates to (None when not file-specific)
        cause: Underlying exception, if any
    """

    reason = "certificate error"

    def __init__(self, path: Optional[Path] = None, cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        message = self.reason
        if path is not None:
            message = f"{message}: {path}"
        if cause is not None:
            message = f"{message} ({cause})"
        super().__init__(message)


class CertFileUnreadable(CertError):
    """Certificate chain file could not be opened or read."""

    reason = "cannot read certificate file"


class KeyFileUnreadable(CertError):
    """Private key file could not be opened or read."""

    reason = "cannot read private key file"


class NoPrivateKey(CertError):
    """Key file holds no PKCS#8 private key."""

    reason = "no PKCS#8 private key found"


class ConfigConstructionFailed(CertError):
    """Chain and key were read but do not form a usable TLS configuration."""

    reason = "cannot build TLS configuration"


@dataclass(frozen=True)
class TLSServerConfig:
    """Validated TLS material for one HTTPS listener.

    The context requires no client certificate and uses the platform's
    default cipher selection.
    """

    context: ssl.SSLContext = field(repr=False, compare=False)
    chain: tuple
    key_der: bytes = field(repr=False)
    fingerprint: str
    cert_path: Optional[Path] = None
    key_path: Optional[Path] = None


@dataclass
class CertFiles:
    """Certificate/key pair on disk, as written by generate_self_signed_cert."""

    cert_path: Path
    key_path: Path
    fingerprint: str


def read_pem_blocks(data: bytes, label: str) -> list[bytes]:
    """Decode every PEM block with the given label, in file order.

    Blocks whose base64 payload is malformed are skipped.

    Args:
        data: Raw file contents
        label: PEM label, e.g. "CERTIFICATE" or "PRIVATE KEY"

    Returns:
        List of DER payloads
    """
    blocks = []
    wanted = label.encode("ascii")
    for match in _PEM_BLOCK_RE.finditer(data):
        if match.group("label") != wanted:
            continue
        body = b"".join(match.group("body").split())
        try:
            blocks.append(base64.b64decode(body, validate=True))
        except binascii.Error:
            logger.debug("Skipping undecodable %s block", label)
    return blocks


def format_fingerprint(cert: x509.Certificate) -> str:
    """SHA256 fingerprint as colon-separated upper-case hex."""
    return ":".join(f"{b:02X}" for b in cert.fingerprint(hashes.SHA256()))


def get_cert_fingerprint(cert_path: Path) -> str:
    """Get SHA256 fingerprint of the first certificate in a PEM file.

    Raises:
        ValueError: If the file holds no parsable certificate
    """
    cert = x509.load_pem_x509_certificate(Path(cert_path).read_bytes())
    return format_fingerprint(cert)


def _public_key_der(key) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def build_tls_config(
    chain: list[bytes],
    key_der: bytes,
    cert_path: Optional[Path] = None,
    key_path: Optional[Path] = None,
) -> TLSServerConfig:
    """Build a server TLS configuration from DER material.

    Args:
        chain: DER certificates, leaf first
        key_der: DER-encoded PKCS#8 private key
        cert_path: Source path of the chain (diagnostics only)
        key_path: Source path of the key (diagnostics only)

    Raises:
        ConfigConstructionFailed: Empty chain, malformed DER, key that does
            not match the leaf, or OpenSSL refusing the material
    """
    if not chain:
        raise ConfigConstructionFailed(
            cert_path, ValueError("no certificates in chain")
        )

    try:
        certs = [x509.load_der_x509_certificate(der) for der in chain]
        key = serialization.load_der_private_key(key_der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigConstructionFailed(cert_path, e) from e

    try:
        matches = _public_key_der(certs[0].public_key()) == _public_key_der(key.public_key())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigConstructionFailed(cert_path, e) from e
    if not matches:
        raise ConfigConstructionFailed(
            key_path, ValueError("private key does not match certificate")
        )

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.verify_mode = ssl.CERT_NONE

    # load_cert_chain only reads from files; keep the key in a private dir
    with tempfile.TemporaryDirectory(prefix="dualhttpd-") as tmpdir:
        bundle = Path(tmpdir) / "bundle.pem"
        fd = os.open(bundle, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            for cert in certs:
                f.write(cert.public_bytes(serialization.Encoding.PEM))
            f.write(key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ))
        try:
            context.load_cert_chain(certfile=str(bundle))
        except (ssl.SSLError, OSError) as e:
            raise ConfigConstructionFailed(cert_path, e) from e

    return TLSServerConfig(
        context=context,
        chain=tuple(chain),
        key_der=key_der,
        fingerprint=format_fingerprint(certs[0]),
        cert_path=cert_path,
        key_path=key_path,
    )


def load_certificates(cert_path: Path, key_path: Path) -> TLSServerConfig:
    """Load a certificate chain and private key into a TLS configuration.

    The first PKCS#8 key in the key file is used; any further keys are
    ignored.

    Args:
        cert_path: PEM file with the certificate chain, leaf first
        key_path: PEM file with one or more PKCS#8 private keys

    Returns:
        TLSServerConfig ready for a listener

    Raises:
        CertFileUnreadable: Certificate file cannot be read
        KeyFileUnreadable: Key file cannot be read
        NoPrivateKey: Key file holds no PKCS#8 key
        ConfigConstructionFailed: Material does not form a valid config
    """
    cert_path = Path(cert_path)
    key_path = Path(key_path)

    logger.debug("Loading certificate chain from %s", cert_path)
    try:
        cert_data = cert_path.read_bytes()
    except OSError as e:
        raise CertFileUnreadable(cert_path, e) from e
    chain = read_pem_blocks(cert_data, "CERTIFICATE")
    if not chain:
        logger.warning("No certificates found in %s", cert_path)

    logger.debug("Loading private key from %s", key_path)
    try:
        key_data = key_path.read_bytes()
    except OSError as e:
        raise KeyFileUnreadable(key_path, e) from e
    keys = read_pem_blocks(key_data, "PRIVATE KEY")
    if not keys:
        raise NoPrivateKey(key_path)
    if len(keys) > 1:
        logger.debug("Found %d private keys in %s, using the first", len(keys), key_path)

    config = build_tls_config(chain, keys[0], cert_path=cert_path, key_path=key_path)
    logger.info(
        "Loaded %d certificate(s) from %s (SHA256 %s)",
        len(chain), cert_path, config.fingerprint,
    )
    return config


def try_load_certificates(
    cert_path: Path, key_path: Path
) -> Union[TLSServerConfig, CertError]:
    """Like load_certificates, but return the CertError instead of raising."""
    try:
        return load_certificates(cert_path, key_path)
    except CertError as e:
        return e


def get_hostname() -> str:
    """Get the system hostname."""
    return socket.gethostname()


def get_primary_ip() -> Optional[str]:
    """Get the primary IP address.

    Connects a UDP socket to a public address (no packets are sent) and
    reads back the local address the kernel picked.

    Returns:
        Primary IP address, or None if it cannot be determined
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.settimeout(0)
            sock.connect(("8.8.8.8", 80))
            ip: str = sock.getsockname()[0]
            return ip
    except OSError:
        return None


def generate_self_signed_cert(
    cert_dir: Optional[Path] = None,
    hostname: Optional[str] = None,
    days: int = DEFAULT_CERT_DAYS,
    key_size: int = DEFAULT_KEY_SIZE,
    force: bool = False,
) -> CertFiles:
    """Generate a self-signed certificate and PKCS#8 key.

    Creates a certificate with:
    - CN = hostname
    - SAN = hostname, localhost, 127.0.0.1 and the primary IP (if known)
    - RSA key of key_size bits, written as PKCS#8 with mode 0600

    Args:
        cert_dir: Directory for cert.pem and key.pem (default: current directory)
        hostname: Hostname for certificate CN (default: system hostname)
        days: Certificate validity in days
        key_size: RSA key size in bits
        force: Overwrite an existing certificate

    Returns:
        CertFiles with paths and fingerprint

    Raises:
        PermissionError: If cert_dir is not writable
    """
    cert_dir = Path(cert_dir) if cert_dir else Path.cwd()
    hostname = hostname or get_hostname()

    cert_dir.mkdir(parents=True, exist_ok=True)

    cert_path = cert_dir / DEFAULT_CERT_FILE
    key_path = cert_dir / DEFAULT_KEY_FILE

    if cert_path.exists() and key_path.exists() and not force:
        logger.info("Using existing certificate: %s", cert_path)
        return CertFiles(cert_path, key_path, get_cert_fingerprint(cert_path))

    logger.info("Generating self-signed certificate for %s", hostname)

    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)

    san_entries: list[x509.GeneralName] = [x509.DNSName(hostname)]
    if hostname != "localhost":
        san_entries.append(x509.DNSName("localhost"))
    addresses = ["127.0.0.1"]
    if (ip := get_primary_ip()) and ip not in addresses:
        addresses.append(ip)
    san_entries.extend(x509.IPAddress(ipaddress.ip_address(a)) for a in addresses)

    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
            critical=False,
        )
        .add_extension(x509.SubjectAlternativeName(san_entries), critical=False)
        .sign(key, hashes.SHA256())
    )

    key_path.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))

    # Set restrictive permissions on key file
    os.chmod(key_path, 0o600)
    os.chmod(cert_path, 0o644)

    fingerprint = format_fingerprint(cert)
    logger.info("Certificate fingerprint (SHA256): %s", fingerprint)

    return CertFiles(cert_path=cert_path, key_path=key_path, fingerprint=fingerprint)
