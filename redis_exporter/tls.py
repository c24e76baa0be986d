"""Construction of TLS contexts for the Redis connection and the web listener.

Outbound (exporter to Redis) and inbound (scrape client to exporter) TLS are
configured independently of each other.
"""

import logging
import ssl

from redis_exporter import constants
from redis_exporter.errors import TLSConfigError
from redis_exporter.settings import ClientTLSSettings

logger = logging.getLogger(__name__)

TLS_VERSIONS: dict[str, ssl.TLSVersion] = {
    "TLS1.0": ssl.TLSVersion.TLSv1,
    "TLS1.1": ssl.TLSVersion.TLSv1_1,
    "TLS1.2": ssl.TLSVersion.TLSv1_2,
    "TLS1.3": ssl.TLSVersion.TLSv1_3,
}


def validate_client_key_pair(cert_file: str, key_file: str) -> None:
    """Reject a client certificate without its key, or a key without its certificate.

    Raises:
        TLSConfigError: If exactly one of the pair is set
    """
    if bool(cert_file) != bool(key_file):
        raise TLSConfigError("TLS client key file and cert file should both be present")


def resolve_min_version(name: str) -> ssl.TLSVersion:
    """Translate a ``TLS1.x`` selector into the protocol floor.

    Raises:
        TLSConfigError: If the selector is not one of ``TLS1.0`` to ``TLS1.3``
    """
    try:
        return TLS_VERSIONS[name]
    except KeyError:
        raise TLSConfigError(
            f"Unsupported TLS min version {name!r}, expected one of: "
            + ", ".join(TLS_VERSIONS)
        ) from None


def create_client_tls_context(settings: ClientTLSSettings) -> ssl.SSLContext:
    """Build the TLS context used to connect to Redis.

    Args:
        settings: Client certificate, key, CA and verification switch

    Returns:
        ssl.SSLContext: A client-side context

    Raises:
        TLSConfigError: If the key pair is mismatched or any file is unusable
    """
    validate_client_key_pair(settings.cert_file, settings.key_file)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        if settings.cert_file:
            logger.debug(
                "Loading TLS client cert %s and key %s",
                settings.cert_file,
                settings.key_file,
            )
            context.load_cert_chain(
                certfile=settings.cert_file, keyfile=settings.key_file
            )
        if settings.ca_cert_file:
            logger.debug("Loading TLS CA cert %s", settings.ca_cert_file)
            context.load_verify_locations(cafile=settings.ca_cert_file)
        else:
            context.load_default_certs(ssl.Purpose.SERVER_AUTH)
    except OSError as e:
        raise TLSConfigError(f"Couldn't load TLS client material: {e}") from e

    if settings.skip_verification:
        logger.warning("TLS verification of the Redis certificate is disabled")
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    return context


def create_server_tls_context(
    cert_file: str,
    key_file: str,
    ca_cert_file: str = "",
    min_version: str = constants.DEFAULT_TLS_SERVER_MIN_VERSION,
) -> ssl.SSLContext | None:
    """Build the TLS context of the web listener.

    Unless both a certificate and a key are given the listener runs in
    plaintext and ``None`` is returned. When a CA is supplied, scrape
    clients must present a certificate signed by it (mutual TLS); otherwise
    client certificates are not requested.

    Args:
        cert_file: Server certificate (PEM)
        key_file: Server private key (PEM)
        ca_cert_file: CA used to verify client certificates
        min_version: Lowest accepted protocol version, ``TLS1.0`` to ``TLS1.3``

    Returns:
        ssl.SSLContext | None: A server-side context, or ``None`` for plaintext

    Raises:
        TLSConfigError: On an unknown min version or unusable certificate material
    """
    if not cert_file or not key_file:
        return None

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = resolve_min_version(min_version)
    try:
        context.load_cert_chain(certfile=cert_file, keyfile=key_file)
        if ca_cert_file:
            context.load_verify_locations(cafile=ca_cert_file)
            context.verify_mode = ssl.CERT_REQUIRED
        else:
            context.verify_mode = ssl.CERT_NONE
    except OSError as e:
        raise TLSConfigError(f"Couldn't load TLS server material: {e}") from e

    return context
