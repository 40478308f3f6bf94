"""
TLS credentials for the QUIC control channel.

The server presents either a provisioned certificate (PEM files) or a fresh
self-signed ECDSA P-256 certificate. Clients do not verify it.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from aioquic.quic.configuration import QuicConfiguration
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from moqrelay.infra.exceptions import TransportError
from moqrelay.infra.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TransportCredential:
    """Certificate and private key presented by the control channel server."""
    certificate: x509.Certificate
    private_key: Any

    def apply(self, configuration: QuicConfiguration) -> None:
        configuration.certificate = self.certificate
        configuration.private_key = self.private_key

    def certificate_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    def private_key_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @classmethod
    def from_pem_files(cls, cert_file: str | Path, key_file: str | Path) -> TransportCredential:
        """
        Load a provisioned certificate and its unencrypted private key.

        Raises:
            TransportError: If either file cannot be read or parsed.
        """
        try:
            certificate = x509.load_pem_x509_certificate(Path(cert_file).read_bytes())
            private_key = serialization.load_pem_private_key(
                Path(key_file).read_bytes(), password=None
            )
        except (OSError, ValueError, TypeError) as e:
            raise TransportError(f"cannot load TLS credential: {e}") from e
        return cls(certificate=certificate, private_key=private_key)


def generate_self_signed(
    common_name: str = "localhost",
    organization: str = "MOQ",
    valid_days: int = 365,
) -> TransportCredential:
    """Create an ECDSA P-256 self-signed server certificate."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=valid_days))
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName(common_name),
                    x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                    x509.IPAddress(ipaddress.ip_address("::1")),
                ]
            ),
            critical=False,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(private_key, hashes.SHA256())
    )
    logger.info("self_signed_certificate_generated", common_name=common_name, valid_days=valid_days)
    return TransportCredential(certificate=certificate, private_key=private_key)


def load_or_generate(cert_file: str | None, key_file: str | None) -> TransportCredential:
    """Provisioned credential when both files are configured, self-signed otherwise."""
    if cert_file and key_file:
        logger.info("tls_credential_loaded", cert_file=cert_file)
        return TransportCredential.from_pem_files(cert_file, key_file)
    if cert_file or key_file:
        logger.warning("tls_credential_incomplete", cert_file=cert_file, key_file=key_file)
    return generate_self_signed()
