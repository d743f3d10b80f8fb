# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Trust bundles - Manufacturer root and intermediate certificates used as trust anchors.

import abc
import os
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from . import tpm_logging
from .certs import is_issued_by, is_self_signed, validate_certificate_dates

logger = tpm_logging.get_logger(__name__)

MAX_CHAIN_DEPTH = 8

CERT_EXTENSIONS = (".pem", ".crt", ".cer", ".der")


class CertificateChainError(Exception):
    """Raised when a certificate does not chain to a root of the bundle."""

    pass


class TrustedBundle(abc.ABC):
    """
    TrustedBundle - Manufacturer trust anchors

    The EK checker only consumes this interface; fetching and refreshing
    the underlying certificates is the bundle's own business.
    """

    @abc.abstractmethod
    def verify_certificate(self, cert: x509.Certificate) -> None:
        """
        Verify that cert chains to a root certificate of the bundle.

        Raises:
            Exception: Describing why the chain could not be established
        """

    @abc.abstractmethod
    def contains(self, cert: x509.Certificate) -> bool:
        """Return True if cert is one of the bundle's certificates."""

    @abc.abstractmethod
    def vendors(self) -> Set[str]:
        """Return the TPM vendor IDs covered by the bundle (e.g. "IFX")."""


def load_certificates(data: bytes) -> List[x509.Certificate]:
    """Load one DER certificate or any number of concatenated PEM certificates."""
    if b"-----BEGIN CERTIFICATE-----" in data:
        return x509.load_pem_x509_certificates(data)
    return [x509.load_der_x509_certificate(data)]


class LocalTrustedBundle(TrustedBundle):
    """
    LocalTrustedBundle - Trust anchors read from local files

    Certificates are grouped by TPM vendor ID. Self-signed certificates act
    as roots, the others as intermediates that chains may go through.
    """

    def __init__(self, certificates: Dict[str, Iterable[x509.Certificate]]):
        self._by_vendor: Dict[str, List[x509.Certificate]] = {
            vendor: list(certs) for vendor, certs in certificates.items()
        }
        self._der = {
            cert.public_bytes(serialization.Encoding.DER)
            for certs in self._by_vendor.values()
            for cert in certs
        }

    @classmethod
    def from_directory(cls, path: str) -> "LocalTrustedBundle":
        """
        Load a bundle laid out as one sub-directory per vendor ID.

        Example:
            bundle/IFX/infineon-root.pem
            bundle/IFX/infineon-ecc-intermediate.crt
            bundle/STM/stm-root.der

        Raises:
            FileNotFoundError: If path is not a directory
            ValueError: If a certificate file cannot be parsed
        """
        if not os.path.isdir(path):
            raise FileNotFoundError(f"Trust bundle directory not found: {path}")

        certificates = {}
        for vendor in sorted(os.listdir(path)):
            vendor_dir = os.path.join(path, vendor)
            if not os.path.isdir(vendor_dir):
                continue

            vendor_certs = []
            for filename in sorted(os.listdir(vendor_dir)):
                if not filename.lower().endswith(CERT_EXTENSIONS):
                    continue
                filepath = os.path.join(vendor_dir, filename)
                with open(filepath, "rb") as f:
                    try:
                        vendor_certs.extend(load_certificates(f.read()))
                    except ValueError as e:
                        raise ValueError(f"Invalid certificate file {filepath}: {e}") from e

            if vendor_certs:
                certificates[vendor] = vendor_certs
                logger.debug(f"Loaded {len(vendor_certs)} certificate(s) for vendor {vendor}")

        logger.info(f"Loaded trust bundle with {len(certificates)} vendor(s) from {path}")
        return cls(certificates)

    @property
    def certificates(self) -> List[x509.Certificate]:
        return [cert for certs in self._by_vendor.values() for cert in certs]

    def vendors(self) -> Set[str]:
        return set(self._by_vendor)

    def contains(self, cert: x509.Certificate) -> bool:
        return cert.public_bytes(serialization.Encoding.DER) in self._der

    def _find_issuer(self, cert: x509.Certificate) -> Optional[x509.Certificate]:
        for candidate in self.certificates:
            if candidate == cert:
                continue
            if is_issued_by(cert, candidate):
                return candidate
        return None

    def verify_certificate(
        self, cert: x509.Certificate, now: Optional[datetime] = None
    ) -> None:
        """
        Walk issuer links from cert to a self-signed root of the bundle.

        Every certificate on the path must be within its validity period.

        Raises:
            CertificateChainError: If no valid path to a bundle root exists
        """
        now = now or datetime.now(timezone.utc)
        current = cert

        for _ in range(MAX_CHAIN_DEPTH):
            if not validate_certificate_dates(current, now):
                raise CertificateChainError(
                    f"certificate {current.subject.rfc4514_string()!r} is outside its validity period "
                    f"({current.not_valid_before_utc} - {current.not_valid_after_utc})"
                )

            if current is not cert and is_self_signed(current):
                logger.debug(f"Reached root {current.subject.rfc4514_string()}")
                return

            issuer = self._find_issuer(current)
            if issuer is None:
                raise CertificateChainError(
                    f"certificate signed by unknown authority {current.issuer.rfc4514_string()!r}"
                )
            logger.debug(
                f"{current.subject.rfc4514_string() or '<empty subject>'} issued by {issuer.subject.rfc4514_string()}"
            )
            current = issuer

        raise CertificateChainError(f"certificate chain longer than {MAX_CHAIN_DEPTH}")
