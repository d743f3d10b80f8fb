# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# EK validation - Structural checks, revocation and trust bundle verification of EK certificates.

"""
EK certificate validation.

EKChecker.check() answers whether an EK certificate can be trusted. The
checks run in a fixed order and the first failure ends the run:

1. Structural pre-checks on the certificate itself (no network).
2. Download of every issuer certificate named in the AIA extension.
3. Revocation check against every CRL distribution point, the CRLs being
   verified against the issuers downloaded in step 2.
4. Chain verification against the manufacturers trust bundle.
"""

from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlparse

from cryptography import x509

from . import tpm_logging
from .bundle import TrustedBundle
from .certs import (
    get_crl_urls,
    get_issuer_urls,
    get_unhandled_critical_extensions,
    has_ek_usage,
    is_ca,
    is_self_signed,
)
from .errors import (
    CannotBeCAError,
    CertificateRevokedError,
    FetchCeilingExceededError,
    MissingEKUsageError,
    MissingIssuerURLError,
    StructuralRejectionError,
    UnsupportedSchemeError,
    UntrustedCertificateError,
)
from .fetch import Fetcher

logger = tpm_logging.get_logger(__name__)

SUPPORTED_SCHEMES = ("http", "https")

DEFAULT_TIMEOUT = 5.0


@dataclass
class EKCheckerConfig:
    """
    EKCheckerConfig
    Description: Collaborators and limits of an EKChecker
    """

    trusted_bundle: TrustedBundle
    fetcher: Optional[Fetcher] = None
    timeout: float = DEFAULT_TIMEOUT  # Per-download timeout applied to the fetcher

    def __post_init__(self):
        if self.trusted_bundle is None:
            raise ValueError("trusted_bundle must be provided")
        if self.fetcher is None:
            self.fetcher = Fetcher()
        if self.timeout:
            self.fetcher.timeout = self.timeout


@dataclass(frozen=True)
class CheckConfig:
    """Inputs of a single EKChecker.check() run."""

    ek: x509.Certificate
    skip_revocation_check: bool = False

    def __post_init__(self):
        if self.ek is None:
            raise ValueError("EK certificate must be provided")


def parse_url(url: str) -> str:
    """
    Validate a distribution point URL.

    Raises:
        UnsupportedSchemeError: If the scheme is not http or https
        StructuralRejectionError: If the URL cannot be parsed
    """
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise StructuralRejectionError(f"failed to parse URL {url!r}: {e}") from e

    if parsed.scheme.lower() not in SUPPORTED_SCHEMES:
        raise UnsupportedSchemeError(url, parsed.scheme)
    return url


def prepare_urls(urls: List[str]) -> List[str]:
    """Keep the http(s) URLs, in order; other schemes are skipped with a warning."""
    prepared = []
    for url in urls:
        try:
            prepared.append(parse_url(url))
        except UnsupportedSchemeError as e:
            logger.warning(
                f"unsupported scheme: skipping - scheme: {e.scheme or '<none>'}, endpoint: {e.url}"
            )
    return prepared


def filter_intermediates(pool: List[x509.Certificate]) -> List[x509.Certificate]:
    """Return the intermediate CA certificates of pool (CA, not self-signed, can sign certificates), de-duplicated."""
    intermediates = []
    for cert in pool:
        if not is_ca(cert) or is_self_signed(cert):
            continue
        try:
            key_usage = cert.extensions.get_extension_for_class(x509.KeyUsage)
        except x509.ExtensionNotFound:
            continue
        if not key_usage.value.key_cert_sign:
            continue
        if cert not in intermediates:
            intermediates.append(cert)
    return intermediates


class EKChecker:
    """
    EKChecker - Decides whether an EK certificate is trusted

    Every downloaded issuer and CRL belongs to a single check() call and is
    dropped when it returns.
    """

    def __init__(self, config: EKCheckerConfig):
        self.fetcher = config.fetcher
        self.trusted_bundle = config.trusted_bundle

    def _precheck(self, cfg: CheckConfig) -> bool:
        """
        Run the structural pre-checks, in order.

        Returns:
            bool: Whether revocation must be skipped for this run

        Raises:
            StructuralRejectionError: On the first failing check
        """
        ek = cfg.ek
        issuer_urls = get_issuer_urls(ek)
        crl_urls = get_crl_urls(ek)
        max_downloads = self.fetcher.max_downloads
        skip_revocation = cfg.skip_revocation_check

        if is_ca(ek):
            raise CannotBeCAError()
        if not issuer_urls:
            raise MissingIssuerURLError()
        if len(issuer_urls) > max_downloads:
            raise FetchCeilingExceededError("Issuers", len(issuer_urls), max_downloads)
        if not skip_revocation and len(crl_urls) > max_downloads:
            raise FetchCeilingExceededError("CRLs", len(crl_urls), max_downloads)

        if not crl_urls:
            if not skip_revocation:
                tpm_logging.log_verification_step(
                    "missing CRL DP", "skipped", "revocation check will be skipped"
                )
            skip_revocation = True

        unhandled = get_unhandled_critical_extensions(ek)
        if unhandled:
            logger.debug(f"found: unhandled critical extensions - {', '.join(unhandled)}")

        if not has_ek_usage(ek):
            raise MissingEKUsageError()
        return skip_revocation

    def get_issuer_certificates(self, ek: x509.Certificate) -> List[x509.Certificate]:
        """
        Download every issuer certificate named by the EK's AIA extension.

        All downloads must succeed; the first failure is raised as is.
        """
        issuers = []
        for url in prepare_urls(get_issuer_urls(ek)):
            issuer = self.fetcher.fetch_certificate(url)
            tpm_logging.log_certificate_info(
                "Issuer", issuer.subject.rfc4514_string(), issuer.issuer.rfc4514_string()
            )
            issuers.append(issuer)
        return issuers

    def check_revocation(
        self, ek: x509.Certificate, issuers: List[x509.Certificate]
    ) -> None:
        """
        Check the EK against every CRL distribution point.

        Raises:
            CertificateRevokedError: On the first CRL listing the EK serial
            CrlValidityError: If a CRL is expired or not yet valid
            UnknownAuthorityError: If a CRL is not signed by a downloaded issuer
        """
        for url in prepare_urls(get_crl_urls(ek)):
            crl = self.fetcher.fetch_crl(url)
            if crl is None:
                logger.warning(f"no CRL retrieved from {url}, cannot check revocation against it")
                continue

            crl.validate()
            crl.verify_signed_by(*issuers)
            if crl.is_revoked(ek):
                raise CertificateRevokedError(ek.serial_number, url)
            logger.debug(f"certificate not listed in CRL {url}")

    def check(self, cfg: CheckConfig) -> None:
        """
        Decide whether the EK certificate is trusted.

        Args:
            cfg: EK certificate and revocation option

        Raises:
            StructuralRejectionError: If the certificate fails a pre-check
            TransportError: If a mandatory download fails
            ParseError: If a downloaded certificate or CRL is malformed
            CrlValidityError: If a CRL is outside its validity window
            UnknownAuthorityError: If a CRL is not signed by a downloaded issuer
            CertificateRevokedError: If the certificate is revoked
            UntrustedCertificateError: If the trust bundle rejects the certificate
        """
        skip_revocation = self._precheck(cfg)

        issuers = self.get_issuer_certificates(cfg.ek)

        if skip_revocation:
            logger.debug("revocation check skipped")
        else:
            self.check_revocation(cfg.ek, issuers)
            tpm_logging.log_verification_step("revocation", "pass")

        # Issuers are resolved one hop from the EK; the rest of the chain must be in the bundle
        for issuer in filter_intermediates(issuers):
            if not self.trusted_bundle.contains(issuer):
                logger.debug(
                    f"missing cert in trusted bundle - subject: {issuer.subject.rfc4514_string()}"
                )

        try:
            self.trusted_bundle.verify_certificate(cfg.ek)
        except Exception as e:
            logger.debug(f"certificate verification error: {e}")
            tpm_logging.log_verification_step("certificate", "untrusted")
            raise UntrustedCertificateError(e) from e

        tpm_logging.log_verification_step("certificate", "trusted")
