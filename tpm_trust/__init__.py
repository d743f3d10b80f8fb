# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# tpm_trust - Establish trust in a TPM from its Endorsement Key certificate.

"""
tpm_trust - Establish trust in a TPM from its Endorsement Key certificate

This package locates the EK certificate of a TPM, downloads its issuer
certificates and CRLs, and verifies it against a bundle of TPM
manufacturer root certificates.
"""

# Trust bundles
from .bundle import CertificateChainError, LocalTrustedBundle, TrustedBundle

# Certificate helpers
from .certs import (
    TcgOid,
    find_key_type,
    get_crl_urls,
    get_issuer_urls,
    has_ek_usage,
    is_ca,
    parse_ek_certificate,
    parse_tpm_attributes,
    validate_certificate_dates,
    verify_certificate,
)

# Revocation lists
from .crl import RevocationList

# EK discovery
from .ek import (
    EkCertTemplate,
    EKResponse,
    EndorsementKey,
    KeyAlgorithm,
    Manufacturer,
    TpmInfo,
    TpmSession,
    get_ek_certificate,
    open_session,
    search,
)

# Errors
from .errors import (
    CannotBeCAError,
    CertificateRevokedError,
    CrlExpiredError,
    CrlNotYetValidError,
    CrlValidityError,
    EkCertNotFoundError,
    FetchCeilingExceededError,
    FetcherDisabledError,
    HttpStatusError,
    KeyGenerationError,
    MissingEKUsageError,
    MissingIssuerURLError,
    NoCertificateAvailableError,
    ParseError,
    StructuralRejectionError,
    TpmError,
    TpmTrustError,
    TransportError,
    UnknownAuthorityError,
    UnsupportedSchemeError,
    UntrustedCertificateError,
)

# Downloads
from .fetch import Fetcher, create_session

# Privilege elevation
from .privilege import (
    Elevator,
    ElevationError,
    LinuxElevator,
    NoopElevator,
    WindowsElevator,
    get_elevator,
)

# Logging utilities
from .tpm_logging import (
    get_logger,
    log_certificate_info,
    log_duration,
    log_network_request,
    log_verification_step,
    setup_cli_logging,
    setup_logging,
)

# tpm2-tools backed TPM session
from .tpm2_tools import Tpm2ToolsSession

# EK validation
from .validate import CheckConfig, EKChecker, EKCheckerConfig

__version__ = "0.1.0"

__all__ = [
    # Core classes
    "EKChecker",
    "EKCheckerConfig",
    "CheckConfig",
    "Fetcher",
    "RevocationList",
    "TrustedBundle",
    "LocalTrustedBundle",
    "TpmSession",
    "Tpm2ToolsSession",
    # EK discovery
    "EkCertTemplate",
    "EKResponse",
    "EndorsementKey",
    "KeyAlgorithm",
    "Manufacturer",
    "TpmInfo",
    "get_ek_certificate",
    "open_session",
    "search",
    # Certificate helpers
    "TcgOid",
    "find_key_type",
    "get_crl_urls",
    "get_issuer_urls",
    "has_ek_usage",
    "is_ca",
    "parse_ek_certificate",
    "parse_tpm_attributes",
    "validate_certificate_dates",
    "verify_certificate",
    "create_session",
    # Privilege elevation
    "Elevator",
    "ElevationError",
    "LinuxElevator",
    "NoopElevator",
    "WindowsElevator",
    "get_elevator",
    # Errors
    "CannotBeCAError",
    "CertificateChainError",
    "CertificateRevokedError",
    "CrlExpiredError",
    "CrlNotYetValidError",
    "CrlValidityError",
    "EkCertNotFoundError",
    "FetchCeilingExceededError",
    "FetcherDisabledError",
    "HttpStatusError",
    "KeyGenerationError",
    "MissingEKUsageError",
    "MissingIssuerURLError",
    "NoCertificateAvailableError",
    "ParseError",
    "StructuralRejectionError",
    "TpmError",
    "TpmTrustError",
    "TransportError",
    "UnknownAuthorityError",
    "UnsupportedSchemeError",
    "UntrustedCertificateError",
    # Logging utilities
    "get_logger",
    "setup_cli_logging",
    "setup_logging",
    "log_verification_step",
    "log_certificate_info",
    "log_network_request",
    "log_duration",
]
