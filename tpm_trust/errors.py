# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Exceptions raised while locating and validating TPM EK certificates.

from typing import Optional


class TpmTrustError(Exception):
    """Base class for all tpm_trust errors."""

    pass


# TPM access and EK discovery


class TpmError(TpmTrustError):
    """Raised when the TPM cannot be opened, queried or closed."""

    pass


class NoCertificateAvailableError(TpmTrustError):
    """Raised when no EK certificate exists in the TPM NV indices."""

    pass


class KeyGenerationError(TpmTrustError):
    """Raised when the EK key pair cannot be generated or bound to its certificate."""

    pass


class EkCertNotFoundError(KeyGenerationError):
    """Raised when no EK certificate template exists for the requested key algorithm."""

    pass


# Network retrieval


class TransportError(TpmTrustError):
    """Raised when a download fails (connection error, timeout, bad status)."""

    pass


class HttpStatusError(TransportError):
    """Raised when the server answers with anything other than HTTP 200."""

    def __init__(self, url: str, status_code: int):
        self.url = url
        self.status_code = status_code
        super().__init__(f"http request to {url!r} failed with status {status_code}")


class FetcherDisabledError(TransportError):
    """Raised when a mandatory download is requested from a disabled fetcher."""

    pass


class ParseError(TpmTrustError):
    """Raised when downloaded bytes are not a valid certificate or CRL."""

    pass


class UnsupportedSchemeError(TpmTrustError):
    """Raised for distribution point URLs that are not http or https."""

    def __init__(self, url: str, scheme: str):
        self.url = url
        self.scheme = scheme
        super().__init__(f"unsupported scheme {scheme!r} for {url!r}")


# Certificate checks


class StructuralRejectionError(TpmTrustError):
    """Raised when the EK certificate fails a structural pre-check."""

    pass


class CannotBeCAError(StructuralRejectionError):
    def __init__(self):
        super().__init__("EK certificate cannot be a CA certificate")


class MissingIssuerURLError(StructuralRejectionError):
    def __init__(self):
        super().__init__(
            "EK certificate does not contain AIA extension with issuing certificate URL"
        )


class FetchCeilingExceededError(StructuralRejectionError):
    def __init__(self, kind: str, count: int, maximum: int):
        self.kind = kind
        self.count = count
        self.maximum = maximum
        super().__init__(
            f"number of {kind} ({count}) bigger than the maximum allowed number ({maximum}) of downloads"
        )


class MissingEKUsageError(StructuralRejectionError):
    def __init__(self):
        super().__init__(
            "EK certificate does not contain the required EK OID in Extended Key Usage"
        )


class CertificateRevokedError(TpmTrustError):
    """Raised when a CRL lists the EK certificate serial number."""

    def __init__(self, serial_number: int, url: Optional[str] = None):
        self.serial_number = serial_number
        self.url = url
        msg = f"certificate is revoked (serial {serial_number:#x})"
        if url:
            msg += f" according to {url}"
        super().__init__(msg)


class CrlValidityError(TpmTrustError):
    """Raised when a CRL is used outside of its thisUpdate/nextUpdate window."""

    pass


class CrlExpiredError(CrlValidityError):
    pass


class CrlNotYetValidError(CrlValidityError):
    pass


class UnknownAuthorityError(TpmTrustError):
    """Raised when a CRL signature does not validate against any candidate signer."""

    def __init__(self, message: str = "CRL signed by unknown authority"):
        super().__init__(message)


class UntrustedCertificateError(TpmTrustError):
    """Raised when the trust bundle rejects the EK certificate."""

    def __init__(self, reason: Exception):
        self.reason = reason
        super().__init__(f"EK certificate trust could not be established: {reason}")
