# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Revocation lists - Validity window, signer and serial checks for a single CRL.

from datetime import datetime, timezone
from typing import Optional

from cryptography import x509

from . import tpm_logging
from .errors import (
    CrlExpiredError,
    CrlNotYetValidError,
    ParseError,
    UnknownAuthorityError,
)

logger = tpm_logging.get_logger(__name__)


class RevocationList:
    """
    RevocationList
    Description: Wraps one X.509 CRL downloaded for a single verification run
    Answers whether the CRL is usable right now, who signed it, and whether
    a certificate serial number is listed in it
    """

    def __init__(self, crl: x509.CertificateRevocationList):
        if crl is None:
            raise ValueError("CRL cannot be None")
        self._crl = crl

    @classmethod
    def from_der(cls, data: bytes) -> "RevocationList":
        """
        Parse a DER-encoded CRL.

        Raises:
            ParseError: If the data is not a valid DER CRL
        """
        try:
            return cls(x509.load_der_x509_crl(data))
        except ValueError as e:
            raise ParseError(f"failed parsing CRL: {e}") from e

    @property
    def crl(self) -> x509.CertificateRevocationList:
        return self._crl

    @property
    def issuer(self) -> x509.Name:
        return self._crl.issuer

    @property
    def this_update(self) -> datetime:
        return self._crl.last_update_utc

    @property
    def next_update(self) -> Optional[datetime]:
        return self._crl.next_update_utc

    def __len__(self) -> int:
        return len(self._crl)

    def validate(self, now: Optional[datetime] = None) -> None:
        """
        Check that now falls within [thisUpdate, nextUpdate].

        A CRL without a nextUpdate field has no defined window and is
        treated as expired.

        Args:
            now: Reference time (default: current UTC time)

        Raises:
            CrlExpiredError: If now is after nextUpdate
            CrlNotYetValidError: If now is before thisUpdate
        """
        now = now or datetime.now(timezone.utc)

        if self.next_update is None or now > self.next_update:
            raise CrlExpiredError(
                f"CRL is expired (next update field is {self.next_update})"
            )
        if now < self.this_update:
            raise CrlNotYetValidError(
                f"CRL is not yet valid (this update field is {self.this_update})"
            )

    def verify_signed_by(self, *signers: x509.Certificate) -> None:
        """
        Accept the CRL if its signature validates against one of the signers.

        Signers whose key usage excludes CRL signing are ignored.

        Raises:
            UnknownAuthorityError: If no signer validates the signature
        """
        for signer in signers:
            try:
                key_usage = signer.extensions.get_extension_for_class(x509.KeyUsage)
                if not key_usage.value.crl_sign:
                    logger.debug(
                        f"Skipping CRL signer candidate without cRLSign: {signer.subject.rfc4514_string()}"
                    )
                    continue
            except x509.ExtensionNotFound:
                pass

            try:
                if self._crl.is_signature_valid(signer.public_key()):
                    logger.debug(
                        f"CRL signature verified by {signer.subject.rfc4514_string()}"
                    )
                    return
            except TypeError as e:
                logger.debug(f"Unsupported CRL signer key: {e}")

        raise UnknownAuthorityError()

    def is_revoked(self, cert: x509.Certificate) -> bool:
        """
        Check whether the certificate's serial number is listed in this CRL.

        Absence only means "not revoked as of this CRL", not "never revoked".
        """
        cert_serial = cert.serial_number
        for revoked_cert in self._crl:
            if revoked_cert.serial_number != cert_serial:
                continue

            logger.error(
                f"Certificate with serial {cert_serial:#x} is REVOKED. Revocation date: {revoked_cert.revocation_date_utc}"
            )
            try:
                reason_ext = revoked_cert.extensions.get_extension_for_class(x509.CRLReason)
                logger.error(f"  Revocation reason: {reason_ext.value.reason}")
            except x509.ExtensionNotFound:
                pass
            return True

        logger.debug(f"Certificate with serial {cert_serial:#x} is NOT revoked.")
        return False
