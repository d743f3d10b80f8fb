# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Certificate handling - X.509 parsing and signature helpers for TPM EK certificates.

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509.oid import (
    AuthorityInformationAccessOID,
    ExtensionOID,
    ObjectIdentifier,
)
from pyasn1.codec.der import decoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import univ

from . import tpm_logging
from .errors import ParseError

logger = tpm_logging.get_logger(__name__)


class TcgOid(Enum):
    """TCG OIDs used in EK certificates (TCG EK Credential Profile 2.6)"""

    # Extended Key Usage marking an EK certificate (section 3.2.16)
    EK_CERTIFICATE = ObjectIdentifier("2.23.133.8.1")

    # Subject alternative name attributes
    TPM_MANUFACTURER = ObjectIdentifier("2.23.133.2.1")
    TPM_MODEL = ObjectIdentifier("2.23.133.2.2")
    TPM_VERSION = ObjectIdentifier("2.23.133.2.3")

    # Subject directory attributes
    TPM_SPECIFICATION = ObjectIdentifier("2.23.133.2.16")

    def __str__(self):
        return self.value.dotted_string


SUBJECT_DIRECTORY_ATTRIBUTES = ObjectIdentifier("2.5.29.9")

# NV indices may prefix the DER certificate with this tag and a 16-bit length
TCG_CERT_HEADER_TAG = b"\x10\x01"

CURVE_NAMES = {
    "secp256r1": "nist-p256",
    "secp384r1": "nist-p384",
    "secp521r1": "nist-p521",
}


def _der_length(data: bytes) -> int:
    """Return the total length of the DER element at the start of data."""
    if len(data) < 2 or data[0] != 0x30:
        raise ParseError("data does not start with a DER SEQUENCE")
    first = data[1]
    if first < 0x80:
        return 2 + first
    num_octets = first & 0x7F
    if num_octets == 0 or num_octets > 4 or len(data) < 2 + num_octets:
        raise ParseError("invalid DER length encoding")
    return 2 + num_octets + int.from_bytes(data[2 : 2 + num_octets], "big")


def parse_ek_certificate(data: bytes) -> x509.Certificate:
    """
    Parse an EK certificate as read from a TPM NV index.

    NV contents are not always a bare DER certificate: some vendors prepend
    the TCG PC Client header (0x10 0x01 followed by a big-endian length) and
    most pad the index with trailing bytes. Both are removed before parsing.

    Args:
        data: Raw NV index contents

    Returns:
        x509.Certificate: Parsed EK certificate

    Raises:
        ParseError: If no certificate can be parsed from the data
    """
    if len(data) > 4 and data[:2] == TCG_CERT_HEADER_TAG:
        cert_len = int.from_bytes(data[2:4], "big")
        logger.debug(f"Stripping TCG certificate header (declared length {cert_len})")
        data = data[4 : 4 + cert_len]

    total = _der_length(data)
    if total > len(data):
        raise ParseError(
            f"certificate is truncated: DER length {total}, got {len(data)} bytes"
        )
    if total < len(data):
        logger.debug(f"Ignoring {len(data) - total} trailing bytes after certificate")
        data = data[:total]

    try:
        return x509.load_der_x509_certificate(data)
    except ValueError as e:
        raise ParseError(f"failed parsing EK certificate: {e}") from e


def is_ca(cert: x509.Certificate) -> bool:
    """Return True if the certificate's basic constraints mark it as a CA."""
    try:
        basic_constraints = cert.extensions.get_extension_for_class(
            x509.BasicConstraints
        )
    except x509.ExtensionNotFound:
        return False
    return basic_constraints.value.ca


def get_issuer_urls(cert: x509.Certificate) -> List[str]:
    """
    Get the CA Issuers URLs from the Authority Information Access extension.

    Args:
        cert: Certificate to inspect

    Returns:
        List of URL strings, in the order they appear (empty if absent)
    """
    try:
        aia = cert.extensions.get_extension_for_oid(
            ExtensionOID.AUTHORITY_INFORMATION_ACCESS
        )
    except x509.ExtensionNotFound:
        return []

    return [
        description.access_location.value
        for description in aia.value
        if description.access_method == AuthorityInformationAccessOID.CA_ISSUERS
        and isinstance(description.access_location, x509.UniformResourceIdentifier)
    ]


def get_crl_urls(cert: x509.Certificate) -> List[str]:
    """
    Get every URI listed in the CRL Distribution Points extension.

    Args:
        cert: Certificate to inspect

    Returns:
        List of URL strings, in the order they appear (empty if absent)
    """
    try:
        cdp = cert.extensions.get_extension_for_oid(
            ExtensionOID.CRL_DISTRIBUTION_POINTS
        )
    except x509.ExtensionNotFound:
        return []

    urls = []
    for distribution_point in cdp.value:
        if not distribution_point.full_name:
            continue
        for general_name in distribution_point.full_name:
            if isinstance(general_name, x509.UniformResourceIdentifier):
                urls.append(general_name.value)
    return urls


def has_ek_usage(cert: x509.Certificate) -> bool:
    """Return True if the Extended Key Usage extension contains the EK OID."""
    try:
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage)
    except x509.ExtensionNotFound:
        return False
    return TcgOid.EK_CERTIFICATE.value in eku.value


def get_unhandled_critical_extensions(cert: x509.Certificate) -> List[str]:
    """Return the dotted OIDs of critical extensions cryptography does not understand."""
    return [
        ext.oid.dotted_string
        for ext in cert.extensions
        if ext.critical and isinstance(ext.value, x509.UnrecognizedExtension)
    ]


def find_key_type(public_key) -> str:
    """
    Describe a public key for display, e.g. "rsa2048" or "ecc-nist-p256".

    Returns "unknown" for unsupported key types.
    """
    if isinstance(public_key, rsa.RSAPublicKey):
        return f"rsa{public_key.key_size}"
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return f"ecc-{CURVE_NAMES.get(public_key.curve.name, 'unknown')}"
    return "unknown"


def _decode_subject_directory_attributes(data: bytes) -> Dict[str, object]:
    """Decode the TPM specification from a subject directory attributes value."""
    attributes = {}
    decoded, _ = decoder.decode(data)

    # SEQUENCE OF Attribute { type OID, values SET OF ANY }
    for idx in range(len(decoded)):
        attribute = decoded[idx]
        if len(attribute) < 2:
            continue
        oid_str = str(attribute[0])
        values = attribute[1]
        logger.debug(f"Found subject directory attribute: {oid_str}")

        if oid_str != TcgOid.TPM_SPECIFICATION.value.dotted_string:
            continue
        for value_idx in range(len(values)):
            value = values[value_idx]
            # TPMSpecification ::= SEQUENCE { family UTF8String, level INTEGER, revision INTEGER }
            if isinstance(value, (univ.Sequence, univ.SequenceOf)) and len(value) >= 3:
                attributes["TPM_SPECIFICATION"] = {
                    "family": str(value[0]),
                    "level": int(value[1]),
                    "revision": int(value[2]),
                }
    return attributes


def parse_tpm_attributes(cert: x509.Certificate) -> Dict[str, object]:
    """
    Parse TPM identification attributes from an EK certificate.

    Reads the TPM manufacturer, model and version from the subject
    alternative name directory name, and the TPM specification
    (family, level, revision) from the subject directory attributes.
    Missing or malformed attributes are left out.

    Args:
        cert: EK certificate to parse

    Returns:
        dict: Keys are TcgOid enum names
    """
    oid_to_name = {tcg_oid.value: tcg_oid.name for tcg_oid in TcgOid}
    attributes = {}

    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        for name in san.value.get_values_for_type(x509.DirectoryName):
            for attribute in name:
                key_name = oid_to_name.get(attribute.oid)
                if key_name:
                    attributes[key_name] = attribute.value
                    logger.debug(f"  {key_name} = {attribute.value}")
    except x509.ExtensionNotFound:
        logger.debug("Subject alternative name not found in certificate")

    try:
        sda = cert.extensions.get_extension_for_oid(SUBJECT_DIRECTORY_ATTRIBUTES)
        attributes.update(_decode_subject_directory_attributes(sda.value.value))
    except x509.ExtensionNotFound:
        logger.debug("Subject directory attributes not found in certificate")
    except (PyAsn1Error, ValueError, TypeError) as e:
        logger.debug(f"Could not decode subject directory attributes: {e}")

    return attributes


def validate_certificate_dates(
    cert: x509.Certificate, now: Optional[datetime] = None
) -> bool:
    """
    Check if a certificate is currently valid (not expired, not yet valid).

    Args:
        cert: Certificate to validate
        now: Reference time (default: current UTC time)

    Returns:
        bool: True if certificate is valid, False otherwise
    """
    now = now or datetime.now(timezone.utc)
    return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc


def verify_certificate(cert: x509.Certificate, key) -> bool:
    """
    Verify a certificate's signature using a public key.

    Validates that the certificate was signed by the provided key,
    supporting both EC and RSA (PKCS#1 v1.5 and PSS) signatures.

    Args:
        cert: Certificate object to verify
        key: Public key to use for verification

    Returns:
        bool: True if verification succeeds, False otherwise
    """
    try:
        if isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(
                cert.signature,
                cert.tbs_certificate_bytes,
                ec.ECDSA(cert.signature_hash_algorithm),
            )
        elif isinstance(key, rsa.RSAPublicKey):
            rsa_padding = cert.signature_algorithm_parameters
            if not isinstance(rsa_padding, (padding.PKCS1v15, padding.PSS)):
                rsa_padding = padding.PKCS1v15()
            key.verify(
                cert.signature,
                cert.tbs_certificate_bytes,
                rsa_padding,
                cert.signature_hash_algorithm,
            )
        else:
            logger.debug(f"Unsupported key type: {type(key).__name__}")
            return False
    except InvalidSignature:
        logger.debug(f"Invalid certificate signature for {cert.subject.rfc4514_string()}")
        return False
    except (ValueError, TypeError) as e:
        logger.debug(f"Unexpected error verifying certificate: {e}")
        return False
    return True


def is_self_signed(cert: x509.Certificate) -> bool:
    """Return True if subject equals issuer and the certificate verifies with its own key."""
    if cert.subject != cert.issuer:
        return False
    return verify_certificate(cert, cert.public_key())


def is_issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    """Return True if issuer's subject matches cert's issuer and its key signed cert."""
    if cert.issuer != issuer.subject:
        return False
    return verify_certificate(cert, issuer.public_key())
