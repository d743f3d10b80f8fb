# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# EK discovery - Locate the Endorsement Key certificate held by a TPM.

"""
Endorsement Key (EK) certificate discovery.

The search is tuned for speed because it runs in front of a user:

1. List the EK certificates stored in the TPM's well-known NV indices.
2. Use a persisted EK handle when one exists.
3. Otherwise regenerate the EK key pair, ECC first (fast key generation)
   and RSA only when no ECC certificate is provisioned.

Step 3 makes the TPM generate key material, so reading the EK is not
side-effect free on first run.
"""

import abc
import contextlib
import enum
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from cryptography import x509

from . import tpm_logging
from .certs import find_key_type, parse_tpm_attributes
from .errors import (
    EkCertNotFoundError,
    NoCertificateAvailableError,
    TpmError,
)

logger = tpm_logging.get_logger(__name__)


class KeyAlgorithm(enum.Enum):
    """EK key algorithms"""

    RSA = "rsa"
    ECC = "ecc"


@dataclass(frozen=True)
class Manufacturer:
    """TPM manufacturer identity as reported by TPM2_PT_MANUFACTURER."""

    ascii: str  # Vendor ID, e.g. "IFX"
    name: str  # Human readable name, e.g. "Infineon"

    def __str__(self):
        return f"{self.name} ({self.ascii})"


@dataclass(frozen=True)
class TpmInfo:
    manufacturer: Manufacturer
    firmware_version: Optional[str] = None


@dataclass(frozen=True)
class EkCertTemplate:
    """
    EkCertTemplate
    Description: An EK certificate slot in TPM NV memory and the key template
    that regenerates the matching EK key pair
    """

    nv_index: int  # NV index holding the certificate
    algorithm: KeyAlgorithm
    key_size: int = 0  # RSA modulus size in bits
    curve: Optional[str] = None  # ECC curve, e.g. "nist-p256"
    handle: Optional[int] = None  # Persistent handle when the EK is already loaded

    @property
    def key_type(self) -> str:
        if self.algorithm == KeyAlgorithm.RSA:
            return f"rsa{self.key_size}"
        return f"ecc-{self.curve or 'unknown'}"


@dataclass(frozen=True)
class EndorsementKey:
    certificate: x509.Certificate
    public_key: object
    template: EkCertTemplate


@dataclass(frozen=True)
class EKResponse:
    certificate: x509.Certificate
    manufacturer: Manufacturer


class TpmSession(abc.ABC):
    """
    TpmSession - Access to one TPM for EK discovery

    Implementations are opened and closed through open_session(), which
    guarantees close() runs on every exit path.
    """

    @abc.abstractmethod
    def open(self) -> None:
        """Open the connection to the TPM."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the connection to the TPM."""

    @abc.abstractmethod
    def info(self) -> TpmInfo:
        """Read the TPM manufacturer and firmware information."""

    @abc.abstractmethod
    def search_available_certificates(self) -> List[EkCertTemplate]:
        """List the EK certificate templates whose NV index is defined."""

    @abc.abstractmethod
    def persisted_eks(self) -> List[EkCertTemplate]:
        """List the templates of EK keys already persisted in the TPM."""

    @abc.abstractmethod
    def ek(self, template: EkCertTemplate) -> EndorsementKey:
        """
        Materialize the EK for a template: read its certificate and load
        (or generate, for non-persisted templates) the matching key pair.

        Raises:
            EkCertNotFoundError: If the template's certificate does not exist
            KeyGenerationError: If the key pair cannot be generated or does
                not match the certificate
        """


@contextlib.contextmanager
def open_session(session: TpmSession) -> Iterator[TpmSession]:
    """
    Open a TPM session for the duration of a with block.

    The session is closed on every exit path. A close failure is raised
    as TpmError when the block succeeded, and only logged when the block
    is already propagating an exception so that the original error wins.
    """
    logger.debug("open connection to TPM")
    try:
        session.open()
    except TpmError:
        raise
    except Exception as e:
        raise TpmError(f"failed to open TPM: {e}") from e

    try:
        yield session
    except BaseException as original:
        logger.debug("closing connection to TPM")
        try:
            session.close()
        except Exception as close_error:
            logger.error(
                f"failed to close TPM: {close_error} (original error: {original})"
            )
        raise

    logger.debug("closing connection to TPM")
    try:
        session.close()
    except Exception as e:
        raise TpmError(f"failed to close TPM: {e}") from e


def _generator_for(
    session: TpmSession,
    algorithm: KeyAlgorithm,
    available_certs: Sequence[EkCertTemplate],
) -> Callable[[], EndorsementKey]:
    def generate() -> EndorsementKey:
        for template in available_certs:
            if template.algorithm == algorithm:
                return session.ek(template)
        raise EkCertNotFoundError(f"no {algorithm.value.upper()} EK certificate found")

    return generate


def _generate_ek(
    session: TpmSession, available_certs: Sequence[EkCertTemplate]
) -> EndorsementKey:
    """
    Generate the EK key pair for the first algorithm with a provisioned certificate.

    Only EkCertNotFoundError moves on to the next algorithm; any other
    failure is raised as is.
    """
    generators: Tuple[Tuple[KeyAlgorithm, Callable[[], EndorsementKey]], ...] = (
        (KeyAlgorithm.ECC, _generator_for(session, KeyAlgorithm.ECC, available_certs)),
        (KeyAlgorithm.RSA, _generator_for(session, KeyAlgorithm.RSA, available_certs)),
    )

    last_error: Optional[EkCertNotFoundError] = None
    for algorithm, generate in generators:
        if algorithm == KeyAlgorithm.RSA:
            logger.debug("no ECC certificate found, trying RSA")
            logger.warning(
                "can take a bit of time... the EK key pair is regenerated in the TPM "
                "to check its binding with the certificate, and RSA key generation is slow"
            )
        try:
            ek = generate()
        except EkCertNotFoundError as e:
            last_error = e
            continue
        logger.debug(f"found {algorithm.value.upper()} certificate")
        return ek

    raise EkCertNotFoundError(f"failed to get any EK cert: {last_error}")


def search(session: TpmSession) -> EndorsementKey:
    """
    Find a usable EK certificate in the TPM.

    Args:
        session: Open TPM session

    Returns:
        EndorsementKey: Selected EK (certificate, public key, template)

    Raises:
        NoCertificateAvailableError: If no EK certificate is stored in NV
        KeyGenerationError: If the EK key pair cannot be materialized
    """
    logger.info("start searching for EK certificates")
    available_certs = session.search_available_certificates()
    if not available_certs:
        raise NoCertificateAvailableError("no EK certificates available in TPM")

    logger.info(f"found {len(available_certs)} EK certificate(s)")
    for template in available_certs:
        logger.info(f"  certificate - kty: {template.key_type}")

    persisted = session.persisted_eks()
    if persisted:
        logger.debug(f"found {len(persisted)} persisted handle(s)")
        ek = session.ek(persisted[0])
    else:
        logger.debug("no persisted handles found")
        logger.debug("must generate associated EK key pair in TPM")
        ek = _generate_ek(session, available_certs)

    logger.info(
        f"select {find_key_type(ek.public_key)} EK certificate - issuer: {ek.certificate.issuer.rfc4514_string()}"
    )
    for name, value in parse_tpm_attributes(ek.certificate).items():
        logger.debug(f"  {name}: {value}")
    return ek


def get_ek_certificate(session: TpmSession) -> EKResponse:
    """
    Read the EK certificate and manufacturer identity from a TPM.

    Opens the session, reads the TPM info, searches for the EK certificate
    and closes the session again, whatever the outcome.

    Args:
        session: Unopened TPM session

    Returns:
        EKResponse: EK certificate and TPM manufacturer
    """
    with open_session(session) as tpm:
        logger.debug("getting TPM info")
        try:
            info = tpm.info()
        except TpmError:
            raise
        except Exception as e:
            raise TpmError(f"failed to get TPM info: {e}") from e
        logger.info(f"manufacturer: {info.manufacturer.name} - id: {info.manufacturer.ascii}")

        ek = search(tpm)
        return EKResponse(certificate=ek.certificate, manufacturer=info.manufacturer)
