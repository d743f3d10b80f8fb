# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Fetch utilities - Retrieve issuer certificates and CRLs named in EK certificates.

import time
from typing import Optional

import requests
from cryptography import x509
from requests.adapters import HTTPAdapter
from urllib3.exceptions import HTTPError as Urllib3HTTPError
from urllib3.exceptions import ReadTimeoutError
from urllib3.util.retry import Retry

from . import tpm_logging
from .crl import RevocationList
from .errors import FetcherDisabledError, HttpStatusError, ParseError, TransportError

logger = tpm_logging.get_logger(__name__)

DEFAULT_MAX_DOWNLOADS = 10
DEFAULT_TIMEOUT = 2.0
DEFAULT_MAX_SIZE = 10 * 1024 * 1024

CHUNK_SIZE = 16 * 1024


def create_session(max_redirects: int = 5) -> requests.Session:
    """
    Create a requests session for PKI downloads.

    Redirects are followed (manufacturer PKI endpoints often redirect http
    to https). Failed requests are never retried.

    Args:
        max_redirects: Maximum number of redirects to follow

    Returns:
        requests.Session: Configured session object
    """
    session = requests.Session()
    session.verify = True

    retry_strategy = Retry(
        total=None,
        connect=0,
        read=0,
        status=0,
        other=0,
        redirect=max_redirects,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update(
        {
            "User-Agent": "TPM-Trust/1.0",
            "Accept": "application/pkix-cert, application/pkix-crl, application/octet-stream, */*",
        }
    )
    return session


class Fetcher:
    """
    Fetcher - Time-limited downloads of CRLs and issuer certificates

    Each call issues a single GET bounded by the configured timeout and
    requires HTTP 200. The fetcher keeps no state between calls, so one
    instance can be reused across URLs.
    """

    def __init__(
        self,
        enabled: bool = True,
        max_downloads: int = DEFAULT_MAX_DOWNLOADS,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        max_size: int = DEFAULT_MAX_SIZE,
    ):
        """
        Args:
            enabled: When False, no request is ever sent
            max_downloads: Maximum number of downloads of each kind per verification run
            timeout: Time limit in seconds for a whole download, body included
            session: requests session to use (default: create_session())
            max_size: Maximum body size in bytes
        """
        if max_downloads < 1:
            raise ValueError(f"max_downloads must be positive, got {max_downloads}")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")

        self.enabled = enabled
        self.max_downloads = max_downloads
        self.timeout = timeout
        self.max_size = max_size
        self.session = session if session is not None else create_session()

    def _timed_out(self, url: str, what: str) -> TransportError:
        return TransportError(f"timed out after {self.timeout}s retrieving {what} from {url!r}")

    def _read_body(self, response, url: str, what: str, deadline: float) -> bytes:
        """
        Read the response body in chunks, stopping at the deadline or size limit.

        read1() returns as soon as some data is available, so a server
        trickling bytes cannot keep the download alive past the deadline.
        """
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self.max_size:
            raise TransportError(
                f"{what} from {url!r} is too large ({declared} bytes, maximum {self.max_size})"
            )

        body = bytearray()
        while True:
            try:
                chunk = response.raw.read1(CHUNK_SIZE, decode_content=True)
            except ReadTimeoutError as e:
                raise self._timed_out(url, what) from e
            except (Urllib3HTTPError, OSError) as e:
                raise TransportError(f"failed retrieving {what} from {url!r}: {e}") from e
            if not chunk:
                return bytes(body)

            body.extend(chunk)
            if len(body) > self.max_size:
                raise TransportError(
                    f"{what} from {url!r} is larger than the maximum of {self.max_size} bytes"
                )
            if time.monotonic() > deadline:
                raise self._timed_out(url, what)

    def _download(self, url: str, what: str) -> bytes:
        """GET url and return the body within timeout seconds; raises TransportError subclasses."""
        tpm_logging.log_network_request(url, "GET")
        deadline = time.monotonic() + self.timeout
        try:
            response = self.session.get(url, timeout=self.timeout, stream=True)
        except requests.Timeout as e:
            raise self._timed_out(url, what) from e
        except requests.RequestException as e:
            raise TransportError(f"failed retrieving {what} from {url!r}: {e}") from e

        try:
            if response.status_code != 200:
                raise HttpStatusError(url, response.status_code)
            tpm_logging.log_network_request(url, "GET", response.status_code)
            return self._read_body(response, url, what, deadline)
        finally:
            response.close()

    def fetch_crl(self, url: str) -> Optional[RevocationList]:
        """
        Fetch a DER-encoded CRL.

        Args:
            url: CRL distribution point URL

        Returns:
            RevocationList, or None when the fetcher is disabled

        Raises:
            TransportError: On connection failure, timeout or non-200 status
            ParseError: If the body is not a DER CRL
        """
        if not self.enabled:
            logger.debug(f"Fetcher disabled, not downloading CRL from {url}")
            return None

        body = self._download(url, "CRL")
        try:
            return RevocationList.from_der(body)
        except ParseError as e:
            raise ParseError(f"failed parsing CRL from {url!r}: {e}") from e

    def fetch_certificate(self, url: str) -> x509.Certificate:
        """
        Fetch an issuer certificate.

        RFC 5280 section 4.2.2.1 states that certificates served over
        HTTP for the AIA extension are DER encoded.

        Args:
            url: Authority Information Access CA Issuers URL

        Returns:
            x509.Certificate: Issuer certificate

        Raises:
            FetcherDisabledError: If the fetcher is disabled
            TransportError: On connection failure, timeout or non-200 status
            ParseError: If the body is not a DER certificate
        """
        if not self.enabled:
            raise FetcherDisabledError(
                f"fetcher is disabled, cannot download issuer certificate from {url!r}"
            )

        body = self._download(url, "certificate")
        try:
            return x509.load_der_x509_certificate(body)
        except ValueError as e:
            raise ParseError(f"failed parsing certificate from {url!r}: {e}") from e
