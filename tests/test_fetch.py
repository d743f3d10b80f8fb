# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Tests for issuer certificate and CRL downloads.

import itertools
from unittest.mock import patch

import pytest
import requests
from cryptography.hazmat.primitives import serialization
from urllib3.exceptions import ProtocolError, ReadTimeoutError

from tpm_trust.crl import RevocationList
from tpm_trust.errors import (
    FetcherDisabledError,
    HttpStatusError,
    ParseError,
    TransportError,
)
from tpm_trust.fetch import DEFAULT_MAX_DOWNLOADS, DEFAULT_TIMEOUT, Fetcher, create_session

URL = "http://pki.example.com/object"


class TestCreateSession:
    def test_follows_redirects_without_retries(self):
        session = create_session(max_redirects=3)
        retries = session.get_adapter("https://pki.example.com").max_retries

        assert retries.redirect == 3
        assert retries.connect == 0
        assert retries.read == 0
        assert retries.status == 0
        assert "TPM-Trust" in session.headers["User-Agent"]


class TestFetcherConfiguration:
    def test_defaults(self, fake_session):
        fetcher = Fetcher(session=fake_session)
        assert fetcher.enabled
        assert fetcher.max_downloads == DEFAULT_MAX_DOWNLOADS
        assert fetcher.timeout == DEFAULT_TIMEOUT

    @pytest.mark.parametrize("max_downloads", [0, -1])
    def test_rejects_non_positive_ceiling(self, fake_session, max_downloads):
        with pytest.raises(ValueError):
            Fetcher(max_downloads=max_downloads, session=fake_session)

    def test_rejects_non_positive_timeout(self, fake_session):
        with pytest.raises(ValueError):
            Fetcher(timeout=0, session=fake_session)

    def test_rejects_non_positive_max_size(self, fake_session):
        with pytest.raises(ValueError):
            Fetcher(max_size=0, session=fake_session)


class TestFetchCertificate:
    def test_success(self, pki, make_session):
        session = make_session({URL: (200, pki.der(pki.ca))})
        fetcher = Fetcher(timeout=1.5, session=session)

        assert fetcher.fetch_certificate(URL) == pki.ca
        assert session.calls == [(URL, 1.5)]
        session.responses_returned[0].close.assert_called_once()

    def test_non_200_status(self, make_session):
        session = make_session({URL: (404, b"not found")})
        with pytest.raises(HttpStatusError) as exc_info:
            Fetcher(session=session).fetch_certificate(URL)

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == URL
        session.responses_returned[0].close.assert_called_once()

    def test_timeout(self, make_session):
        session = make_session({URL: requests.Timeout("read timed out")})
        with pytest.raises(TransportError, match="timed out"):
            Fetcher(session=session).fetch_certificate(URL)

    def test_connection_error(self, make_session):
        session = make_session({URL: requests.ConnectionError("connection refused")})
        with pytest.raises(TransportError, match="connection refused"):
            Fetcher(session=session).fetch_certificate(URL)

    def test_pem_body_is_rejected(self, pki, make_session):
        pem = pki.ca.public_bytes(serialization.Encoding.PEM)
        session = make_session({URL: (200, pem)})
        with pytest.raises(ParseError):
            Fetcher(session=session).fetch_certificate(URL)

    def test_disabled(self, fake_session):
        with pytest.raises(FetcherDisabledError):
            Fetcher(enabled=False, session=fake_session).fetch_certificate(URL)
        assert fake_session.calls == []


class TestFetchCrl:
    def test_success(self, pki, make_session):
        session = make_session({URL: (200, pki.der(pki.make_crl(revoked_serials=[7])))})
        crl = Fetcher(session=session).fetch_crl(URL)

        assert isinstance(crl, RevocationList)
        assert len(crl) == 1

    def test_malformed_body(self, make_session):
        session = make_session({URL: (200, b"garbage")})
        with pytest.raises(ParseError, match=URL):
            Fetcher(session=session).fetch_crl(URL)

    def test_server_error(self, make_session):
        session = make_session({URL: (500, b"")})
        with pytest.raises(HttpStatusError):
            Fetcher(session=session).fetch_crl(URL)

    def test_disabled_returns_none(self, fake_session):
        assert Fetcher(enabled=False, session=fake_session).fetch_crl(URL) is None
        assert fake_session.calls == []


class TestDownloadLimits:
    """The timeout and size limit cover the whole body, not only each read."""

    def test_chunked_body(self, pki, make_session):
        cert_der = pki.der(pki.ca)
        session = make_session({URL: (200, [cert_der[:100], cert_der[100:]])})
        assert Fetcher(session=session).fetch_certificate(URL) == pki.ca

    def test_slow_body_hits_deadline(self, make_session):
        # Each read arrives well within the per-read timeout but the total exceeds it
        session = make_session({URL: (200, [b"\x30"] * 12)})
        fetcher = Fetcher(timeout=1.0, session=session)

        with patch("tpm_trust.fetch.time.monotonic", side_effect=itertools.count(0, 0.4)):
            with pytest.raises(TransportError, match="timed out after 1.0s"):
                fetcher.fetch_certificate(URL)

        response = session.responses_returned[0]
        assert response.raw.read1.call_count < 12
        response.close.assert_called_once()

    def test_read_timeout_while_streaming(self, make_session):
        session = make_session({URL: (200, [b"\x30", ReadTimeoutError(None, URL, "read timed out")])})
        with pytest.raises(TransportError, match="timed out"):
            Fetcher(session=session).fetch_crl(URL)

    def test_connection_dropped_while_streaming(self, make_session):
        session = make_session({URL: (200, [b"\x30", ProtocolError("connection broken")])})
        with pytest.raises(TransportError, match="connection broken"):
            Fetcher(session=session).fetch_certificate(URL)

    def test_declared_size_above_limit(self, make_session):
        session = make_session({URL: (200, b"\x00" * 64)})
        with pytest.raises(TransportError, match="too large"):
            Fetcher(max_size=32, session=session).fetch_crl(URL)
        session.responses_returned[0].raw.read1.assert_not_called()

    def test_streamed_size_above_limit(self, make_session):
        session = make_session({URL: (200, [b"\x00" * 20, b"\x00" * 20, b"\x00" * 20])})
        with pytest.raises(TransportError, match="larger than the maximum of 32 bytes"):
            Fetcher(max_size=32, session=session).fetch_crl(URL)
