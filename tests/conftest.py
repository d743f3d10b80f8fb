# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Shared fixtures - Throwaway TPM manufacturer PKI and fake HTTP sessions.

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import AuthorityInformationAccessOID, NameOID, ObjectIdentifier

from tpm_trust.certs import TcgOid

# TPMSpecification attribute: family "2.0", level 0, revision 138
SUBJECT_DIRECTORY_ATTRIBUTES_DER = bytes.fromhex(
    "3019" "3017" "06056781050210" "310e" "300c" "0c03322e30" "020100" "0202008a"
)


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _key_usage(cert_sign=True, crl_sign=True):
    return x509.KeyUsage(
        digital_signature=False,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=cert_sign,
        crl_sign=crl_sign,
        encipher_only=False,
        decipher_only=False,
    )


class Pki:
    """A manufacturer PKI: self-signed root, EK issuing CA and EK certificates."""

    ISSUER_URL = "http://pki.example.com/ek-ca.crt"
    CRL_URL = "http://pki.example.com/ek-ca.crl"

    def __init__(self):
        self.now = datetime.now(timezone.utc)
        self.root_key = ec.generate_private_key(ec.SECP384R1())
        self.root = self.make_ca("Test TPM Root CA", self.root_key)
        self.ca_key = ec.generate_private_key(ec.SECP256R1())
        self.ca = self.make_ca("Test TPM EK CA", self.ca_key, self.root, self.root_key)

    def make_ca(self, common_name, key, issuer=None, issuer_key=None, crl_sign=True):
        issuer_name = issuer.subject if issuer is not None else _name(common_name)
        return (
            x509.CertificateBuilder()
            .subject_name(_name(common_name))
            .issuer_name(issuer_name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(self.now - timedelta(days=1))
            .not_valid_after(self.now + timedelta(days=3650))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(_key_usage(crl_sign=crl_sign), critical=True)
            .sign(issuer_key or key, hashes.SHA256())
        )

    def make_ek(
        self,
        issuer_urls=(ISSUER_URL,),
        crl_urls=(CRL_URL,),
        ek_usage=True,
        ca=False,
        serial=None,
        key=None,
        extra_extensions=(),
    ):
        key = key or ec.generate_private_key(ec.SECP256R1())
        builder = (
            x509.CertificateBuilder()
            .subject_name(_name("Test EK"))
            .issuer_name(self.ca.subject)
            .public_key(key.public_key())
            .serial_number(serial or x509.random_serial_number())
            .not_valid_before(self.now - timedelta(days=1))
            .not_valid_after(self.now + timedelta(days=365))
            .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        )
        if issuer_urls:
            builder = builder.add_extension(
                x509.AuthorityInformationAccess(
                    [
                        x509.AccessDescription(
                            AuthorityInformationAccessOID.CA_ISSUERS,
                            x509.UniformResourceIdentifier(url),
                        )
                        for url in issuer_urls
                    ]
                ),
                critical=False,
            )
        if crl_urls:
            builder = builder.add_extension(
                x509.CRLDistributionPoints(
                    [
                        x509.DistributionPoint(
                            full_name=[x509.UniformResourceIdentifier(url)],
                            relative_name=None,
                            reasons=None,
                            crl_issuer=None,
                        )
                        for url in crl_urls
                    ]
                ),
                critical=False,
            )
        if ek_usage:
            builder = builder.add_extension(
                x509.ExtendedKeyUsage([TcgOid.EK_CERTIFICATE.value]), critical=False
            )
        builder = builder.add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DirectoryName(
                        x509.Name(
                            [
                                x509.RelativeDistinguishedName(
                                    [
                                        x509.NameAttribute(
                                            TcgOid.TPM_MANUFACTURER.value, "id:49465800"
                                        ),
                                        x509.NameAttribute(TcgOid.TPM_MODEL.value, "SLB9670"),
                                        x509.NameAttribute(
                                            TcgOid.TPM_VERSION.value, "id:00070003"
                                        ),
                                    ]
                                )
                            ]
                        )
                    )
                ]
            ),
            critical=False,
        )
        builder = builder.add_extension(
            x509.UnrecognizedExtension(
                ObjectIdentifier("2.5.29.9"), SUBJECT_DIRECTORY_ATTRIBUTES_DER
            ),
            critical=False,
        )
        for extension, critical in extra_extensions:
            builder = builder.add_extension(extension, critical=critical)
        return builder.sign(self.ca_key, hashes.SHA256())

    def make_crl(
        self,
        revoked_serials=(),
        signer=None,
        signer_key=None,
        last_update=None,
        next_update=None,
    ):
        signer = signer or self.ca
        signer_key = signer_key or self.ca_key
        builder = (
            x509.CertificateRevocationListBuilder()
            .issuer_name(signer.subject)
            .last_update(last_update or self.now - timedelta(days=1))
            .next_update(next_update or self.now + timedelta(days=7))
        )
        for serial in revoked_serials:
            builder = builder.add_revoked_certificate(
                x509.RevokedCertificateBuilder()
                .serial_number(serial)
                .revocation_date(self.now - timedelta(hours=1))
                .add_extension(x509.CRLReason(x509.ReasonFlags.key_compromise), critical=False)
                .build()
            )
        return builder.sign(signer_key, hashes.SHA256())

    @staticmethod
    def der(obj):
        return obj.public_bytes(serialization.Encoding.DER)


class FakeSession:
    """
    Stands in for requests.Session: maps URL to (status, body) or an exception.

    A bytes body is served in one chunk with a Content-Length header; a list
    body is served chunk by chunk without one, like a chunked transfer. A
    chunk may also be an exception, raised when it is read.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self.responses_returned = []

    def get(self, url, timeout=None, stream=False):
        self.calls.append((url, timeout))
        result = self.responses.get(url, (404, b""))
        if isinstance(result, Exception):
            raise result
        status_code, body = result
        if isinstance(body, list):
            chunks = list(body)
            headers = {}
        else:
            chunks = [body] if body else []
            headers = {"Content-Length": str(len(body))}

        response = MagicMock()
        response.status_code = status_code
        response.headers = headers
        response.raw.read1.side_effect = chunks + [b""]
        self.responses_returned.append(response)
        return response

    @property
    def urls(self):
        return [url for url, _ in self.calls]


@pytest.fixture(scope="session")
def pki():
    return Pki()


@pytest.fixture
def ek(pki):
    return pki.make_ek()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def make_session():
    return FakeSession


@pytest.fixture
def pki_responses(pki):
    """Successful downloads of the EK CA certificate and an empty CRL."""
    return {
        Pki.ISSUER_URL: (200, pki.der(pki.ca)),
        Pki.CRL_URL: (200, pki.der(pki.make_crl())),
    }
