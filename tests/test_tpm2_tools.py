# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Tests for the tpm2-tools backed TPM session.

import subprocess
from unittest.mock import patch

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from tpm_trust.ek import KeyAlgorithm
from tpm_trust.errors import EkCertNotFoundError, KeyGenerationError, TpmError
from tpm_trust.tpm2_tools import EK_CERT_TEMPLATES, Tpm2ToolsSession, decode_manufacturer

PROPERTIES_FIXED = """\
TPM2_PT_FAMILY_INDICATOR:
  raw: 0x322E3000
  value: "2.0"
TPM2_PT_LEVEL:
  raw: 0
TPM2_PT_MANUFACTURER:
  raw: 0x49465800
  value: "IFX"
TPM2_PT_FIRMWARE_VERSION_1:
  raw: 0x7003F
"""

NV_INDICES = """\
- 0x1500018
- 0x1C00002
- 0x1C0000A
"""

PERSISTENT_HANDLES = """\
- 0x81000001
- 0x81010001
"""

ECC_TEMPLATE = next(t for t in EK_CERT_TEMPLATES if t.nv_index == 0x01C0000A)
RSA_TEMPLATE = next(t for t in EK_CERT_TEMPLATES if t.nv_index == 0x01C00002)


class FakeTpm2Tools:
    """Replaces subprocess.run: answers tpm2-tools commands and writes their output files."""

    def __init__(self, certificate_der, public_key, fail=()):
        self.certificate_der = certificate_der
        self.public_pem = public_key.public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        self.fail = set(fail)
        self.getcap = {
            "properties-fixed": PROPERTIES_FIXED,
            "handles-nv-index": NV_INDICES,
            "handles-persistent": PERSISTENT_HANDLES,
        }
        self.commands = []
        self.envs = []

    def __call__(self, cmd, capture_output=True, env=None, check=False):
        self.commands.append(cmd)
        self.envs.append(env)
        tool = cmd[0]
        if tool in self.fail:
            return subprocess.CompletedProcess(cmd, 1, b"", b"ERROR: simulated failure")

        stdout = b""
        if tool == "tpm2_getcap":
            stdout = self.getcap[cmd[1]].encode()
        elif tool == "tpm2_nvread":
            self._write(cmd, "-o", self.certificate_der)
        elif tool == "tpm2_createek":
            self._write(cmd, "-u", self.public_pem)
        elif tool == "tpm2_readpublic":
            self._write(cmd, "-o", self.public_pem)
        return subprocess.CompletedProcess(cmd, 0, stdout, b"")

    @staticmethod
    def _write(cmd, flag, data):
        with open(cmd[cmd.index(flag) + 1], "wb") as f:
            f.write(data)

    def tools(self):
        return [cmd[0] for cmd in self.commands]


@pytest.fixture
def ek_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def fake_tools(pki, ek_key):
    # TCG header and NV padding around the DER certificate
    cert_der = pki.der(pki.make_ek(key=ek_key))
    nv_data = b"\x10\x01" + len(cert_der).to_bytes(2, "big") + cert_der + b"\xff" * 32
    return FakeTpm2Tools(nv_data, ek_key.public_key())


@pytest.fixture
def session(fake_tools):
    with patch("tpm_trust.tpm2_tools.shutil.which", return_value="/usr/bin/tpm2_getcap"), patch(
        "tpm_trust.tpm2_tools.subprocess.run", side_effect=fake_tools
    ):
        tpm = Tpm2ToolsSession(tcti="device:/dev/tpmrm0")
        tpm.open()
        yield tpm
        tpm.close()


class TestDecodeManufacturer:
    def test_known_vendor(self):
        manufacturer = decode_manufacturer(0x49465800)
        assert manufacturer.ascii == "IFX"
        assert manufacturer.name == "Infineon"

    def test_unknown_vendor(self):
        manufacturer = decode_manufacturer(0x41424344)
        assert manufacturer.ascii == "ABCD"
        assert manufacturer.name == "ABCD"


class TestSessionLifecycle:
    def test_open_requires_tpm2_tools(self):
        with patch("tpm_trust.tpm2_tools.shutil.which", return_value=None):
            with pytest.raises(TpmError, match="tpm2-tools"):
                Tpm2ToolsSession().open()

    def test_commands_require_open_session(self):
        with pytest.raises(TpmError, match="not open"):
            Tpm2ToolsSession().ek(ECC_TEMPLATE)

    def test_close_is_idempotent(self, session):
        session.close()
        session.close()


class TestQueries:
    def test_info(self, session, fake_tools):
        info = session.info()

        assert info.manufacturer.ascii == "IFX"
        assert info.firmware_version == "7.63"
        assert fake_tools.envs[0]["TPM2TOOLS_TCTI"] == "device:/dev/tpmrm0"

    def test_info_without_manufacturer(self, session, fake_tools):
        fake_tools.getcap["properties-fixed"] = "TPM2_PT_LEVEL:\n  raw: 0\n"
        with pytest.raises(TpmError, match="TPM2_PT_MANUFACTURER"):
            session.info()

    def test_getcap_failure(self, session, fake_tools):
        fake_tools.fail.add("tpm2_getcap")
        with pytest.raises(TpmError, match="exit code 1"):
            session.info()

    def test_available_certificates(self, session):
        templates = session.search_available_certificates()
        assert [t.nv_index for t in templates] == [0x01C00002, 0x01C0000A]

    def test_persisted_eks(self, session):
        templates = session.persisted_eks()

        assert len(templates) == 1
        assert templates[0].handle == 0x81010001
        assert templates[0].nv_index == 0x01C00002
        assert templates[0].algorithm == KeyAlgorithm.RSA


class TestEk:
    def test_generated_ecc_ek(self, session, fake_tools, ek_key):
        ek = session.ek(ECC_TEMPLATE)

        assert ek.template == ECC_TEMPLATE
        assert ek.public_key.public_numbers() == ek_key.public_key().public_numbers()
        assert fake_tools.tools() == ["tpm2_nvread", "tpm2_createek", "tpm2_flushcontext"]
        createek = fake_tools.commands[1]
        assert createek[createek.index("-G") + 1] == "ecc256"

    def test_persisted_ek_is_read_not_generated(self, session, fake_tools):
        template = session.persisted_eks()[0]
        session.ek(template)

        assert "tpm2_createek" not in fake_tools.tools()
        readpublic = fake_tools.commands[-1]
        assert readpublic[:3] == ["tpm2_readpublic", "-c", "0x81010001"]

    def test_missing_certificate(self, session, fake_tools):
        fake_tools.fail.add("tpm2_nvread")
        with pytest.raises(EkCertNotFoundError):
            session.ek(ECC_TEMPLATE)

    def test_key_generation_failure(self, session, fake_tools):
        fake_tools.fail.add("tpm2_createek")
        with pytest.raises(KeyGenerationError, match="tpm2_createek"):
            session.ek(RSA_TEMPLATE)

    def test_public_key_mismatch(self, session, fake_tools):
        other_key = ec.generate_private_key(ec.SECP256R1()).public_key()
        fake_tools.public_pem = other_key.public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        with pytest.raises(KeyGenerationError, match="does not match"):
            session.ek(ECC_TEMPLATE)

    def test_unsupported_template(self, session):
        sm2 = next(t for t in EK_CERT_TEMPLATES if t.curve == "sm2-p256")
        with pytest.raises(KeyGenerationError, match="does not support"):
            session.ek(sm2)
