# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# tpm2-tools session - TpmSession backed by the tpm2-tools command line utilities.

import dataclasses
import os
import re
import shutil
import subprocess
import tempfile
from typing import Dict, List, Optional

from cryptography.hazmat.primitives import serialization

from . import tpm_logging
from .certs import parse_ek_certificate
from .ek import (
    EkCertTemplate,
    EndorsementKey,
    KeyAlgorithm,
    Manufacturer,
    TpmInfo,
    TpmSession,
)
from .errors import EkCertNotFoundError, KeyGenerationError, TpmError

logger = tpm_logging.get_logger(__name__)

# EK certificate NV indices (TCG EK Credential Profile 2.6, section 2.2.1.5)
EK_CERT_TEMPLATES = (
    EkCertTemplate(0x01C00002, KeyAlgorithm.RSA, key_size=2048),
    EkCertTemplate(0x01C0000A, KeyAlgorithm.ECC, curve="nist-p256"),
    EkCertTemplate(0x01C00012, KeyAlgorithm.RSA, key_size=2048),
    EkCertTemplate(0x01C00014, KeyAlgorithm.ECC, curve="nist-p256"),
    EkCertTemplate(0x01C00016, KeyAlgorithm.ECC, curve="nist-p384"),
    EkCertTemplate(0x01C00018, KeyAlgorithm.ECC, curve="nist-p521"),
    EkCertTemplate(0x01C0001A, KeyAlgorithm.ECC, curve="sm2-p256"),
    EkCertTemplate(0x01C0001C, KeyAlgorithm.RSA, key_size=3072),
    EkCertTemplate(0x01C0001E, KeyAlgorithm.RSA, key_size=4096),
)

# Persistent EK handles (TCG TPM v2.0 Provisioning Guidance, section 7.8)
PERSISTED_EK_HANDLES = {
    0x81010001: 0x01C00002,
    0x81010002: 0x01C0000A,
}

# tpm2_createek -G values per key type
CREATEEK_ALGORITHMS = {
    "rsa2048": "rsa2048",
    "rsa3072": "rsa3072",
    "rsa4096": "rsa4096",
    "ecc-nist-p256": "ecc256",
    "ecc-nist-p384": "ecc384",
    "ecc-nist-p521": "ecc521",
}

# TCG Vendor ID Registry
MANUFACTURER_NAMES = {
    "AMD": "AMD",
    "ATML": "Atmel",
    "BRCM": "Broadcom",
    "CSCO": "Cisco",
    "FLYS": "Flyslice Technologies",
    "GOOG": "Google",
    "HISI": "Huawei",
    "HPE": "HPE",
    "IBM": "IBM",
    "IFX": "Infineon",
    "INTC": "Intel",
    "LEN": "Lenovo",
    "MSFT": "Microsoft",
    "NSG": "NSING",
    "NSM": "National Semiconductor",
    "NTC": "Nuvoton Technology",
    "NTZ": "Nationz",
    "QCOM": "Qualcomm",
    "ROCC": "Fuzhou Rockchip",
    "SMSC": "SMSC",
    "SNS": "Sinosun",
    "STM": "STMicroelectronics",
    "TXN": "Texas Instruments",
    "WEC": "Winbond",
}

_HANDLE_RE = re.compile(r"0x[0-9a-fA-F]+")
_PROPERTY_RE = re.compile(r"^(TPM2_PT_\w+):\s*raw:\s*(0x[0-9a-fA-F]+)", re.MULTILINE)


def decode_manufacturer(raw: int) -> Manufacturer:
    """Decode a TPM2_PT_MANUFACTURER value (four ASCII bytes) into a Manufacturer."""
    ascii_id = raw.to_bytes(4, "big").decode("ascii", errors="replace")
    ascii_id = ascii_id.strip("\x00 ")
    return Manufacturer(ascii=ascii_id, name=MANUFACTURER_NAMES.get(ascii_id, ascii_id))


class Tpm2ToolsSession(TpmSession):
    """
    Tpm2ToolsSession - TPM access through tpm2-tools

    Args:
        tcti: Optional TCTI string (e.g. "device:/dev/tpmrm0"), exported as
            TPM2TOOLS_TCTI for every command
    """

    def __init__(self, tcti: Optional[str] = None):
        self.tcti = tcti
        self._work_dir: Optional[tempfile.TemporaryDirectory] = None

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        env = os.environ.copy()
        if self.tcti:
            env["TPM2TOOLS_TCTI"] = self.tcti

        logger.debug(f"Running TPM command: {' '.join(cmd)}")
        try:
            return subprocess.run(cmd, capture_output=True, env=env, check=False)
        except FileNotFoundError as e:
            raise TpmError(f"{cmd[0]} not found, please install tpm2-tools") from e

    def _run_checked(self, cmd: List[str], error_cls=TpmError) -> bytes:
        result = self._run(cmd)
        if result.returncode != 0:
            stderr = result.stderr.decode(errors="ignore").strip()
            raise error_cls(f"{cmd[0]} failed (exit code {result.returncode}): {stderr}")
        return result.stdout

    def _path(self, name: str) -> str:
        if self._work_dir is None:
            raise TpmError("TPM session is not open")
        return os.path.join(self._work_dir.name, name)

    def open(self) -> None:
        if shutil.which("tpm2_getcap") is None:
            raise TpmError("tpm2_getcap not found, please install tpm2-tools")
        self._work_dir = tempfile.TemporaryDirectory(prefix="tpm-trust-")

    def close(self) -> None:
        if self._work_dir is not None:
            self._work_dir.cleanup()
            self._work_dir = None

    def _fixed_properties(self) -> Dict[str, int]:
        output = self._run_checked(["tpm2_getcap", "properties-fixed"]).decode(
            errors="ignore"
        )
        return {name: int(raw, 16) for name, raw in _PROPERTY_RE.findall(output)}

    def _handles(self, capability: str) -> List[int]:
        output = self._run_checked(["tpm2_getcap", capability]).decode(errors="ignore")
        return [int(handle, 16) for handle in _HANDLE_RE.findall(output)]

    def info(self) -> TpmInfo:
        properties = self._fixed_properties()
        if "TPM2_PT_MANUFACTURER" not in properties:
            raise TpmError("TPM did not report TPM2_PT_MANUFACTURER")

        firmware_version = None
        if "TPM2_PT_FIRMWARE_VERSION_1" in properties:
            version_1 = properties["TPM2_PT_FIRMWARE_VERSION_1"]
            firmware_version = f"{version_1 >> 16}.{version_1 & 0xFFFF}"

        return TpmInfo(
            manufacturer=decode_manufacturer(properties["TPM2_PT_MANUFACTURER"]),
            firmware_version=firmware_version,
        )

    def search_available_certificates(self) -> List[EkCertTemplate]:
        nv_indices = set(self._handles("handles-nv-index"))
        return [t for t in EK_CERT_TEMPLATES if t.nv_index in nv_indices]

    def persisted_eks(self) -> List[EkCertTemplate]:
        persistent = self._handles("handles-persistent")
        by_index = {t.nv_index: t for t in EK_CERT_TEMPLATES}

        templates = []
        for handle, nv_index in PERSISTED_EK_HANDLES.items():
            if handle not in persistent:
                continue
            templates.append(dataclasses.replace(by_index[nv_index], handle=handle))
        return templates

    def _read_certificate(self, template: EkCertTemplate):
        cert_path = self._path(f"ek_{template.nv_index:08x}.der")
        result = self._run(["tpm2_nvread", f"{template.nv_index:#x}", "-o", cert_path])
        if result.returncode != 0:
            raise EkCertNotFoundError(
                f"no EK certificate at NV index {template.nv_index:#x}: "
                f"{result.stderr.decode(errors='ignore').strip()}"
            )
        with open(cert_path, "rb") as f:
            return parse_ek_certificate(f.read())

    def _read_public_key(self, template: EkCertTemplate):
        pub_path = self._path(f"ek_{template.nv_index:08x}.pem")

        if template.handle is not None:
            self._run_checked(
                ["tpm2_readpublic", "-c", f"{template.handle:#x}", "-f", "pem", "-o", pub_path],
                KeyGenerationError,
            )
        else:
            algorithm = CREATEEK_ALGORITHMS.get(template.key_type)
            if algorithm is None:
                raise KeyGenerationError(
                    f"tpm2_createek does not support {template.key_type} EK templates"
                )
            ctx_path = self._path("ek.ctx")
            self._run_checked(
                ["tpm2_createek", "-c", ctx_path, "-G", algorithm, "-u", pub_path, "-f", "pem"],
                KeyGenerationError,
            )
            # Transient EK, not persisted
            self._run(["tpm2_flushcontext", ctx_path])

        with open(pub_path, "rb") as f:
            return serialization.load_pem_public_key(f.read())

    def ek(self, template: EkCertTemplate) -> EndorsementKey:
        certificate = self._read_certificate(template)
        public_key = self._read_public_key(template)

        spki = serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        if public_key.public_bytes(*spki) != certificate.public_key().public_bytes(*spki):
            raise KeyGenerationError(
                f"EK public key does not match the certificate at NV index {template.nv_index:#x}"
            )
        return EndorsementKey(certificate=certificate, public_key=public_key, template=template)
