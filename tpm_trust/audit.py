# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Audit utility - Check that the local TPM is genuine from its EK certificate.

import argparse
import sys
import time
from typing import List, Optional

from . import __version__, tpm_logging
from .bundle import LocalTrustedBundle
from .ek import get_ek_certificate
from .errors import TpmTrustError
from .fetch import DEFAULT_MAX_DOWNLOADS, Fetcher
from .privilege import NoopElevator, elevate, get_elevator
from .tpm2_tools import Tpm2ToolsSession
from .validate import DEFAULT_TIMEOUT, CheckConfig, EKChecker, EKCheckerConfig

AUDIT_DESCRIPTION = """\
Ensure that a TPM is legitimate by verifying its Endorsement Key (EK)
certificate against a trust bundle of known TPM manufacturers.

Exit codes:
  0 - TPM is trusted
  1 - TPM is not trusted or validation failed"""

AUDIT_EPILOG = """\
examples:
  # Audit the TPM
  tpm-trust audit --bundle ./bundle

  # Audit without revocation check
  tpm-trust audit --bundle ./bundle --skip-revocation-check

  # Audit with verbose logging
  tpm-trust audit --bundle ./bundle --verbose"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tpm-trust", description="TPM root of trust, simplified."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    audit = subparsers.add_parser(
        "audit",
        help="audit TPM's EK certificate against trusted manufacturers roots CAs",
        description=AUDIT_DESCRIPTION,
        epilog=AUDIT_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    audit.add_argument(
        "--bundle",
        required=True,
        help="Trust bundle directory (one sub-directory of certificates per vendor ID)",
    )
    audit.add_argument(
        "--skip-revocation-check",
        action="store_true",
        default=False,
        help="Skip CRL revocation check",
    )
    audit.add_argument(
        "-v", "--verbose", action="store_true", default=False, help="Enable verbose logging"
    )
    audit.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Timeout in seconds for each download (default: {DEFAULT_TIMEOUT})",
    )
    audit.add_argument(
        "--max-downloads",
        type=int,
        default=DEFAULT_MAX_DOWNLOADS,
        help=f"Maximum number of issuer or CRL downloads (default: {DEFAULT_MAX_DOWNLOADS})",
    )
    audit.add_argument(
        "--tcti", default=None, help='TCTI used by tpm2-tools (e.g. "device:/dev/tpmrm0")'
    )
    audit.add_argument(
        "--platform",
        default=None,
        help="Platform used to select privilege elevation (default: sys.platform)",
    )
    audit.add_argument(
        "--no-elevate",
        action="store_true",
        default=False,
        help="Do not try to elevate privileges",
    )

    subparsers.add_parser("version", help="print version information")
    return parser


def run_audit(args: argparse.Namespace) -> int:
    """Run the audit command; returns the process exit code."""
    logger = tpm_logging.setup_cli_logging(verbose=args.verbose)

    elevator = NoopElevator() if args.no_elevate else get_elevator(args.platform)
    elevate(elevator)

    start_read = time.monotonic()
    logger.info("Reading EK certificate from TPM")
    result = get_ek_certificate(Tpm2ToolsSession(tcti=args.tcti))
    tpm_logging.log_duration(start_read)

    start_load = time.monotonic()
    logger.info("Loading manufacturers trusted bundle")
    trusted_bundle = LocalTrustedBundle.from_directory(args.bundle)

    manufacturer_id = result.manufacturer.ascii
    if manufacturer_id not in trusted_bundle.vendors():
        logger.error(
            f"unsupported manufacturer - id: {manufacturer_id}, reason: "
            "this manufacturer is not included in the trust bundle"
        )
        return 1
    logger.info(f"  manufacturer supported - id: {manufacturer_id}")
    tpm_logging.log_duration(start_load)

    start_validate = time.monotonic()
    logger.info("Validating EK certificate")
    checker = EKChecker(
        EKCheckerConfig(
            trusted_bundle=trusted_bundle,
            fetcher=Fetcher(max_downloads=args.max_downloads),
            timeout=args.timeout,
        )
    )
    checker.check(
        CheckConfig(ek=result.certificate, skip_revocation_check=args.skip_revocation_check)
    )
    tpm_logging.log_duration(start_validate)

    logger.info("TPM is genuine 🔒")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for the tpm-trust command-line utility.

    Returns:
        int: Exit code (0 if the TPM is trusted, 1 otherwise)

    Examples:
        tpm-trust audit --bundle ./bundle
        tpm-trust version
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        print(f"tpm-trust {__version__}")
        print("TPM root of trust, simplified.")
        return 0

    logger = tpm_logging.get_logger(__name__)
    try:
        return run_audit(args)
    except (TpmTrustError, OSError, ValueError) as e:
        logger.error(f"command failed: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
