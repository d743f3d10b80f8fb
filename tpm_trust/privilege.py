# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Privilege elevation - Re-run the current command with the rights needed to reach the TPM.

import abc
import os
import shutil
import subprocess
import sys
from typing import List, Optional

from . import tpm_logging
from .errors import TpmTrustError

logger = tpm_logging.get_logger(__name__)

LINUX_TPM_DEVICE = "/dev/tpmrm0"


class ElevationError(TpmTrustError):
    """Raised when the process cannot be re-executed with elevated privileges."""

    pass


class Elevator(abc.ABC):
    """Platform-specific privilege elevation."""

    @abc.abstractmethod
    def needs_elevation(self) -> bool:
        """Return True if the current process cannot access the TPM as is."""

    @abc.abstractmethod
    def elevate(self) -> None:
        """
        Re-execute the current command with elevated privileges.

        On success the current process exits with the elevated process'
        exit code and this method does not return.

        Raises:
            ElevationError: If elevation fails
        """


class NoopElevator(Elevator):
    """Used on platforms (or configurations) where no elevation is attempted."""

    def needs_elevation(self) -> bool:
        return False

    def elevate(self) -> None:
        return None


class LinuxElevator(Elevator):
    """Re-runs the command through sudo when the TPM resource manager is not accessible."""

    def __init__(self, device: str = LINUX_TPM_DEVICE, argv: Optional[List[str]] = None):
        self.device = device
        self.argv = argv if argv is not None else list(sys.argv)

    def needs_elevation(self) -> bool:
        return not os.access(self.device, os.R_OK | os.W_OK)

    def elevate(self) -> None:
        sudo = shutil.which("sudo")
        if sudo is None:
            raise ElevationError(
                f"cannot access {self.device} and sudo is not available"
            )

        logger.warning("TPM access requires elevated privileges, re-running with sudo")
        cmd = [sudo, sys.executable, "-m", "tpm_trust"] + self.argv[1:]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, check=False)
        except OSError as e:
            raise ElevationError(f"failed to re-execute with elevated privileges: {e}") from e
        sys.exit(result.returncode)


class WindowsElevator(Elevator):
    """Re-runs the command through a UAC prompt when the process is not elevated."""

    # Window display flag for ShellExecuteW
    SW_SHOWNORMAL = 1

    def __init__(self, argv: Optional[List[str]] = None):
        self.argv = argv if argv is not None else list(sys.argv)

    def needs_elevation(self) -> bool:
        import ctypes

        return not ctypes.windll.shell32.IsUserAnAdmin()

    def elevate(self) -> None:
        import ctypes

        logger.warning("TPM access requires elevated privileges, triggering UAC prompt")
        params = subprocess.list2cmdline(["-m", "tpm_trust"] + self.argv[1:])
        result = ctypes.windll.shell32.ShellExecuteW(
            None, "runas", sys.executable, params, os.getcwd(), self.SW_SHOWNORMAL
        )
        # ShellExecuteW returns a value > 32 on success
        if result <= 32:
            raise ElevationError(
                f"failed to re-execute with elevated privileges (ShellExecuteW returned {result})"
            )
        sys.exit(0)


def get_elevator(platform: Optional[str] = None) -> Elevator:
    """
    Select the Elevator for a platform.

    Args:
        platform: Platform name as in sys.platform (default: sys.platform)

    Returns:
        Elevator: LinuxElevator, WindowsElevator or NoopElevator
    """
    platform = platform or sys.platform
    if platform.startswith("linux"):
        return LinuxElevator()
    if platform in ("win32", "cygwin"):
        return WindowsElevator()
    return NoopElevator()


def elevate(elevator: Elevator) -> None:
    """Elevate privileges through elevator if the current process needs it."""
    if not elevator.needs_elevation():
        logger.debug("no privilege elevation needed")
        return
    elevator.elevate()
