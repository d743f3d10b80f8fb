# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Logging utilities - Centralized logging configuration for library and CLI usage.

"""
Logging utilities for tpm_trust

This module provides centralized logging configuration for both library and CLI usage.
"""

import logging
import sys
import time
from typing import Optional, Union


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to log levels (for CLI mode)."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",  # Reset
    }

    def format(self, record):
        # Format a copy so other handlers keep the plain level name
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.COLORS['RESET']}"
        return super().format(record)


def setup_logging(
    name: str = "tpm_trust",
    level: Union[str, int] = logging.INFO,
    cli_mode: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Set up logging with the specified configuration.

    Args:
        name: Logger name (default: "tpm_trust")
        level: Logging level (default: INFO)
        cli_mode: Whether running in CLI mode (affects formatting)
        verbose: Enable verbose logging (sets level to DEBUG)
        quiet: Enable quiet mode (sets level to WARNING)
        log_file: Optional file path to write logs to
        format_string: Custom format string (if None, uses appropriate default)

    Returns:
        Configured logger instance
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    elif isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    # Configure the root logger so module loggers (tpm_trust.*) propagate to it
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if format_string is None:
        if cli_mode:
            format_string = "%(levelname)s: %(message)s"
        else:
            format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if cli_mode:
        formatter = ColoredFormatter(format_string)
    else:
        formatter = logging.Formatter(format_string)

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        # No colors in files
        file_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    return logging.getLogger(name)


def get_logger(name: str = "tpm_trust") -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (default: "tpm_trust")

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def setup_cli_logging(
    verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None
) -> logging.Logger:
    """
    Convenience function to set up logging for CLI tools.

    Args:
        verbose: Enable verbose logging
        quiet: Enable quiet mode
        log_file: Optional log file path

    Returns:
        Configured logger instance
    """
    return setup_logging(cli_mode=True, verbose=verbose, quiet=quiet, log_file=log_file)


logger = get_logger(__name__)


def log_verification_step(step: str, status: str, details: str = "") -> None:
    """Log a verification step with status."""
    status_upper = status.upper()
    suffix = f" - {details}" if details else ""
    if status_upper in ["PASS", "SUCCESS", "OK", "TRUSTED"]:
        logger.info(f"✓ {step}: {status}{suffix}")
    elif status_upper in ["FAIL", "FAILED", "ERROR", "UNTRUSTED", "REVOKED"]:
        logger.error(f"! {step}: {status}{suffix}")
    elif status_upper in ["SKIP", "SKIPPED"]:
        logger.warning(f"- {step}: {status}{suffix}")
    else:
        logger.info(f"  {step}: {status}{suffix}")


def log_certificate_info(
    cert_type: str, subject: str, issuer: str = "", details: str = ""
) -> None:
    """Log certificate information."""
    msg = f"{cert_type} certificate - Subject: {subject}"
    if issuer:
        msg += f", Issuer: {issuer}"
    if details:
        msg += f" - {details}"
    logger.info(msg)


def log_network_request(
    url: str, method: str = "GET", status_code: Optional[int] = None
) -> None:
    """Log network requests."""
    msg = f"{method} {url}"
    if status_code:
        msg += f" - Status: {status_code}"
    logger.debug(msg)


def log_duration(start: float) -> None:
    """Log the time elapsed since start (a time.monotonic() value)."""
    logger.info(f"  took: {int(time.monotonic() - start)}s")
