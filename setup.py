# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# Setup configuration for tpm_trust package.

from setuptools import find_packages, setup

setup(
    name="tpm_trust",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "requests>=2.25.0",
        "cryptography>=42.0.0",
        "pyasn1>=0.4.8",
        "urllib3>=2.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tpm-trust=tpm_trust.audit:main",
        ],
    },
    description="Establish trust in a TPM from its Endorsement Key certificate",
    license="MIT",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
    ],
)
