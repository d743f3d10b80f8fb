# Copyright 2025 Hewlett Packard Enterprise Development LP.
# SPDX-License-Identifier: MIT
#
# python -m tpm_trust

import sys

from .audit import main

sys.exit(main())
