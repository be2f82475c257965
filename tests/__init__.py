# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors
