# SPDX-License-Identifier: MPL-2.0
"""HTTP API of the issuing authority."""
