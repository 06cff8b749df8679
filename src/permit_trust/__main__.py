# SPDX-License-Identifier: MPL-2.0
"""
Permit Trust - Main entry point for the CLI.

This module provides the command-line interface for the Permit Trust package.
"""

from permit_trust.cli.main import cli

if __name__ == "__main__":
    cli()
