#!/usr/bin/env python3
"""
IdentityProvisioner - Entra ID account onboarding
Main entry point for the CLI application
"""

import sys

from identity_provisioner.cli import main

if __name__ == "__main__":
    sys.exit(main())
