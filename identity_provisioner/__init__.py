"""
Identity Provisioner
Account onboarding for Microsoft Entra ID

Creates a directory user with a transient password, adds it to groups,
assigns a license and notifies the service desk, returning one structured
result per request.
"""

__version__ = "0.1.0"
__author__ = "Identity Security Team"
