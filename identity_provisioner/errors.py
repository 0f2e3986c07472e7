"""Exceptions raised by provisioning collaborators and the workflow."""

from enum import Enum
from typing import Optional


class ProvisioningError(Exception):
    """Base class for every provisioning failure."""


class ConfigurationError(ProvisioningError):
    """A required configuration value is missing or empty."""

    def __init__(self, key: str, message: Optional[str] = None):
        self.key = key
        super().__init__(message or f"Missing required configuration value '{key}'")


class AuthenticationError(ProvisioningError):
    """A directory session could not be established."""


class AccountCreationError(ProvisioningError):
    """The directory rejected the create-account call."""


class DirectoryOperationError(ProvisioningError):
    """A single non-creating directory call failed (group add, license)."""

    def __init__(self, message: str, target: Optional[str] = None):
        self.target = target
        super().__init__(message)


class NotificationError(ProvisioningError):
    """The notification sink could not deliver a message."""


class WarningKind(str, Enum):
    GROUP_ASSIGNMENT = "group_assignment"
    LICENSE_ASSIGNMENT = "license_assignment"
    NOTIFICATION = "notification"
    CLEANUP = "cleanup"
