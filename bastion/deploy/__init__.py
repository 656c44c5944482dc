"""Deployment targets, credentials and the retrying driver."""

from bastion.deploy.credentials import CredentialHandle
from bastion.deploy.driver import DeploymentDriver

__all__ = [
    "CredentialHandle",
    "DeploymentDriver",
]
