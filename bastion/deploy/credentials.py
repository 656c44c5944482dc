"""Credential handles for deployment targets.

A handle names where a secret lives; the secret itself is read from the
environment only when a deployment attempt needs it, and is handed to the
deploy tool through that one subprocess's environment.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from bastion.errors import DeploymentError
from bastion.pipeline.schema import CredentialRef, Environment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialHandle:
    """Read-only reference to one target's deploy credential."""
    name: str
    env_var: str
    scope: Environment
    inject_as: str = "FLY_API_TOKEN"

    @classmethod
    def from_ref(cls, ref: CredentialRef, scope: Environment) -> "CredentialHandle":
        return cls(name=ref.name, env_var=ref.env_var, scope=scope, inject_as=ref.inject_as)

    def resolve(self, environ: Optional[Mapping[str, str]] = None) -> str:
        """
        Read the secret value.

        Raises:
            DeploymentError: (fatal) if the variable is unset or empty
        """
        environ = os.environ if environ is None else environ
        value = environ.get(self.env_var)
        if not value:
            raise DeploymentError(
                f"Credential '{self.name}' is not available (set {self.env_var})",
                retryable=False,
            )
        return value

    def as_env(self, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        return {self.inject_as: self.resolve(environ)}

    def __repr__(self) -> str:
        return f"CredentialHandle(name={self.name!r}, env_var={self.env_var!r}, scope={self.scope.value!r})"
