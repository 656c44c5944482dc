"""Trigger events and the branch/event predicate that gates a run."""

import os
import uuid
from dataclasses import dataclass
from fnmatch import fnmatch
from typing import Iterable, List, Mapping, Optional


@dataclass(frozen=True)
class TriggerEvent:
    """What started a run (CI environment or manual invocation)."""
    run_id: str
    revision: Optional[str] = None
    ref: Optional[str] = None
    event_name: str = "push"
    repository: Optional[str] = None
    server_url: Optional[str] = None

    @property
    def branch(self) -> Optional[str]:
        if not self.ref:
            return None
        prefix = "refs/heads/"
        return self.ref[len(prefix):] if self.ref.startswith(prefix) else self.ref

    @property
    def run_url(self) -> Optional[str]:
        if not (self.server_url and self.repository):
            return None
        return f"{self.server_url.rstrip('/')}/{self.repository}/actions/runs/{self.run_id}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TriggerEvent":
        """Build from GitHub-Actions style variables; generates a run id if absent."""
        environ = os.environ if environ is None else environ
        return cls(
            run_id=environ.get("GITHUB_RUN_ID") or str(uuid.uuid4()),
            revision=environ.get("GITHUB_SHA") or None,
            ref=environ.get("GITHUB_REF") or None,
            event_name=environ.get("GITHUB_EVENT_NAME") or "push",
            repository=environ.get("GITHUB_REPOSITORY") or None,
            server_url=environ.get("GITHUB_SERVER_URL") or None,
        )


class BranchTrigger:
    """Accept events of the given kinds on matching branches (glob patterns)."""

    def __init__(self, branches: Iterable[str] = ("main",), events: Iterable[str] = ("push",)):
        self.branches: List[str] = list(branches)
        self.events: List[str] = list(events)

    def matches(self, event: TriggerEvent) -> bool:
        if self.events and event.event_name not in self.events:
            return False
        if not self.branches:
            return True
        # Manual runs without a ref are always accepted
        branch = event.branch
        if branch is None:
            return True
        return any(fnmatch(branch, pattern) for pattern in self.branches)

    def __repr__(self) -> str:
        return f"BranchTrigger(branches={self.branches}, events={self.events})"
