"""Job and dispatch outcome value objects."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Job:
    """A unit of offloaded work published to a worker queue.

    ``payload`` is what the worker receives. ``context`` carries caller-side
    business keys (user, thread, api key) that are never published but are
    merged into a late reply so the completion path can update records.
    """

    queue_name: str
    payload: Dict[str, Any]
    job_id: str = field(default_factory=new_id)
    correlation_id: str = field(default_factory=new_id)
    context: Dict[str, Any] = field(default_factory=dict)
    submitted_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


def is_success_reply(reply: Dict[str, Any]) -> bool:
    """Workers report ``status: "success"``; older ones send ``success: true``."""
    return reply.get("status") == "success" or reply.get("success") is True


@dataclass(frozen=True)
class Completed:
    """The worker replied before the deadline."""

    job: Job
    reply: Dict[str, Any]
    malformed: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.malformed and is_success_reply(self.reply)

    @property
    def error(self) -> Optional[str]:
        if self.succeeded:
            return None
        return self.reply.get("error") or self.reply.get("message")


@dataclass(frozen=True)
class Processing:
    """The deadline passed first; the reply will be handled asynchronously."""

    job: Job

    @property
    def job_id(self) -> str:
        return self.job.job_id


Outcome = Union[Completed, Processing]


@dataclass(frozen=True)
class Notification:
    """A payload to push to one connected subscriber."""

    identity: str
    payload: Dict[str, Any]
