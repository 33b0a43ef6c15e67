"""Public record types served by the dashboard."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


def _dict_factory(items: list[tuple[str, Any]]) -> dict:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in items}


class _Record:
    def to_dict(self) -> dict:
        return asdict(self, dict_factory=_dict_factory)


class AgentRole(Enum):
    MAYOR = "mayor"
    DEACON = "deacon"
    WITNESS = "witness"
    CREW = "crew"
    POLECAT = "polecat"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value) -> "AgentRole":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class CrewStatus(Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class GitState(Enum):
    CLEAN = "clean"
    DIRTY = "dirty"


class MayorStatus(Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"


@dataclass
class Agent(_Record):
    """A supervised agent process; identity is its address."""

    name: str
    address: str
    role: AgentRole
    running: bool = False
    has_work: bool = False
    unread_mail: int = 0
    state: str | None = None
    session: str | None = None
    first_subject: str | None = None


@dataclass
class Rig(_Record):
    """A work group as reported by `gt status`."""

    name: str
    agents: list[Agent] = field(default_factory=list)
    polecats: list[str] = field(default_factory=list)
    polecat_count: int = 0
    crews: list[str] = field(default_factory=list)
    crew_count: int = 0
    has_witness: bool = False
    has_refinery: bool = False

    @property
    def agent_addresses(self) -> list[str]:
        return [a.address for a in self.agents]


@dataclass
class TownStatus(_Record):
    name: str = "Gas Town"
    agents: list[Agent] = field(default_factory=list)
    rigs: list[Rig] = field(default_factory=list)

    def all_agents(self) -> list[Agent]:
        """Town-level agents plus every rig's agents, deduplicated by address."""
        seen: set[str] = set()
        result = []
        for agent in [*self.agents, *(a for rig in self.rigs for a in rig.agents)]:
            if agent.address in seen:
                continue
            seen.add(agent.address)
            result.append(agent)
        return result


@dataclass
class RoleSummary(_Record):
    total: int = 0
    running: int = 0
    with_work: int = 0
    unread_mail: int = 0


@dataclass
class StatusSummary(_Record):
    total_agents: int = 0
    running_agents: int = 0
    agents_with_work: int = 0
    total_unread_mail: int = 0
    by_role: dict[str, RoleSummary] = field(default_factory=dict)


@dataclass
class MayorSession(_Record):
    uptime: str = "N/A"
    current_task: str | None = None
    context_usage_percent: float = 0
    last_activity: str = "N/A"


@dataclass
class MayorState(_Record):
    status: MayorStatus = MayorStatus.OFFLINE
    session: MayorSession | None = None


@dataclass
class MailMessage(_Record):
    """A unit of mail; `id` uniquely identifies it in the gt store."""

    id: str
    sender: str
    recipient: str
    subject: str
    body: str
    timestamp: str
    read: bool = False
    thread_id: str | None = None
    reply_to: str | None = None
    priority: str | None = None
    message_type: str | None = None
    labels: list[str] = field(default_factory=list)
    ephemeral: bool = False


@dataclass
class MailThread(_Record):
    id: str
    subject: str
    messages: list[MailMessage] = field(default_factory=list)
    latest_timestamp: str = ""
    unread_count: int = 0
    participants: list[str] = field(default_factory=list)


@dataclass
class ChatMessage(_Record):
    id: str
    role: str  # "sent" | "received"
    content: str
    timestamp: str
    sender: str | None = None


@dataclass
class CrewMember(_Record):
    name: str
    rig: str
    path: str = ""
    branch: str = "main"
    git_status: GitState = GitState.CLEAN
    status: CrewStatus = CrewStatus.STOPPED
    mail_count: int = 0

    @property
    def id(self) -> str:
        return f"{self.rig}/{self.name}"

    @property
    def address(self) -> str:
        return f"{self.rig}/crew/{self.name}"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["id"] = self.id
        return data


@dataclass
class CrewState(_Record):
    members: list[CrewMember] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "members": [m.to_dict() for m in self.members],
            "total_count": len(self.members),
            "running_count": sum(1 for m in self.members if m.status is CrewStatus.RUNNING),
            "stopped_count": sum(1 for m in self.members if m.status is CrewStatus.STOPPED),
        }


@dataclass
class RigStatus(_Record):
    """A registered rig merged with its runtime state."""

    name: str
    git_url: str = ""
    prefix: str = ""
    added_at: str = ""
    polecat_count: int = 0
    crew_count: int = 0
    agents: list[str] = field(default_factory=list)
    running: bool = False
    parked: bool = False
    docked: bool = False


@dataclass
class OrphanedBead(_Record):
    id: str
    title: str | None = None
    polecat: str | None = None
    rig: str | None = None
    reason: str = "Orphaned bead detected by gt orphans"


@dataclass
class Issue(_Record):
    id: str
    title: str
    description: str = ""
    status: str = "open"
    priority: int = 2
    issue_type: str = "task"
    created_at: str = ""
    created_by: str = ""
    updated_at: str = ""
    assignee: str | None = None
    labels: list[str] = field(default_factory=list)


@dataclass
class IssueComment(_Record):
    id: str
    issue_id: str = ""
    author: str = ""
    text: str = ""
    created_at: str = ""


@dataclass
class IssuePage(_Record):
    """One page of issues; `next_cursor` is the created_at of the last issue."""

    issues: list[Issue] = field(default_factory=list)
    total: int = 0
    has_more: bool = False
    next_cursor: str | None = None


@dataclass
class GtInfo(_Record):
    """Where the dashboard runs gt from, and how that was decided."""

    gt_root: str | None = None
    source: str = "not configured"
    env_var: str | None = None
    configured: bool = False
    exists: bool = False
    beads_path: str | None = None


@dataclass
class DeaconStatus(_Record):
    alive: bool = False
    pid: int | None = None
    version: str | None = None
    started_at: str | None = None
    uptime_seconds: int | None = None
    interval: str = "5s"
    last_activity: str | None = None
    recent_logs: list[str] = field(default_factory=list)
    error_logs: list[str] = field(default_factory=list)


@dataclass
class ActionResult(_Record):
    """Outcome of a mutating command."""

    success: bool
    message: str = ""
    output: str = ""
    stderr: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {"success": self.success, "message": self.message, "output": self.output}
        if self.stderr:
            data["stderr"] = self.stderr
        data.update(self.extra)
        return data
