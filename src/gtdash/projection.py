"""Projection of parser records into the public record types.

Pure functions: no I/O and no logging. Every declared field of the target
record is always supplied, so callers never see a partial record.
"""

from __future__ import annotations

from datetime import datetime, timezone

from gtdash.models import (
    Agent,
    AgentRole,
    ChatMessage,
    CrewMember,
    CrewStatus,
    GitState,
    Issue,
    IssueComment,
    MailMessage,
    MayorSession,
    MayorState,
    MayorStatus,
    OrphanedBead,
    Rig,
    RigStatus,
    RoleSummary,
    StatusSummary,
    TownStatus,
)
from gtdash.reconciler import RECEIVED, timestamp_key


def project_agent(raw: dict) -> Agent:
    return Agent(
        name=raw.get("name", ""),
        address=raw.get("address", ""),
        role=AgentRole.parse(raw.get("role")),
        running=bool(raw.get("running", False)),
        has_work=bool(raw.get("has_work", False)),
        unread_mail=int(raw.get("unread_mail") or 0),
        state=raw.get("state"),
        session=raw.get("session"),
        first_subject=raw.get("first_subject"),
    )


def project_rig(raw: dict) -> Rig:
    polecats = list(raw.get("polecats") or [])
    crews = list(raw.get("crews") or [])
    return Rig(
        name=raw.get("name", ""),
        agents=[project_agent(a) for a in raw.get("agents") or []],
        polecats=polecats,
        polecat_count=int(raw.get("polecat_count", len(polecats)) or 0),
        crews=crews,
        crew_count=int(raw.get("crew_count", len(crews)) or 0),
        has_witness=bool(raw.get("has_witness", False)),
        has_refinery=bool(raw.get("has_refinery", False)),
    )


def project_town_status(raw: dict | None) -> TownStatus:
    if not raw:
        return TownStatus()
    return TownStatus(
        name=raw.get("name") or "Gas Town",
        agents=[project_agent(a) for a in raw.get("agents") or []],
        rigs=[project_rig(r) for r in raw.get("rigs") or []],
    )


def summarize_status(town: TownStatus) -> StatusSummary:
    """Aggregate counts over every agent in the town, overall and per role."""
    summary = StatusSummary()
    for agent in town.all_agents():
        summary.total_agents += 1
        summary.running_agents += int(agent.running)
        summary.agents_with_work += int(agent.has_work)
        summary.total_unread_mail += agent.unread_mail

        role = summary.by_role.setdefault(agent.role.value, RoleSummary())
        role.total += 1
        role.running += int(agent.running)
        role.with_work += int(agent.has_work)
        role.unread_mail += agent.unread_mail
    return summary


def relative_time(value: str | None, now: datetime | None = None) -> str:
    """`just now`, `5m ago`, `3h ago`, `2d ago`; unparseable values pass through."""
    if not value:
        return "N/A"
    seconds = timestamp_key(value)
    if seconds == float("-inf"):
        return value
    now = now or datetime.now(timezone.utc)
    minutes = int((now.timestamp() - seconds) // 60)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


_MAYOR_STATUS = {
    "active": MayorStatus.ONLINE,
    "online": MayorStatus.ONLINE,
    "busy": MayorStatus.BUSY,
}


def project_mayor(raw: dict | None, now: datetime | None = None) -> MayorState:
    if not raw:
        return MayorState(status=MayorStatus.OFFLINE, session=None)
    status = _MAYOR_STATUS.get(str(raw.get("status", "")).lower(), MayorStatus.OFFLINE)
    session = raw.get("session")
    if not isinstance(session, dict):
        return MayorState(status=status, session=None)
    return MayorState(
        status=status,
        session=MayorSession(
            uptime=session.get("uptime") or "N/A",
            current_task=session.get("current_task"),
            context_usage_percent=session.get("context_percent") or 0,
            last_activity=relative_time(session.get("last_activity"), now),
        ),
    )


def project_mail(raw: dict) -> MailMessage:
    return MailMessage(
        id=raw["id"],
        sender=raw.get("sender", "unknown"),
        recipient=raw.get("recipient", ""),
        subject=raw.get("subject", "(no subject)"),
        body=raw.get("body", ""),
        timestamp=raw.get("timestamp", ""),
        read=bool(raw.get("read", False)),
        thread_id=raw.get("thread_id"),
        reply_to=raw.get("reply_to"),
        priority=raw.get("priority"),
        message_type=raw.get("message_type"),
        labels=list(raw.get("labels") or []),
        ephemeral=bool(raw.get("ephemeral", False)),
    )


def project_chat(message: MailMessage, role: str = RECEIVED) -> ChatMessage:
    """Mail as a chat bubble: the body, or the subject when the body is empty."""
    return ChatMessage(
        id=message.id,
        role=role,
        content=message.body or message.subject,
        timestamp=message.timestamp,
        sender=message.sender,
    )


def project_crew_member(raw: dict, mail_count: int | None = None) -> CrewMember:
    return CrewMember(
        name=raw["name"],
        rig=raw.get("rig", ""),
        path=raw.get("path", ""),
        branch=raw.get("branch") or "main",
        git_status=GitState.DIRTY if raw.get("git_status") == "dirty" else GitState.CLEAN,
        status=CrewStatus.RUNNING if raw.get("running") else CrewStatus.STOPPED,
        mail_count=mail_count if mail_count is not None else int(raw.get("mail_count") or 0),
    )


def project_rig_status(name: str, registry_entry: dict | None, stats: dict | None, state: str | None) -> RigStatus:
    """Merge a rigs.json entry with `gt rig list` counts and `gt rig status` state.

    Without an explicit state a rig counts as running when it has agents.
    """
    entry = registry_entry or {}
    stats = stats or {}
    beads = entry.get("beads") if isinstance(entry.get("beads"), dict) else {}
    agents = list(stats.get("agents") or [])
    if state:
        running, parked, docked = state == "RUNNING", state == "PARKED", state == "DOCKED"
    else:
        running, parked, docked = bool(agents), False, False
    return RigStatus(
        name=name,
        git_url=entry.get("git_url") or "",
        prefix=beads.get("prefix") or "",
        added_at=entry.get("added_at") or "",
        polecat_count=int(stats.get("polecats") or 0),
        crew_count=int(stats.get("crew") or 0),
        agents=agents,
        running=running,
        parked=parked,
        docked=docked,
    )


def project_orphan(raw: dict) -> OrphanedBead:
    return OrphanedBead(
        id=raw["id"],
        title=raw.get("title"),
        polecat=raw.get("polecat"),
        rig=raw.get("rig"),
    )


def project_issue(raw: dict) -> Issue:
    return Issue(
        id=raw["id"],
        title=raw.get("title", "(untitled)"),
        description=raw.get("description", ""),
        status=raw.get("status", "open"),
        priority=int(raw.get("priority", 2)),
        issue_type=raw.get("issue_type", "task"),
        created_at=raw.get("created_at", ""),
        created_by=raw.get("created_by", ""),
        updated_at=raw.get("updated_at", ""),
        assignee=raw.get("assignee"),
        labels=list(raw.get("labels") or []),
    )


def project_comment(raw: dict) -> IssueComment:
    return IssueComment(
        id=raw["id"],
        issue_id=raw.get("issue_id", ""),
        author=raw.get("author", ""),
        text=raw.get("text", ""),
        created_at=raw.get("created_at", ""),
    )
