"""Dashboard operations over the gt and bd CLIs.

Every operation validates its inputs before anything is spawned, runs the
tool through the GtRunner with the call site's timeout and phrase table,
parses, reconciles where the stream is polled, and projects into records.
Failed invocations surface as InvocationError with a classified kind and a
short message; the transport decides how to present them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from gtdash import classifier as phrases
from gtdash.classifier import ErrorKind, FailureClassifier
from gtdash.config import DashboardConfig
from gtdash.deacon import read_deacon_status
from gtdash.errors import ConfigError, InvocationError, ValidationError
from gtdash.invoker import CommandResult, GtRunner, StatusCache
from gtdash.models import (
    ActionResult,
    ChatMessage,
    CrewState,
    DeaconStatus,
    GtInfo,
    IssueComment,
    IssuePage,
    MailMessage,
    MailThread,
    MayorState,
    OrphanedBead,
    RigStatus,
    StatusSummary,
    TownStatus,
)
from gtdash.parsers import (
    parse_comments_json,
    parse_crew_list,
    parse_inbox_json,
    parse_inbox_text,
    parse_issues_json,
    parse_mail_count,
    parse_orphans,
    parse_rig_list,
    parse_rig_state,
    parse_sent_json,
    parse_status_json,
)
from gtdash.projection import (
    project_chat,
    project_comment,
    project_crew_member,
    project_issue,
    project_mail,
    project_mayor,
    project_orphan,
    project_rig_status,
    project_town_status,
    summarize_status,
)
from gtdash.reconciler import (
    RECEIVED,
    MessageReconciler,
    classify_direction,
    filter_by_sender,
    group_threads,
    merge_unique,
    sender_scope_pattern,
    sort_latest_first,
    timestamp_key,
)
from gtdash.sanitize import (
    check_free_text,
    validate_address,
    validate_bead_id,
    validate_git_url,
    validate_identifier,
    validate_label,
    validate_name,
)

logger = logging.getLogger(__name__)

OVERSEER = "overseer"
DEFAULT_NUDGE = "nudge"
SWEEP_REASON = "Auto-closed by Deacon sweep: orphaned bead"

RIG_ACTIONS = {
    "start": "Started rig {name}",
    "stop": "Stopped rig {name}",
    "park": "Parked rig {name}",
    "unpark": "Unparked rig {name}",
    "remove": "Removed rig {name} from registry",
}
DEACON_ACTIONS = ("start", "stop", "restart")
ISSUE_STATUSES = ("open", "in_progress", "blocked", "closed")
ISSUE_SORTS = ("priority", "created", "updated")
ISSUE_FIELDS = (
    "title", "description", "priority", "assignee", "status",
    "labels", "due", "estimate", "type",
)
STATUS_TARGETS = ("open", "hooked", "in_progress", "blocked", "closed")
REFINERY_VIEWS = ("queue", "status", "blocked")
DUE_MAX_LENGTH = 64


def _check_priority(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 4:
        raise ValidationError("priority must be between 0 and 4", field="priority")
    return value


def _action(result: CommandResult, message: str, **extra) -> ActionResult:
    return ActionResult(
        success=True,
        message=message,
        output=result.stdout.strip(),
        stderr=result.stderr.strip() or None,
        extra=extra,
    )


class DashboardService:
    """Transport-independent facade used by the REST server and the CLI."""

    def __init__(
        self,
        config: DashboardConfig | None = None,
        runner: GtRunner | None = None,
        reconciler: MessageReconciler | None = None,
    ):
        self.config = config or DashboardConfig.load()
        self.runner = runner or GtRunner(self.config.paths)
        self.reconciler = reconciler or MessageReconciler()
        self._status_cache = StatusCache(
            self._fetch_status, ttl=self.config.limits.status_cache_ttl
        )

    @property
    def timeouts(self):
        return self.config.timeouts

    @property
    def limits(self):
        return self.config.limits

    # --- invocation helpers ---

    async def _gt(
        self,
        *args: str,
        timeout: float,
        classifier: FailureClassifier = phrases.GENERIC,
        target: str = "",
        cwd: str | None = None,
    ) -> CommandResult:
        try:
            return await self.runner.gt(*args, timeout=timeout, cwd=cwd, classifier=classifier)
        except InvocationError as e:
            self._describe(e, classifier, target)
            raise

    async def _bd(
        self,
        *args: str,
        timeout: float,
        classifier: FailureClassifier = phrases.GENERIC,
        target: str = "",
        cwd: str | None = None,
    ) -> CommandResult:
        try:
            return await self.runner.bd(
                *args, timeout=timeout, cwd=cwd or self._beads_cwd(), classifier=classifier
            )
        except InvocationError as e:
            self._describe(e, classifier, target)
            raise

    @staticmethod
    def _describe(error: InvocationError, classifier: FailureClassifier, target: str) -> None:
        """Swap the raw failure message for the phrase table's short one."""
        if error.kind is ErrorKind.UNKNOWN:
            return
        error.message = classifier.describe(error.kind, error.message, target=target)
        error.args = (error.message,)

    def _require_base_path(self) -> Path:
        if not self.config.paths.gt_base_path:
            raise ConfigError("GT_BASE_PATH not configured. Set paths.gt_base_path or GT_BASE_PATH.")
        return Path(self.config.paths.gt_base_path)

    def _require_beads_path(self) -> Path:
        beads = self.runner.beads_path
        if not beads:
            raise ConfigError("BEADS_PATH not configured. Set paths.beads_path or BEADS_PATH.")
        return Path(beads)

    def _beads_cwd(self) -> str:
        return str(self._require_beads_path().parent)

    def _invalidate_status(self) -> None:
        self._status_cache.reset()

    # --- town status ---

    async def _fetch_status(self) -> dict | None:
        result = await self._gt("status", "--json", timeout=self.timeouts.status)
        return parse_status_json(result.stdout).first()

    async def raw_status(self) -> dict | None:
        """Parsed `gt status --json`, shared by concurrent callers for a few seconds."""
        return await self._status_cache.get()

    async def town_status(self) -> TownStatus:
        return project_town_status(await self.raw_status())

    async def status_summary(self) -> StatusSummary:
        return summarize_status(await self.town_status())

    # --- mayor ---

    async def mayor_status(self) -> MayorState:
        try:
            raw = await self.raw_status()
        except InvocationError as e:
            logger.warning("Mayor status unavailable: %s", e.message)
            return project_mayor(None)
        return project_mayor((raw or {}).get("mayor"))

    async def nudge_mayor(self, message: str | None = None) -> ActionResult:
        text = check_free_text(message, "message", self.limits.nudge_max_length, required=False)
        args = ["nudge", "mayor", text] if text else ["nudge", "mayor"]
        result = await self._gt(
            *args, timeout=self.timeouts.nudge, classifier=phrases.NUDGE, target="Mayor"
        )
        return _action(result, "Nudge sent to Mayor")

    async def restart_mayor(self) -> ActionResult:
        try:
            result = await self._gt(
                "mayor", "restart",
                timeout=self.timeouts.mayor_restart,
                classifier=phrases.MAYOR_RESTART,
            )
        except InvocationError as e:
            if e.kind is ErrorKind.ALREADY_RUNNING:
                return ActionResult(
                    success=True,
                    message=e.message,
                    output=e.stdout.strip(),
                    extra={"already_running": True},
                )
            raise
        finally:
            self._invalidate_status()
        return _action(result, "Mayor restarted successfully")

    # --- crew ---

    async def _crew_mail_count(self, name: str) -> int | None:
        try:
            result = await self._gt("crew", "status", name, timeout=self.timeouts.quick_status)
        except InvocationError as e:
            logger.debug("crew status for %s failed: %s", name, e.message)
            return None
        return parse_mail_count(result.stdout)

    async def list_crew(self) -> CrewState:
        result = await self._gt("crew", "list", timeout=self.timeouts.status)
        raw_members = parse_crew_list(result.stdout).records
        counts = await asyncio.gather(*(
            self._crew_mail_count(raw["name"]) if raw.get("running") else _none()
            for raw in raw_members
        ))
        return CrewState(members=[
            project_crew_member(raw, count) for raw, count in zip(raw_members, counts)
        ])

    async def add_crew(self, name: str, rig: str, branch: bool = False) -> ActionResult:
        validate_name(name, "name")
        validate_identifier(rig, "rig")
        args = ["crew", "add", name, "--rig", rig]
        if branch:
            args.append("--branch")
        result = await self._gt(
            *args,
            timeout=self.timeouts.crew_add,
            classifier=phrases.CREW_ADD,
            target=f"{rig}/{name}",
        )
        self._invalidate_status()
        return _action(result, f"Created crew workspace {rig}/{name}", name=name, rig=rig)

    async def start_crew(self, name: str, rig: str | None = None) -> ActionResult:
        validate_identifier(name, "name")
        args = ["crew", "start"]
        if rig is not None:
            args.append(validate_identifier(rig, "rig"))
        args.append(name)
        target = f"{rig}/{name}" if rig else name
        result = await self._gt(
            *args,
            timeout=self.timeouts.crew_start,
            classifier=phrases.CREW_START,
            target=target,
        )
        self._invalidate_status()
        return _action(result, f"Started crew member {target}")

    async def remove_crew(self, name: str, rig: str | None = None, force: bool = False) -> ActionResult:
        validate_identifier(name, "name")
        if rig is not None:
            validate_identifier(rig, "rig")
        target = f"{rig}/{name}" if rig else name
        args = ["crew", "remove", target]
        if force:
            args.append("--force")
        result = await self._gt(
            *args,
            timeout=self.timeouts.crew_remove,
            classifier=phrases.CREW_REMOVE,
            target=target,
        )
        self._invalidate_status()
        return _action(result, f"Removed crew workspace {target}")

    async def _nudge(self, target: str, message: str | None) -> ActionResult:
        text = check_free_text(
            message, "message", self.limits.nudge_max_length, default=DEFAULT_NUDGE
        )
        result = await self._gt(
            "nudge", target, "-m", text,
            timeout=self.timeouts.nudge,
            classifier=phrases.NUDGE,
            target=target,
        )
        return _action(result, f"Nudge sent to {target}", target=target)

    async def nudge_crew(self, name: str, rig: str, message: str | None = None) -> ActionResult:
        validate_identifier(name, "name")
        validate_identifier(rig, "rig")
        return await self._nudge(f"{rig}/crew/{name}", message)

    async def nudge_polecat(self, name: str, rig: str, message: str | None = None) -> ActionResult:
        validate_identifier(name, "name")
        validate_identifier(rig, "rig")
        return await self._nudge(f"{rig}/{name}", message)

    # --- witness ---

    async def start_witness(self, rig: str) -> ActionResult:
        validate_identifier(rig, "rig")
        result = await self._gt(
            "witness", "start", rig,
            timeout=self.timeouts.crew_start,
            classifier=phrases.WITNESS_START,
            target=rig,
        )
        self._invalidate_status()
        return _action(result, f"Started witness for {rig}", rig=rig)

    async def nudge_witness(self, rig: str, message: str | None = None) -> ActionResult:
        validate_identifier(rig, "rig")
        return await self._nudge(f"{rig}/witness", message)

    # --- rigs ---

    def _read_rig_registry(self, base: Path) -> dict:
        registry_path = base / "mayor" / "rigs.json"
        try:
            data = json.loads(registry_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to read rigs registry %s: %s", registry_path, e)
            return {}
        rigs = data.get("rigs") if isinstance(data, dict) else None
        return rigs if isinstance(rigs, dict) else {}

    async def _rig_state(self, name: str) -> str | None:
        try:
            result = await self._gt("rig", "status", name, timeout=self.timeouts.quick_status)
        except InvocationError as e:
            logger.debug("rig status for %s failed: %s", name, e.message)
            return None
        return parse_rig_state(result.stdout)

    async def list_rigs(self) -> list[RigStatus]:
        """Registered rigs (`mayor/rigs.json`) merged with list counts and status."""
        registry = self._read_rig_registry(self._require_base_path())
        if not registry:
            return []

        stats: dict[str, dict] = {}
        try:
            result = await self._gt("rig", "list", timeout=self.timeouts.quick_status)
            stats = {r["name"]: r for r in parse_rig_list(result.stdout).records}
        except InvocationError as e:
            logger.warning("gt rig list failed: %s", e.message)

        names = list(registry)
        states = await asyncio.gather(*(self._rig_state(name) for name in names))
        return [
            project_rig_status(
                name,
                registry[name] if isinstance(registry[name], dict) else {},
                stats.get(name),
                state,
            )
            for name, state in zip(names, states)
        ]

    async def add_rig(self, name: str, git_url: str, prefix: str | None = None) -> ActionResult:
        validate_name(name, "name")
        validate_git_url(git_url, "git_url")
        args = ["rig", "add", name, git_url]
        if prefix:
            args.extend(["--prefix", validate_identifier(prefix, "prefix")])
        result = await self._gt(
            *args,
            timeout=self.timeouts.rig_add,
            classifier=phrases.RIG,
            target=name,
        )
        self._invalidate_status()
        return _action(result, f"Added rig {name}", name=name)

    async def rig_action(self, name: str, action: str) -> ActionResult:
        validate_identifier(name, "name")
        if action not in RIG_ACTIONS:
            raise ValidationError(
                f"Invalid action. Must be one of: {', '.join(RIG_ACTIONS)}", field="action"
            )
        result = await self._gt(
            "rig", action, name,
            timeout=self.timeouts.rig_action,
            classifier=phrases.RIG,
            target=name,
        )
        self._invalidate_status()
        return _action(result, RIG_ACTIONS[action].format(name=name), name=name, action=action)

    # --- mail ---

    async def mail_inbox(self, address: str = OVERSEER) -> list[MailMessage]:
        """JSON inbox, falling back to the text listing when JSON is unusable."""
        validate_address(address)
        result = await self._gt(
            "mail", "inbox", address, "--json", timeout=self.timeouts.mail
        )
        parsed = parse_inbox_json(result.stdout, address=address)
        if not parsed.ok:
            text = await self._gt("mail", "inbox", address, timeout=self.timeouts.mail)
            parsed = parse_inbox_text(text.stdout, address=address)
        return sort_latest_first(project_mail(r) for r in parsed.records)

    async def crew_inbox(self, member: str) -> list[MailMessage]:
        validate_address(member, "member")
        result = await self._gt("mail", "inbox", member, timeout=self.timeouts.mail)
        parsed = parse_inbox_text(result.stdout, address=member)
        return sort_latest_first(project_mail(r) for r in parsed.records)

    async def mail_sent(self) -> list[MailMessage]:
        result = await self._bd(
            "list", "--type", "message", "--all", "--json",
            "--limit", str(self.limits.sent_mail_limit),
            timeout=self.timeouts.beads,
        )
        parsed = parse_sent_json(result.stdout, sender=OVERSEER)
        return sort_latest_first(project_mail(r) for r in parsed.records)

    async def mail_threads(self, address: str = OVERSEER) -> list[MailThread]:
        inbox, sent = await asyncio.gather(self.mail_inbox(address), self.mail_sent())
        return group_threads(merge_unique(inbox, sent), me=address)

    async def send_mail(
        self,
        to: str,
        body: str,
        subject: str | None = None,
        reply_to: str | None = None,
    ) -> ActionResult:
        validate_address(to, "to")
        text = check_free_text(body, "body", self.limits.body_max_length)
        title = check_free_text(subject, "subject", self.limits.subject_max_length, required=False)
        args = ["mail", "send", to]
        if title:
            args.extend(["-s", title])
        args.extend(["-m", text])
        if reply_to:
            args.extend(["--reply-to", validate_bead_id(reply_to, "reply_to"), "--type", "reply"])
        result = await self._gt(*args, timeout=self.timeouts.mail, target=to)
        return _action(result, f"Message sent to {to}", to=to)

    async def mark_read(self, ids: list[str]) -> ActionResult:
        if not isinstance(ids, list) or not ids:
            raise ValidationError("ids must be a non-empty list", field="ids")
        for message_id in ids:
            validate_bead_id(message_id, "message id")
        result = await self._gt("mail", "mark-read", *ids, timeout=self.timeouts.mail)
        return _action(result, f"Marked {len(ids)} message(s) read", marked_count=len(ids))

    # --- crew chat ---

    async def poll_crew_chat(self, rig: str | None = None, name: str | None = None) -> list[ChatMessage]:
        """New crew replies in the overseer inbox, each delivered once per scope."""
        if rig:
            validate_identifier(rig, "rig")
        if name:
            validate_identifier(name, "name")
        result = await self._gt("mail", "inbox", "--json", timeout=self.timeouts.mail)
        messages = [project_mail(r) for r in parse_inbox_json(result.stdout).records]
        from_crew = [m for m in messages if classify_direction(m.sender) == RECEIVED]
        pattern = sender_scope_pattern(rig, name)
        scoped = filter_by_sender(from_crew, pattern)
        fresh = self.reconciler.reconcile(f"crew-chat:{pattern or '*'}", scoped)
        return sort_latest_first(project_chat(m) for m in fresh)

    async def send_crew_chat(self, rig: str, name: str, message: str) -> ActionResult:
        validate_identifier(rig, "rig")
        validate_identifier(name, "name")
        text = check_free_text(message, "message", self.limits.body_max_length)
        target = f"{rig}/crew/{name}"
        result = await self._gt(
            "mail", "send", target, "-m", text,
            timeout=self.timeouts.chat_send,
            target=target,
        )
        return _action(result, f"Message sent to {target}", target=target)

    # --- deacon ---

    async def deacon_status(self) -> DeaconStatus:
        beads = self._require_beads_path()
        return await asyncio.to_thread(read_deacon_status, str(beads))

    async def deacon_control(self, action: str) -> ActionResult:
        if action not in DEACON_ACTIONS:
            raise ValidationError(
                "Invalid action. Must be start, stop, or restart", field="action"
            )
        db = str(self._require_beads_path() / "beads.db")
        if action == "restart":
            args = ["daemon", "restart", "--db", db]
        else:
            args = ["daemon", f"--{action}", "--db", db]
        result = await self._bd(*args, timeout=self.timeouts.beads)
        return _action(result, f"Deacon {action} command executed successfully", action=action)

    async def sweep_preview(self) -> list[OrphanedBead]:
        """`gt orphans`; a non-zero exit still yields whatever it printed."""
        try:
            result = await self._gt("orphans", timeout=self.timeouts.orphans)
            stdout = result.stdout
        except InvocationError as e:
            if e.timed_out or e.exit_code is None:
                raise
            stdout = e.stdout
        return [project_orphan(r) for r in parse_orphans(stdout).records]

    async def sweep(self, dry_run: bool = False) -> ActionResult:
        orphans = await self.sweep_preview()
        if dry_run:
            return ActionResult(
                success=True,
                message=f"{len(orphans)} orphaned bead(s) would be closed",
                extra={
                    "dry_run": True,
                    "orphaned_beads": [o.to_dict() for o in orphans],
                    "summary": {"checked": len(orphans), "would_close": len(orphans)},
                },
            )

        closed: list[OrphanedBead] = []
        errors: list[dict] = []
        for orphan in orphans:
            try:
                await self._bd("close", orphan.id, "--reason", SWEEP_REASON, timeout=self.timeouts.beads)
            except InvocationError as e:
                errors.append({"id": orphan.id, "error": e.details or e.message})
                continue
            closed.append(orphan)
        if closed:
            logger.info("Sweep closed %d orphaned bead(s)", len(closed))
        return ActionResult(
            success=not errors,
            message=f"Closed {len(closed)} of {len(orphans)} orphaned bead(s)",
            extra={
                "closed_beads": [o.to_dict() for o in closed],
                "errors": errors,
                "summary": {"checked": len(orphans), "closed": len(closed), "errors": len(errors)},
            },
        )

    # --- issues ---

    async def list_issues(
        self,
        status: str | None = None,
        search: str | None = None,
        assignee: str | None = None,
        priority: int | None = None,
        sort: str = "priority",
        order: str = "asc",
        limit: int = 50,
        cursor: str | None = None,
    ) -> IssuePage:
        """Filtered, sorted page of beads issues (agent beads excluded)."""
        args = ["list", "--json", "--limit", "0"]
        if status:
            if status not in ISSUE_STATUSES:
                raise ValidationError(f"Invalid status: {status}", field="status")
            args.extend(["--status", status])
        else:
            args.append("--all")
        if assignee:
            args.extend(["--assignee", validate_address(assignee, "assignee")])
        if priority is not None:
            args.extend(["--priority", str(_check_priority(priority))])
        needle = check_free_text(search, "search", self.limits.subject_max_length, required=False)
        if needle:
            args.extend(["--title-contains", needle])
        if sort not in ISSUE_SORTS:
            raise ValidationError(f"Invalid sort: {sort}", field="sort")
        if order not in ("asc", "desc"):
            raise ValidationError(f"Invalid order: {order}", field="order")
        if not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be a positive integer", field="limit")

        result = await self._bd(*args, timeout=self.timeouts.beads)
        issues = [project_issue(r) for r in parse_issues_json(result.stdout).records]
        issues = [i for i in issues if i.issue_type != "agent"]
        if cursor:
            after = timestamp_key(cursor)
            issues = [i for i in issues if timestamp_key(i.created_at) > after]
        if needle:
            lowered = needle.lower()
            issues = [
                i for i in issues
                if lowered in i.title.lower() or lowered in i.description.lower()
            ]

        if sort == "priority":
            key = lambda i: i.priority  # noqa: E731
        elif sort == "created":
            key = lambda i: timestamp_key(i.created_at)  # noqa: E731
        else:
            key = lambda i: timestamp_key(i.updated_at)  # noqa: E731
        issues.sort(key=key, reverse=order == "desc")

        page = issues[:limit]
        has_more = len(issues) > limit
        return IssuePage(
            issues=page,
            total=len(issues),
            has_more=has_more,
            next_cursor=page[-1].created_at if has_more and page else None,
        )

    def _issue_cwd(self, rig: str | None) -> str | None:
        """Multi-rig towns keep each rig's issues in <base>/<rig>/.beads."""
        if not rig:
            return None
        validate_identifier(rig, "rig")
        beads = self._require_base_path() / rig / ".beads"
        if not beads.is_dir():
            raise ValidationError(f"Rig {rig} has no beads directory", field="rig")
        return str(beads)

    async def update_issue(self, issue_id: str, updates: dict, rig: str | None = None) -> ActionResult:
        """`bd update` with one flag per supplied field; absent fields are left alone."""
        validate_bead_id(issue_id, "id")
        if not isinstance(updates, dict):
            raise ValidationError("updates must be an object", field="updates")
        unknown = sorted(set(updates) - set(ISSUE_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown field(s): {', '.join(unknown)}", field=unknown[0])
        if not updates:
            raise ValidationError("No fields to update", field="updates")
        cwd = self._issue_cwd(rig)

        args = ["update", issue_id]
        applied: dict = {}
        if "title" in updates:
            applied["title"] = check_free_text(
                updates["title"], "title", self.limits.subject_max_length
            )
            args.extend(["--title", applied["title"]])
        if "description" in updates:
            applied["description"] = check_free_text(
                updates["description"], "description", self.limits.body_max_length, required=False
            )
            args.extend(["-d", applied["description"]])
        if "priority" in updates:
            applied["priority"] = _check_priority(updates["priority"])
            args.extend(["-p", str(applied["priority"])])
        if "assignee" in updates:
            assignee = updates["assignee"] or ""
            applied["assignee"] = validate_address(assignee, "assignee") if assignee else ""
            args.extend(["-a", applied["assignee"]])
        if "status" in updates:
            if updates["status"] not in STATUS_TARGETS:
                raise ValidationError(
                    f"Invalid status. Must be one of: {', '.join(STATUS_TARGETS)}", field="status"
                )
            applied["status"] = updates["status"]
            args.extend(["-s", applied["status"]])
        if "labels" in updates:
            labels = updates["labels"]
            if not isinstance(labels, list):
                raise ValidationError("labels must be a list", field="labels")
            applied["labels"] = [validate_label(label) for label in labels]
            for label in applied["labels"] or [""]:
                args.extend(["--set-labels", label])
        if "due" in updates:
            applied["due"] = check_free_text(updates["due"], "due", DUE_MAX_LENGTH, required=False)
            args.extend(["--due", applied["due"]])
        if "estimate" in updates:
            estimate = updates["estimate"]
            if isinstance(estimate, bool) or not isinstance(estimate, int) or estimate < 0:
                raise ValidationError("estimate must be a non-negative integer", field="estimate")
            applied["estimate"] = estimate
            args.extend(["-e", str(estimate)])
        if "type" in updates:
            applied["type"] = validate_identifier(updates["type"], "type")
            args.extend(["-t", applied["type"]])

        result = await self._bd(
            *args, timeout=self.timeouts.beads, classifier=phrases.ISSUE, target=issue_id, cwd=cwd
        )
        return _action(result, f"Updated issue {issue_id}", id=issue_id, updates=applied)

    async def set_issue_status(
        self,
        issue_id: str,
        status: str,
        reason: str | None = None,
        rig: str | None = None,
    ) -> ActionResult:
        """Close, reopen, or move an issue to another status."""
        validate_bead_id(issue_id, "id")
        if not status:
            raise ValidationError("status is required", field="status")
        if status not in STATUS_TARGETS:
            raise ValidationError(
                f"Invalid status. Must be one of: {', '.join(STATUS_TARGETS)}", field="status"
            )
        note = check_free_text(reason, "reason", self.limits.subject_max_length, required=False)
        cwd = self._issue_cwd(rig)

        if status == "closed":
            args = ["close", issue_id, "--reason", note] if note else ["close", issue_id]
        elif status == "open":
            args = ["reopen", issue_id]
        else:
            args = ["update", issue_id, "--status", status]
        result = await self._bd(
            *args, timeout=self.timeouts.beads, classifier=phrases.ISSUE, target=issue_id, cwd=cwd
        )
        return _action(result, f"Issue {issue_id} set to {status}", id=issue_id, status=status)

    async def issue_comments(self, issue_id: str, rig: str | None = None) -> list[IssueComment]:
        validate_bead_id(issue_id, "id")
        cwd = self._issue_cwd(rig)
        result = await self._bd(
            "comments", issue_id, "--json",
            timeout=self.timeouts.beads,
            classifier=phrases.ISSUE,
            target=issue_id,
            cwd=cwd,
        )
        parsed = parse_comments_json(result.stdout, issue_id=issue_id)
        return [project_comment(r) for r in parsed.records]

    # --- refinery ---

    async def refinery(self, rig: str, view: str = "queue") -> ActionResult:
        """Raw `gt refinery queue|status|blocked <rig>` output."""
        validate_identifier(rig, "rig")
        if view not in REFINERY_VIEWS:
            raise ValidationError(
                f"Invalid view. Must be one of: {', '.join(REFINERY_VIEWS)}", field="view"
            )
        result = await self._gt(
            "refinery", view, rig,
            timeout=self.timeouts.refinery,
            classifier=phrases.REFINERY,
            target=rig,
        )
        return _action(result, f"Refinery {view} for {rig}", rig=rig, view=view)

    # --- configuration ---

    def gt_info(self) -> GtInfo:
        root = self.config.paths.gt_base_path or None
        env_var = os.environ.get("GT_BASE_PATH") or None
        if root is None:
            source = "not configured"
        elif root == env_var:
            source = "GT_BASE_PATH"
        else:
            source = "config file"
        return GtInfo(
            gt_root=root,
            source=source,
            env_var=env_var,
            configured=root is not None,
            exists=root is not None and Path(root).is_dir(),
            beads_path=self.config.paths.resolved_beads_path() or None,
        )


async def _none() -> None:
    return None
