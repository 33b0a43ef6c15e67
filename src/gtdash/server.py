"""REST API over DashboardService.

Paths mirror the dashboard's /api routes. Domain errors are turned into
JSON bodies `{"error", "kind", "details"}` with a status code chosen by
error kind; nothing else about a failure leaves the process.
"""

from __future__ import annotations

import json
import logging

from aiohttp import web

from gtdash import __version__
from gtdash.classifier import ErrorKind
from gtdash.errors import ConfigError, DashboardError, ValidationError
from gtdash.service import DashboardService

logger = logging.getLogger(__name__)

KIND_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NOT_RUNNING: 400,
    ErrorKind.DIRTY_WORKSPACE: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ALREADY_RUNNING: 409,
    ErrorKind.UNKNOWN: 500,
}


def status_for(error: DashboardError) -> int:
    if isinstance(error, ConfigError):
        return 503
    return KIND_STATUS.get(error.kind, 500)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except DashboardError as e:
        body = e.to_dict()
        if e.kind is ErrorKind.DIRTY_WORKSPACE:
            body["can_force"] = True
        return web.json_response(body, status=status_for(e))
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return web.json_response(
            {"error": "Internal server error", "kind": ErrorKind.UNKNOWN.value}, status=500
        )


async def _json_body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _query_int(request: web.Request, name: str, default: int | None = None) -> int | None:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", field=name)


def _ok(record) -> web.Response:
    return web.json_response(record.to_dict())


def _records(key: str, records: list, **extra) -> web.Response:
    return web.json_response({key: [r.to_dict() for r in records], **extra})


class RESTAPIHandler:
    """REST API over DashboardService: town status, agents, rigs, mail, deacon, issues, refinery."""

    def __init__(self, service: DashboardService):
        self._service = service
        self._app = None

    async def create_app(self) -> web.Application:
        app = web.Application(middlewares=[error_middleware])
        r = app.router

        r.add_get("/api/health", self.handle_health)
        r.add_get("/api/config", self.handle_config)
        r.add_get("/api/gt-info", self.handle_gt_info)

        # Status
        r.add_get("/api/gt-status", self.handle_town_status)
        r.add_get("/api/gt-status/summary", self.handle_status_summary)

        # Mayor
        r.add_get("/api/mayor/status", self.handle_mayor_status)
        r.add_post("/api/mayor/nudge", self.handle_mayor_nudge)
        r.add_post("/api/mayor/restart", self.handle_mayor_restart)

        # Crew, polecats, witnesses
        r.add_get("/api/crew", self.handle_crew_list)
        r.add_post("/api/crew/add", self.handle_crew_add)
        r.add_get("/api/crew/mail/inbox", self.handle_crew_inbox)
        r.add_post("/api/crew/{name}/start", self.handle_crew_start)
        r.add_post("/api/crew/{name}/remove", self.handle_crew_remove)
        r.add_post("/api/crew/{name}/nudge", self.handle_crew_nudge)
        r.add_post("/api/polecats/{name}/nudge", self.handle_polecat_nudge)
        r.add_post("/api/witness/start", self.handle_witness_start)
        r.add_post("/api/witness/nudge", self.handle_witness_nudge)

        # Rigs
        r.add_get("/api/rigs", self.handle_rigs)
        r.add_post("/api/rigs", self.handle_rig_add)
        r.add_delete("/api/rigs/{name}", self.handle_rig_remove)
        r.add_post("/api/rigs/{name}/{action}", self.handle_rig_action)

        # Mail and crew chat
        r.add_get("/api/mail/inbox", self.handle_mail_inbox)
        r.add_get("/api/mail/sent", self.handle_mail_sent)
        r.add_get("/api/mail/threads", self.handle_mail_threads)
        r.add_post("/api/mail/send", self.handle_mail_send)
        r.add_post("/api/mail/read", self.handle_mail_read)
        r.add_get("/api/chat/crew/poll", self.handle_crew_chat_poll)
        r.add_post("/api/chat/crew/send", self.handle_crew_chat_send)

        # Deacon
        r.add_get("/api/deacon", self.handle_deacon_status)
        r.add_post("/api/deacon/control", self.handle_deacon_control)
        r.add_get("/api/deacon/sweep", self.handle_sweep_preview)
        r.add_post("/api/deacon/sweep", self.handle_sweep)

        # Beads
        r.add_get("/api/beads/issues/list", self.handle_issues)
        r.add_patch("/api/beads/issues/{id}", self.handle_issue_update)
        r.add_patch("/api/beads/issues/{id}/status", self.handle_issue_status)
        r.add_get("/api/beads/issues/{id}/comments", self.handle_issue_comments)

        # Refinery
        r.add_get("/api/refinery/{view}", self.handle_refinery)

        self._app = app
        return app

    async def handle_health(self, request):
        """Health check endpoint."""
        return web.json_response({"status": "healthy", "version": __version__})

    async def handle_config(self, request):
        return web.json_response(self._service.config.to_dict())

    async def handle_gt_info(self, request):
        return _ok(self._service.gt_info())

    async def handle_town_status(self, request):
        return _ok(await self._service.town_status())

    async def handle_status_summary(self, request):
        return _ok(await self._service.status_summary())

    async def handle_mayor_status(self, request):
        return _ok(await self._service.mayor_status())

    async def handle_mayor_nudge(self, request):
        data = await _json_body(request)
        return _ok(await self._service.nudge_mayor(data.get("message")))

    async def handle_mayor_restart(self, request):
        return _ok(await self._service.restart_mayor())

    async def handle_crew_list(self, request):
        return _ok(await self._service.list_crew())

    async def handle_crew_add(self, request):
        data = await _json_body(request)
        result = await self._service.add_crew(
            data.get("name"), data.get("rig"), branch=bool(data.get("branch", False))
        )
        return _ok(result)

    async def handle_crew_inbox(self, request):
        messages = await self._service.crew_inbox(request.query.get("member", ""))
        return _records("messages", messages, total_count=len(messages))

    async def handle_crew_start(self, request):
        data = await _json_body(request)
        return _ok(await self._service.start_crew(request.match_info["name"], data.get("rig")))

    async def handle_crew_remove(self, request):
        data = await _json_body(request)
        result = await self._service.remove_crew(
            request.match_info["name"], data.get("rig"), force=bool(data.get("force", False))
        )
        return _ok(result)

    async def handle_crew_nudge(self, request):
        data = await _json_body(request)
        result = await self._service.nudge_crew(
            request.match_info["name"], data.get("rig"), data.get("message")
        )
        return _ok(result)

    async def handle_polecat_nudge(self, request):
        data = await _json_body(request)
        result = await self._service.nudge_polecat(
            request.match_info["name"], data.get("rig"), data.get("message")
        )
        return _ok(result)

    async def handle_witness_start(self, request):
        data = await _json_body(request)
        return _ok(await self._service.start_witness(data.get("rig")))

    async def handle_witness_nudge(self, request):
        data = await _json_body(request)
        return _ok(await self._service.nudge_witness(data.get("rig"), data.get("message")))

    async def handle_rigs(self, request):
        return _records("rigs", await self._service.list_rigs())

    async def handle_rig_add(self, request):
        data = await _json_body(request)
        result = await self._service.add_rig(
            data.get("name"), data.get("git_url") or data.get("gitUrl"), data.get("prefix")
        )
        return _ok(result)

    async def handle_rig_remove(self, request):
        return _ok(await self._service.rig_action(request.match_info["name"], "remove"))

    async def handle_rig_action(self, request):
        action = request.match_info["action"]
        if action == "remove":
            raise web.HTTPMethodNotAllowed("POST", ["DELETE"])
        return _ok(await self._service.rig_action(request.match_info["name"], action))

    async def handle_mail_inbox(self, request):
        messages = await self._service.mail_inbox(request.query.get("address", "overseer"))
        return _records("messages", messages, total_count=len(messages))

    async def handle_mail_sent(self, request):
        messages = await self._service.mail_sent()
        return _records("messages", messages, total_count=len(messages))

    async def handle_mail_threads(self, request):
        threads = await self._service.mail_threads(request.query.get("address", "overseer"))
        return _records("threads", threads)

    async def handle_mail_send(self, request):
        data = await _json_body(request)
        result = await self._service.send_mail(
            data.get("to"),
            data.get("body"),
            subject=data.get("subject"),
            reply_to=data.get("reply_to") or data.get("replyTo"),
        )
        return _ok(result)

    async def handle_mail_read(self, request):
        data = await _json_body(request)
        ids = data.get("ids", data.get("messageIds"))
        return _ok(await self._service.mark_read(ids))

    async def handle_crew_chat_poll(self, request):
        messages = await self._service.poll_crew_chat(
            request.query.get("rig") or None, request.query.get("name") or None
        )
        return _records("messages", messages)

    async def handle_crew_chat_send(self, request):
        data = await _json_body(request)
        result = await self._service.send_crew_chat(
            data.get("rig"), data.get("name"), data.get("message")
        )
        return _ok(result)

    async def handle_deacon_status(self, request):
        return _ok(await self._service.deacon_status())

    async def handle_deacon_control(self, request):
        data = await _json_body(request)
        return _ok(await self._service.deacon_control(data.get("action")))

    async def handle_sweep_preview(self, request):
        orphans = await self._service.sweep_preview()
        return _records(
            "orphaned_beads",
            orphans,
            success=True,
            summary={"total_orphaned": len(orphans), "would_close": len(orphans)},
        )

    async def handle_sweep(self, request):
        data = await _json_body(request)
        return _ok(await self._service.sweep(dry_run=bool(data.get("dry_run", False))))

    async def handle_issues(self, request):
        q = request.query
        page = await self._service.list_issues(
            status=q.get("status") or None,
            search=q.get("search") or None,
            assignee=q.get("assignee") or None,
            priority=_query_int(request, "priority"),
            sort=q.get("sort", "priority"),
            order=q.get("order", "asc"),
            limit=_query_int(request, "limit", 50),
            cursor=q.get("cursor") or None,
        )
        return _ok(page)

    async def handle_issue_update(self, request):
        data = await _json_body(request)
        rig = data.pop("rig", None)
        return _ok(await self._service.update_issue(request.match_info["id"], data, rig=rig))

    async def handle_issue_status(self, request):
        data = await _json_body(request)
        result = await self._service.set_issue_status(
            request.match_info["id"],
            data.get("status"),
            reason=data.get("reason"),
            rig=data.get("rig"),
        )
        return _ok(result)

    async def handle_issue_comments(self, request):
        comments = await self._service.issue_comments(
            request.match_info["id"], rig=request.query.get("rig") or None
        )
        return _records("comments", comments, total_count=len(comments))

    async def handle_refinery(self, request):
        return _ok(await self._service.refinery(
            request.query.get("rig", ""), request.match_info["view"]
        ))


def run_server(service: DashboardService, host: str, port: int) -> None:
    """Serve until interrupted."""
    handler = RESTAPIHandler(service)
    logger.info("gtdash REST API listening on http://%s:%s", host, port)
    web.run_app(handler.create_app(), host=host, port=port, print=None)
