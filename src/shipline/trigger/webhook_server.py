"""HTTP webhook receiver for push notifications."""

import hashlib
import hmac
import json
from typing import Any, Dict, Optional

from aiohttp import web

from shipline.pipeline.application.run_queue import RunQueue
from shipline.pipeline.domain.models import PushEvent
from shipline.shared.domain.exceptions import WebhookError
from shipline.shared.infrastructure.logging import get_logger
from shipline.trigger.listener import TriggerListener

logger = get_logger(__name__)

_NULL_SHA = "0" * 40
_BRANCH_PREFIX = "refs/heads/"


def verify_signature(secret: str, body: bytes, header: Optional[str]) -> None:
    """
    Check a GitHub ``X-Hub-Signature-256`` header.

    Raises:
        WebhookError: 401 when the header is missing or does not match
    """
    if not header or not header.startswith("sha256="):
        raise WebhookError("missing signature", status=401)
    expected = "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, header):
        raise WebhookError("signature mismatch", status=401)


def parse_push(payload: Dict[str, Any], delivery_id: Optional[str] = None) -> Optional[PushEvent]:
    """
    Extract a PushEvent from a GitHub push payload or a plain
    ``{"branch": ..., "commit": ...}`` body.

    Returns None for pushes that cannot trigger a deploy (tags, branch
    deletions).

    Raises:
        WebhookError: 400 when the body carries neither form
    """
    if "ref" in payload:
        ref = payload.get("ref") or ""
        if not ref.startswith(_BRANCH_PREFIX):
            return None
        commit = payload.get("after") or ""
        if payload.get("deleted") or commit == _NULL_SHA:
            return None
        branch = ref[len(_BRANCH_PREFIX):]
    else:
        branch = payload.get("branch") or ""
        commit = payload.get("commit") or ""

    if not isinstance(branch, str) or not isinstance(commit, str) or not branch or not commit:
        raise WebhookError("payload needs ref/after or branch/commit", status=400)
    return PushEvent(branch=branch, commit=commit, source="webhook", delivery_id=delivery_id)


class WebhookServer:
    """
    Routes:
        POST /webhook             push notification
        GET  /health              liveness
        GET  /runs/{run_id}       run record as JSON
        POST /runs/{run_id}/cancel  cancel at the next stage boundary
    """

    def __init__(self, listener: TriggerListener, queue: RunQueue, secret: Optional[str] = None):
        self.listener = listener
        self.queue = queue
        self.secret = secret
        self.app = web.Application()
        self.setup_routes()

    def setup_routes(self):
        self.app.router.add_post("/webhook", self.handle_webhook)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/runs/{run_id}", self.handle_get_run)
        self.app.router.add_post("/runs/{run_id}/cancel", self.handle_cancel)
        self.app.on_shutdown.append(self._drain)

    async def handle_health(self, request):
        return web.json_response({"status": "healthy", "service": "shipline"})

    async def handle_webhook(self, request):
        body = await request.read()
        event_type = request.headers.get("X-GitHub-Event", "push")
        delivery_id = request.headers.get("X-GitHub-Delivery")

        try:
            if self.secret:
                verify_signature(self.secret, body, request.headers.get("X-Hub-Signature-256"))

            if event_type == "ping":
                return web.json_response({"status": "pong"})
            if event_type != "push":
                logger.info("webhook_event_ignored", event=event_type, delivery_id=delivery_id)
                return web.json_response({"status": "ignored", "reason": f"event {event_type}"})

            try:
                payload = json.loads(body or b"{}")
            except ValueError:
                raise WebhookError("body is not valid JSON", status=400)
            if not isinstance(payload, dict):
                raise WebhookError("body must be a JSON object", status=400)

            event = parse_push(payload, delivery_id)
            if event is None:
                return web.json_response({"status": "ignored", "reason": "not a branch update"})

            try:
                run = self.listener.on_push(event)
            except ValueError as e:
                raise WebhookError(str(e), status=400)
        except WebhookError as e:
            logger.warning("webhook_rejected", reason=str(e), status=e.status, delivery_id=delivery_id)
            return web.json_response({"status": "rejected", "error": str(e)}, status=e.status)

        if run is None:
            return web.json_response({"status": "ignored", "reason": f"branch {event.branch} is not allow-listed"})
        return web.json_response({"status": "queued", "runId": run.id, "target": run.target}, status=202)

    async def handle_get_run(self, request):
        run_id = request.match_info["run_id"]
        run = self.queue.get(run_id) or self.queue.runner.store.load(run_id)
        if run is None:
            return web.json_response({"error": f"unknown run {run_id}"}, status=404)
        return web.json_response(run.to_json())

    async def handle_cancel(self, request):
        run_id = request.match_info["run_id"]
        if not self.queue.cancel(run_id):
            return web.json_response({"status": "not-cancellable", "runId": run_id}, status=409)
        return web.json_response({"status": "cancel-requested", "runId": run_id}, status=202)

    async def _drain(self, app):
        await self.queue.drain()

