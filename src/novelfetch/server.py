"""aiohttp web adapter: HTTP endpoints plus a websocket event channel per job."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from collections import defaultdict
from typing import Any, Dict, Optional, Set

from aiohttp import WSMsgType, web

from .core.keys import K_ERROR, K_EVENT_ERROR, K_JOB_ID, K_MESSAGE, K_RESULTS, K_STATUS, K_USER_AGENT
from .workflows.batch import fetch_chapters_batch
from .workflows.crawl import crawl_novel
from .workflows.fetcher_config import MAX_REQUEST_BYTES, FetchConfig
from .workflows.image_proxy import PayloadTooLarge, UnsupportedImageURL, fetch_image
from .workflows.jobs import DEFAULT_REGISTRY, JobRegistry
from .workflows.validation import MalformedRequest, validate_batch_request, validate_crawl_request

logger = logging.getLogger(__name__)


class EventHub:
    """Routes ``publish(job_id, event, payload)`` to every socket that joined the job.

    Each socket has its own outbox drained by one sender task, so a client
    sees a job's events in publish order.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[web.WebSocketResponse]] = defaultdict(set)
        self._outboxes: Dict[web.WebSocketResponse, asyncio.Queue] = {}

    def connect(self, ws: web.WebSocketResponse) -> asyncio.Queue:
        outbox: asyncio.Queue = asyncio.Queue()
        self._outboxes[ws] = outbox
        return outbox

    def join(self, job_id: str, ws: web.WebSocketResponse) -> None:
        self._rooms[job_id].add(ws)
        logger.debug("Socket joined job %s (%d listeners)", job_id, len(self._rooms[job_id]))

    def disconnect(self, ws: web.WebSocketResponse) -> None:
        self._outboxes.pop(ws, None)
        for job_id in [jid for jid, members in self._rooms.items() if ws in members]:
            self._rooms[job_id].discard(ws)
            if not self._rooms[job_id]:
                del self._rooms[job_id]

    def listeners(self, job_id: str) -> int:
        return len(self._rooms.get(job_id, ()))

    def publish(self, job_id: str, event: str, payload: Any) -> None:
        message = {"event": event, "data": payload}
        for ws in list(self._rooms.get(job_id, ())):
            outbox = self._outboxes.get(ws)
            if outbox is not None and not ws.closed:
                outbox.put_nowait(message)


async def _drain(ws: web.WebSocketResponse, outbox: asyncio.Queue) -> None:
    while True:
        message = await outbox.get()
        try:
            await ws.send_json(message)
        except (ConnectionResetError, RuntimeError) as exc:
            logger.debug("Dropping event for closed socket: %s", exc)
            return


HUB_KEY = web.AppKey("hub", EventHub)
REGISTRY_KEY = web.AppKey("registry", JobRegistry)
CONFIG_KEY = web.AppKey("config", FetchConfig)
TASKS_KEY = web.AppKey("tasks", set)


def _error(message: str, status: int, details: Optional[str] = None) -> web.Response:
    body: Dict[str, Any] = {K_ERROR: message}
    if details:
        body["details"] = details
    return web.json_response(body, status=status)


async def _read_json_object(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedRequest("Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise MalformedRequest("Request body must be a JSON object")
    return body


async def health(request: web.Request) -> web.Response:
    return web.json_response({K_STATUS: "ok", "service": "novelfetch"})


def _crawl_finished(app: web.Application, job_id: str, task: "asyncio.Task[Any]") -> None:
    app[TASKS_KEY].discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background analysis for %s crashed: %s", job_id, exc)
        app[HUB_KEY].publish(job_id, K_EVENT_ERROR, {K_MESSAGE: str(exc) or "Analysis crashed"})


async def novel_info(request: web.Request) -> web.Response:
    app = request.app
    try:
        body = await _read_json_object(request)
        url = validate_crawl_request(body.get("url"), body.get(K_JOB_ID))
    except MalformedRequest as exc:
        return _error(str(exc), 400)
    job_id = body[K_JOB_ID]
    task = asyncio.create_task(
        crawl_novel(
            url,
            job_id,
            publish=app[HUB_KEY].publish,
            registry=app[REGISTRY_KEY],
            config=app[CONFIG_KEY],
        )
    )
    app[TASKS_KEY].add(task)
    task.add_done_callback(functools.partial(_crawl_finished, app, job_id))
    return web.json_response(
        {K_STATUS: "queued", K_MESSAGE: "Analysis started. Please wait for socket events."}
    )


async def chapters_batch(request: web.Request) -> web.Response:
    app = request.app
    try:
        body = await _read_json_object(request)
        chapters = validate_batch_request(body.get("chapters"))
        user_agent = body.get(K_USER_AGENT)
        if user_agent is not None and not isinstance(user_agent, str):
            raise MalformedRequest("userAgent must be a string")
    except MalformedRequest as exc:
        return _error(str(exc), 400)
    job_id = body.get(K_JOB_ID)
    try:
        results = await fetch_chapters_batch(
            chapters,
            job_id if isinstance(job_id, str) and job_id else None,
            user_agent or None,
            app[HUB_KEY].publish,
            config=app[CONFIG_KEY],
        )
    except Exception as exc:
        logger.exception("Batch download failed")
        return _error("Failed to fetch batch", 500, str(exc))
    return web.json_response({K_RESULTS: [r.to_dict() for r in results]})


async def proxy_image(request: web.Request) -> web.Response:
    url = request.query.get("url")
    if not url:
        return web.Response(status=400, text="URL required")
    try:
        image = await fetch_image(url)
    except UnsupportedImageURL:
        return web.Response(status=400, text="Invalid protocol")
    except PayloadTooLarge:
        logger.warning("Proxy blocked large image for %s", url)
        return web.Response(status=413, text="Image too large")
    except Exception as exc:
        logger.warning("Proxy blocked/failed for %s: %s", url, exc)
        return web.Response(status=500, text="Failed to fetch image")
    return web.Response(body=image.content, headers={"Content-Type": image.content_type})


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)
    hub = request.app[HUB_KEY]
    outbox = hub.connect(ws)
    sender = asyncio.create_task(_drain(ws, outbox))
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except ValueError:
                    logger.debug("Ignoring non-JSON websocket message")
                    continue
                if not isinstance(data, dict) or data.get("type") != "join-job":
                    continue
                job_id = data.get(K_JOB_ID)
                if isinstance(job_id, str) and job_id:
                    hub.join(job_id, ws)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("Websocket closed with %s", ws.exception())
    finally:
        hub.disconnect(ws)
        sender.cancel()
    return ws


@web.middleware
async def cors_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    if request.method == "OPTIONS":
        response: web.StreamResponse = web.Response(status=204)
    else:
        response = await handler(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return response


async def _cancel_background_tasks(app: web.Application) -> None:
    tasks = list(app[TASKS_KEY])
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


def create_app(
    config: Optional[FetchConfig] = None,
    registry: Optional[JobRegistry] = None,
) -> web.Application:
    app = web.Application(client_max_size=MAX_REQUEST_BYTES, middlewares=[cors_middleware])
    app[HUB_KEY] = EventHub()
    app[REGISTRY_KEY] = registry if registry is not None else DEFAULT_REGISTRY
    app[CONFIG_KEY] = config or FetchConfig()
    app[TASKS_KEY] = set()
    app.router.add_get("/", health)
    app.router.add_get("/ws", websocket_handler)
    app.router.add_post("/api/novel-info", novel_info)
    app.router.add_post("/api/chapters-batch", chapters_batch)
    app.router.add_get("/api/proxy-image", proxy_image)
    app.on_shutdown.append(_cancel_background_tasks)
    return app


def run_server(host: str, port: int, config: Optional[FetchConfig] = None) -> None:
    logger.info("Serving novelfetch on http://%s:%d", host, port)
    web.run_app(create_app(config), host=host, port=port, print=None)


__all__ = ["EventHub", "create_app", "run_server"]
