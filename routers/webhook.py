import json
import logging
from typing import Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from starlette.requests import ClientDisconnect

from dependencies import get_notifier, get_registry
from models.github_webhook import PushEvent
from models.repository import Repository
from notifications import Notifications
from registry import Registry
from updater import UpdateError, update_in_thread

URL_PREFIX = "/update"
PUSH_EVENT_TYPE = "push"
OK_BODY = "OK"
INVALID_SIGNATURE_BODY = "invalid signature header"

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

router = APIRouter()
logger = logging.getLogger(__name__)


def parse_routing_name(path: str) -> Optional[str]:
    """
    Return the routing name from /update/<routing name>, or None for any other path.
    A single trailing slash is ignored.
    """
    if path.endswith("/"):
        path = path[:-1]
    if not path.startswith(URL_PREFIX + "/"):
        return None
    routing_name = path[len(URL_PREFIX) + 1:]
    if not routing_name or "/" in routing_name:
        return None
    return routing_name


def parse_push_event(body: bytes, content_type: str) -> Optional[PushEvent]:
    """
    Best-effort parse of a push payload, used for logging only.
    """
    try:
        if "application/x-www-form-urlencoded" in content_type:
            form_data = parse_qs(body.decode("utf-8"))
            if "payload" not in form_data:
                raise ValueError("No payload parameter in form data")
            payload = json.loads(form_data["payload"][0])
        else:
            payload = json.loads(body)
        if not isinstance(payload, dict):
            raise ValueError("Payload is not a JSON object")
        return PushEvent(**payload)
    except (ValueError, RecursionError, ValidationError) as e:
        logger.debug(f"Could not decode push payload: {e}")
        return None


def log_push_event(repo: Repository, event: Optional[PushEvent]):
    if event is None:
        return
    declared = event.repository.full_name if event.repository else None
    if declared and declared != repo.name:
        logger.warning(f"Payload declares repository '{declared}' but '{repo.name}' is configured.")
    pusher = event.pusher.name if event.pusher else None
    logger.info(f"Push to '{declared or repo.name}' ref {event.ref} at {event.after} by {pusher}.")


async def read_body(request: Request) -> Optional[bytes]:
    try:
        return await request.body()
    except ClientDisconnect:
        logger.warning("Client disconnected while sending the request body.")
        return None


@router.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
async def handle_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        registry: Registry = Depends(get_registry),
        notifier: Optional[Notifications] = Depends(get_notifier),
        x_github_event: Optional[str] = Header(None),
        x_hub_signature: Optional[str] = Header(None)
):
    # 1. Only POST /update/<routing name> is served.
    routing_name = parse_routing_name(request.url.path)
    if request.method != "POST" or routing_name is None:
        logger.debug(f"No route for {request.method} {request.url.path}.")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)

    # 2. Resolve the repository.
    repo = registry.find(routing_name)
    if repo is None:
        logger.info(f"Webhook for unknown repository '{routing_name}'.")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)

    # 3. Acknowledge ping and any other non-push event without acting on it.
    if x_github_event != PUSH_EVENT_TYPE:
        logger.info(f"Ignoring '{x_github_event}' event for '{repo.name}'.")
        return PlainTextResponse(OK_BODY)

    # 4. Verify the signature over the raw body.
    body = await read_body(request)
    if not repo.authenticate(x_hub_signature, body):
        logger.warning(f"Invalid signature for '{repo.name}'.")
        return PlainTextResponse(INVALID_SIGNATURE_BODY, status_code=status.HTTP_403_FORBIDDEN)

    if body is not None:
        log_push_event(repo, parse_push_event(body, request.headers.get("Content-Type", "")))

    # 5. Refresh the working copy on a thread of its own, off the event loop.
    try:
        await update_in_thread(repo)
    except UpdateError as e:
        if notifier is not None:
            background_tasks.add_task(notifier.notify_update_event, repo.name, "failed", str(e))
        return PlainTextResponse(str(e), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if notifier is not None:
        background_tasks.add_task(notifier.notify_update_event, repo.name, "successful", "Working copy updated.")
    return PlainTextResponse(OK_BODY)
