"""ActivityPub ingress endpoints: actor inbox, shared inbox and actor outbox.

All three answer 200 OK as soon as the body has been handed to the
dispatcher. Verification and processing happen on the worker queues, and
remote servers are never told why an activity was dropped.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response, status

from lumen_federation.api.v1.dependencies import RuntimeDep
from lumen_federation.schemas.envelope import IngressPoint

router = APIRouter(tags=["activitypub"])


def _request_target(request: Request) -> str:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return path


async def _accept(
    request: Request,
    runtime: RuntimeDep,
    ingress: IngressPoint,
    user_name: str | None = None,
) -> Response:
    body = await request.body()
    await runtime.dispatcher.accept(
        body,
        request.headers,
        ingress=ingress,
        path=_request_target(request),
        user_name=user_name,
    )
    return Response(status_code=status.HTTP_200_OK)


@router.post("/actors/{user_name}/inbox")
async def actor_inbox(user_name: str, request: Request, runtime: RuntimeDep) -> Response:
    """Receive an activity addressed to one local actor."""
    return await _accept(request, runtime, IngressPoint.ACTOR_INBOX, user_name)


@router.post("/shared/inbox")
async def shared_inbox(request: Request, runtime: RuntimeDep) -> Response:
    """Receive an activity addressed to any number of local actors."""
    return await _accept(request, runtime, IngressPoint.SHARED_INBOX)


@router.post("/actors/{user_name}/outbox")
async def actor_outbox(user_name: str, request: Request, runtime: RuntimeDep) -> Response:
    """Receive a signed activity a local actor wants delivered."""
    return await _accept(request, runtime, IngressPoint.OUTBOX, user_name)
