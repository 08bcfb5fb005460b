"""
FastAPI dependency injection utilities.

Routes are thin: they turn the HTTP request into an RPC request object and
hand it, with the call metadata, to the `ControlPlaneServer` stored on the
application.
"""

from typing import Annotated, Any

from fastapi import Depends, Query, Request

from app.api.schemas.context import ContextV1, ContextV2
from app.api.server import ControlPlaneServer


def get_server(request: Request) -> ControlPlaneServer:
    return request.app.state.server


Server = Annotated[ControlPlaneServer, Depends(get_server)]


def call_metadata(request: Request) -> dict[str, str]:
    """Request headers, lower-cased, as call metadata."""
    return {key.lower(): value for key, value in request.headers.items()}


Metadata = Annotated[dict[str, str], Depends(call_metadata)]


def query_context(
    project: Annotated[str | None, Query(description="Project UUID")] = None,
    provider: Annotated[str | None, Query(description="Provider name")] = None,
    project_id: Annotated[str | None, Query(description="Project UUID (v2 context)")] = None,
) -> dict[str, Any]:
    """
    Context fields for requests without a body.

    Usage:
        @router.get("/profiles")
        async def list_profiles(server: Server, metadata: Metadata, ctx: QueryContext):
            request = ListProfilesRequest(**ctx)
    """
    return {
        "context": ContextV1(project=project, provider=provider),
        "context_v2": ContextV2(project_id=project_id) if project_id else None,
    }


QueryContext = Annotated[dict[str, Any], Depends(query_context)]
