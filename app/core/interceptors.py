"""
Context pipeline applied to every unary call.

Stages run in a fixed order:

    authenticate -> resolve_entity_context -> authorize

`authenticate` always runs unless the method is anonymous. The other two only
run for methods whose policy targets a project. The provider named by the
request is resolved after authorization, so a caller probing a project they
cannot see gets PermissionDenied rather than a provider error.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from app.core.context import (
    EntityContext,
    ProjectRef,
    ProviderRef,
    call_scope,
    get_entity_context,
    get_permissions,
    set_claims,
    set_entity_context,
    set_permissions,
)
from app.core.errors import (
    AuthFailedError,
    ControlPlaneError,
    ForbiddenError,
    InternalError,
    StatusCode,
    UnknownError,
    ValidationError,
)
from app.core.observability import metrics, set_user_subject
from app.core.providers import resolve_provider
from app.core.rpc_policy import RpcPolicy, RpcPolicyIndex, TargetResource
from app.core.security import TokenValidator, UserPermissions, resolve_user_permissions
from app.db.store import Store
from app.db.validators import parse_uuid

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "authorization"
BEARER_SCHEME = "bearer"

Handler = Callable[[Any], Awaitable[Any]]


@runtime_checkable
class HasProjectContext(Protocol):
    """Request carrying a v1 context: `{project?, provider?}`."""

    def get_context(self) -> Any: ...


@runtime_checkable
class HasProjectContextV2(Protocol):
    """Request carrying a v2 context: `{project_id}`."""

    def get_context_v2(self) -> Any: ...


def bearer_token(metadata: Mapping[str, str]) -> str:
    """
    Extract the bearer token from call metadata.

    Raises:
        AuthFailedError: If the header is missing or not a bearer token
    """
    header = next(
        (v for k, v in metadata.items() if k.lower() == AUTHORIZATION_HEADER),
        None,
    )
    if not header:
        raise AuthFailedError("no auth token")

    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != BEARER_SCHEME or not token.strip():
        raise AuthFailedError("no auth token")
    return token.strip()


async def authenticate(
    policy: RpcPolicy,
    metadata: Mapping[str, str],
    validator: TokenValidator,
    store: Store,
) -> UserPermissions:
    """Stage A: validate the token and attach claims and permissions."""
    if policy.anonymous:
        return get_permissions()

    claims = await validator.validate(bearer_token(metadata))
    set_claims(claims)
    set_user_subject(claims.subject)

    async with store.read() as querier:
        permissions = await resolve_user_permissions(querier, claims)
    set_permissions(permissions)

    if policy.root_admin_only and not permissions.is_superadmin:
        raise ForbiddenError("user is not authorized to perform this operation")
    return permissions


def _parse_project(value: str) -> str:
    project_id = parse_uuid(value)
    if project_id is None:
        raise ValidationError("malformed project ID")
    return project_id


def requested_project(request: Any) -> str | None:
    """
    Project id named by the request, or None when it names none.

    A non-empty v2 project id wins over the v1 one and is always validated.

    Raises:
        InternalError: If the request has no context accessor
        ValidationError: If the context is absent or the id is malformed
    """
    has_v1 = isinstance(request, HasProjectContext)
    has_v2 = isinstance(request, HasProjectContextV2)
    if not has_v1 and not has_v2:
        raise InternalError("error extracting context from request")

    ctx_v1 = request.get_context() if has_v1 else None
    ctx_v2 = request.get_context_v2() if has_v2 else None

    if ctx_v2 is not None and ctx_v2.project_id:
        return _parse_project(ctx_v2.project_id)
    if ctx_v1 is not None and ctx_v1.project:
        return _parse_project(ctx_v1.project)
    if ctx_v1 is None and ctx_v2 is None:
        raise ValidationError("context cannot be nil")
    return None


def requested_provider(request: Any) -> str | None:
    if not isinstance(request, HasProjectContext):
        return None
    ctx_v1 = request.get_context()
    if ctx_v1 is None:
        return None
    return ctx_v1.provider or None


def resolve_entity_context(request: Any, permissions: UserPermissions) -> EntityContext:
    """
    Stage B: pick the target project.

    Falls back to the caller's only project when the request names none.
    """
    project_id = requested_project(request)
    if project_id is None:
        if len(permissions.project_ids) != 1:
            raise ValidationError("cannot get default project")
        project_id = permissions.project_ids[0]

    return EntityContext(
        project=ProjectRef(id=project_id),
        provider=ProviderRef(name=requested_provider(request) or ""),
    )


def authorize(policy: RpcPolicy, project_id: str, permissions: UserPermissions) -> None:
    """Stage C: the caller must belong to the project (and own it if required)."""
    if permissions.is_superadmin:
        return

    if project_id not in permissions.project_ids:
        raise ForbiddenError("user is not authorized to access this project")

    if policy.owner_only and not permissions.is_admin_on(project_id):
        raise ForbiddenError("user is not an administrator on this project")


async def bind_provider(
    policy: RpcPolicy, entity_ctx: EntityContext, store: Store
) -> EntityContext:
    """Resolve the provider once the caller is known to be allowed in."""
    if not entity_ctx.provider.name and not policy.requires_provider:
        return entity_ctx

    async with store.read() as querier:
        provider = await resolve_provider(
            querier, entity_ctx.project.id, entity_ctx.provider.name or None
        )
    return entity_ctx.with_provider(ProviderRef(name=provider.name, id=provider.id))


class ContextPipeline:
    """
    Runs the interceptor stages around a handler.

    Usage:
        pipeline = ContextPipeline(index, validator, store)
        response = await pipeline.invoke(method, request, handler, metadata)
    """

    def __init__(self, index: RpcPolicyIndex, validator: TokenValidator, store: Store):
        self.index = index
        self.validator = validator
        self.store = store

    async def _prepare(self, policy: RpcPolicy, request: Any, metadata: Mapping[str, str]) -> None:
        permissions = await authenticate(policy, metadata, self.validator, self.store)

        if policy.anonymous or policy.target_resource != TargetResource.PROJECT:
            return

        entity_ctx = resolve_entity_context(request, permissions)
        authorize(policy, entity_ctx.project.id, permissions)
        set_entity_context(await bind_provider(policy, entity_ctx, self.store))

    async def invoke(
        self,
        method: str,
        request: Any,
        handler: Handler,
        metadata: Mapping[str, str] | None = None,
    ) -> Any:
        policy = self.index.lookup(method)
        code = StatusCode.OK
        start = time.perf_counter()

        with call_scope(method, policy):
            try:
                await self._prepare(policy, request, metadata or {})
                return await handler(request)
            except ControlPlaneError as e:
                code = e.code
                if not e.user_visible:
                    logger.error(
                        "%s failed: %s", method, e.message, exc_info=e.__cause__ is not None
                    )
                raise
            except Exception as e:
                code = StatusCode.UNKNOWN
                logger.exception("%s failed with unexpected error", method)
                raise UnknownError("unexpected error") from e
            finally:
                duration = time.perf_counter() - start
                metrics.rpc_calls_total.labels(method=method, code=code.value).inc()
                metrics.rpc_call_duration_seconds.labels(method=method).observe(duration)
                if not policy.no_log:
                    logger.info(
                        "%s %s",
                        method,
                        code.value,
                        extra={
                            "rpc_method": method,
                            "code": code.value,
                            "duration_ms": round(duration * 1000, 2),
                        },
                    )


def current_project_id() -> str:
    return get_entity_context().project.id
