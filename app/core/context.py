"""
Per-call context.

Everything the interceptors learn about a call (the method policy, the
caller's claims and permissions, the resolved entity context) is carried in
context variables private to this module. Handlers read them through the
accessors below instead of receiving them as parameters.

`call_scope()` opens a fresh scope for one call and restores the previous
values on exit, so concurrent calls on different tasks never see each
other's state.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from app.core.errors import InternalError

if TYPE_CHECKING:
    from app.core.rpc_policy import RpcPolicy
    from app.core.security import TokenClaims, UserPermissions


@dataclass(frozen=True)
class ProjectRef:
    id: str


@dataclass(frozen=True)
class ProviderRef:
    name: str = ""
    id: str | None = None


@dataclass(frozen=True)
class EntityContext:
    """The {project, provider} pair a call operates on."""

    project: ProjectRef
    provider: ProviderRef = ProviderRef()

    def with_provider(self, provider: ProviderRef) -> "EntityContext":
        return EntityContext(project=self.project, provider=provider)


_method_ctx: ContextVar[str] = ContextVar("rpc_method", default="")
_policy_ctx: ContextVar["RpcPolicy | None"] = ContextVar("rpc_policy", default=None)
_claims_ctx: ContextVar["TokenClaims | None"] = ContextVar("auth_claims", default=None)
_permissions_ctx: ContextVar["UserPermissions | None"] = ContextVar(
    "user_permissions", default=None
)
_entity_ctx: ContextVar[EntityContext | None] = ContextVar("entity_context", default=None)


@contextmanager
def call_scope(method: str, policy: "RpcPolicy") -> Iterator[None]:
    """Open a clean per-call scope for `method`."""
    tokens: list[tuple[ContextVar[Any], Token[Any]]] = [
        (_method_ctx, _method_ctx.set(method)),
        (_policy_ctx, _policy_ctx.set(policy)),
    ]
    for var in (_claims_ctx, _permissions_ctx, _entity_ctx):
        tokens.append((var, var.set(None)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def get_method() -> str:
    return _method_ctx.get()


def get_policy() -> "RpcPolicy | None":
    return _policy_ctx.get()


def set_claims(claims: "TokenClaims") -> None:
    _claims_ctx.set(claims)


def get_claims() -> "TokenClaims | None":
    return _claims_ctx.get()


def set_permissions(permissions: "UserPermissions") -> None:
    _permissions_ctx.set(permissions)


def get_permissions() -> "UserPermissions":
    """Caller permissions; an empty set for anonymous calls."""
    from app.core.security import UserPermissions

    return _permissions_ctx.get() or UserPermissions()


def set_entity_context(entity_ctx: EntityContext) -> None:
    _entity_ctx.set(entity_ctx)


def get_entity_context() -> EntityContext:
    """
    The entity context resolved for this call.

    Raises:
        InternalError: If called from a method whose policy does not target a project
    """
    entity_ctx = _entity_ctx.get()
    if entity_ctx is None:
        raise InternalError("entity context not set for this call")
    return entity_ctx


def require_claims() -> "TokenClaims":
    claims = _claims_ctx.get()
    if claims is None:
        raise InternalError("no authenticated caller for this call")
    return claims
