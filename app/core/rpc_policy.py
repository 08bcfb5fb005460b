"""
RPC policy index.

Every handler declares its policy with the `rpc_method` decorator, which only
attaches metadata to the function. `RpcPolicyIndex.from_handlers` scans that
metadata once at startup and freezes it; after that the index is read-only.
"""

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_METHOD_ATTR = "__rpc_method__"
_POLICY_ATTR = "__rpc_policy__"


class TargetResource(str, Enum):
    """What a method operates on, and so which checks the pipeline runs."""

    NONE = "none"
    USER = "user"
    PROJECT = "project"


@dataclass(frozen=True)
class RpcPolicy:
    """Per-method policy.

    `requires_provider` makes the pipeline resolve a provider even when the
    request does not name one.
    """

    anonymous: bool = False
    no_log: bool = False
    target_resource: TargetResource = TargetResource.NONE
    owner_only: bool = False
    root_admin_only: bool = False
    requires_provider: bool = False


DEFAULT_POLICY = RpcPolicy()


def rpc_method(name: str, **policy: Any) -> Callable[[F], F]:
    """
    Declare a handler as the implementation of RPC `name`.

    Usage:
        @rpc_method(CREATE_PROFILE, target_resource=TargetResource.PROJECT)
        async def create_profile(self, request): ...
    """
    rpc_policy = RpcPolicy(**policy)

    def decorator(func: F) -> F:
        setattr(func, _METHOD_ATTR, name)
        setattr(func, _POLICY_ATTR, rpc_policy)
        return func

    return decorator


def handler_method_name(func: Callable[..., Any]) -> str | None:
    return getattr(func, _METHOD_ATTR, None)


class RpcPolicyIndex(Mapping[str, RpcPolicy]):
    """Read-only map from fully-qualified method name to policy."""

    def __init__(self, policies: Mapping[str, RpcPolicy]):
        self._policies = MappingProxyType(dict(policies))

    @classmethod
    def from_handlers(cls, handlers: Iterable[Callable[..., Any]]) -> "RpcPolicyIndex":
        policies: dict[str, RpcPolicy] = {}
        for handler in handlers:
            name = getattr(handler, _METHOD_ATTR, None)
            if name is None:
                continue
            if name in policies:
                raise ValueError(f"duplicate RPC method registration: {name}")
            policies[name] = getattr(handler, _POLICY_ATTR)
        logger.info("Built RPC policy index with %d methods", len(policies))
        return cls(policies)

    @classmethod
    def from_object(cls, obj: Any) -> "RpcPolicyIndex":
        """Scan the bound methods of `obj` for policy metadata."""
        return cls.from_handlers(
            getattr(obj, attr) for attr in dir(obj) if not attr.startswith("_")
        )

    def lookup(self, method: str) -> RpcPolicy:
        """Policy for `method`; methods without one get the default policy."""
        return self._policies.get(method, DEFAULT_POLICY)

    def __getitem__(self, method: str) -> RpcPolicy:
        return self._policies[method]

    def __iter__(self) -> Iterator[str]:
        return iter(self._policies)

    def __len__(self) -> int:
        return len(self._policies)
