"""
Pydantic schemas for API request/response validation.

Project-scoped requests extend `ProjectScopedRequest`, which carries both
context versions the gateway accepts.
"""

from .common import EmptyResponse as EmptyResponse
from .context import ContextV1 as ContextV1
from .context import ContextV2 as ContextV2
from .context import EntityContextResponse as EntityContextResponse
from .context import ProjectScopedRequest as ProjectScopedRequest
from .profile import ProfileResponse as ProfileResponse
from .profile import ProfileSpec as ProfileSpec
from .ruletype import RuleTypeResponse as RuleTypeResponse
from .ruletype import RuleTypeSpec as RuleTypeSpec
