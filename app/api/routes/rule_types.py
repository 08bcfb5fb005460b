from __future__ import annotations

from fastapi import APIRouter, status

from app.api.schemas.common import EmptyResponse
from app.api.schemas.ruletype import (
    CreateRuleTypeRequest,
    DeleteRuleTypeRequest,
    GetRuleTypeByIdRequest,
    GetRuleTypeByNameRequest,
    ListRuleTypesRequest,
    ListRuleTypesResponse,
    RuleTypeResponse,
    UpdateRuleTypeRequest,
)
from app.api.server import (
    CREATE_RULE_TYPE,
    DELETE_RULE_TYPE,
    GET_RULE_TYPE_BY_ID,
    GET_RULE_TYPE_BY_NAME,
    LIST_RULE_TYPES,
    UPDATE_RULE_TYPE,
)
from app.core.dependencies import Metadata, QueryContext, Server

router = APIRouter(tags=["rule-types"])


@router.post("/rule-types", response_model=RuleTypeResponse, status_code=status.HTTP_201_CREATED)
async def post_rule_type(payload: CreateRuleTypeRequest, server: Server, metadata: Metadata):
    """
    Create a rule type in the context project.

    The provider is taken from the context, or inferred when the project has
    exactly one.
    """
    return await server.call(CREATE_RULE_TYPE, payload, metadata)


@router.put("/rule-types", response_model=RuleTypeResponse)
async def put_rule_type(payload: UpdateRuleTypeRequest, server: Server, metadata: Metadata):
    """Replace a rule type. Schema changes must stay compatible with profiles using it."""
    return await server.call(UPDATE_RULE_TYPE, payload, metadata)


@router.get("/rule-types", response_model=ListRuleTypesResponse)
async def get_rule_types(server: Server, metadata: Metadata, ctx: QueryContext):
    return await server.call(LIST_RULE_TYPES, ListRuleTypesRequest(**ctx), metadata)


@router.get("/rule-types/name/{name}", response_model=RuleTypeResponse)
async def get_rule_type_by_name(name: str, server: Server, metadata: Metadata, ctx: QueryContext):
    return await server.call(
        GET_RULE_TYPE_BY_NAME, GetRuleTypeByNameRequest(name=name, **ctx), metadata
    )


@router.get("/rule-types/{rule_type_id}", response_model=RuleTypeResponse)
async def get_rule_type(rule_type_id: str, server: Server, metadata: Metadata, ctx: QueryContext):
    return await server.call(
        GET_RULE_TYPE_BY_ID, GetRuleTypeByIdRequest(id=rule_type_id, **ctx), metadata
    )


@router.delete("/rule-types/{rule_type_id}", response_model=EmptyResponse)
async def delete_rule_type(
    rule_type_id: str, server: Server, metadata: Metadata, ctx: QueryContext
):
    """Delete a rule type. Fails while any profile still uses it."""
    return await server.call(
        DELETE_RULE_TYPE, DeleteRuleTypeRequest(id=rule_type_id, **ctx), metadata
    )
