"""
Rule references held by profiles.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RuleRef(BaseModel):
    """
    One rule of a profile: which rule type, under which name, with what input.

    `def` holds values checked against the rule type's rule schema, `params`
    values checked against its parameter schema. An empty `name` means the
    rule type name.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., min_length=1)
    name: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    def_: dict[str, Any] = Field(default_factory=dict, alias="def")

    @property
    def effective_name(self) -> str:
        return self.name or self.type

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
