from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shared.constants import Role


class CurrentUser(BaseModel):
    """Caller identity decoded from the bearer token."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: UUID
    email: str = ""
    roles: list[Role] = Field(default_factory=list)

    def has_any_role(self, roles: frozenset[Role] | set[Role]) -> bool:
        return any(role in roles for role in self.roles)
