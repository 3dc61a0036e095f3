"""User-related schemas."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UserRegister(BaseModel):
    """Schema for registering a pseudonymous user."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str | None = Field(default=None, description="Display name, defaults to Guest")
    email: str | None = None
    avatar: str | None = None
    role: str | None = None
    external_id: str | None = Field(default=None, description="Per-browser identity token")
    session_id: str | None = Field(default=None, description="Session to link the user to")
    session_ids: str | list[str] | None = Field(default=None, description="Sessions to link")

    def linked_sessions(self) -> list[str]:
        """All session ids to link, duplicates removed, order kept."""
        ids: list[str] = []
        if isinstance(self.session_ids, list):
            ids.extend(self.session_ids)
        elif self.session_ids:
            ids.append(self.session_ids)
        if self.session_id:
            ids.append(self.session_id)
        return list(dict.fromkeys(ids))
