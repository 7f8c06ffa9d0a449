"""The actor whose records the dashboard shows."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


ANONYMOUS_LABEL_LENGTH = 8


class Identity(BaseModel):
    """
    Owner identifier plus what the header shows for it.

    Authenticated users show their email; anonymous clients show a
    shortened form of their generated id.
    """
    model_config = ConfigDict(frozen=True)

    owner_id: str = Field(..., min_length=1)
    email: Optional[str] = None
    is_anonymous: bool = False

    @property
    def display_label(self) -> str:
        if self.email:
            return self.email
        if self.is_anonymous:
            return self.owner_id[:ANONYMOUS_LABEL_LENGTH]
        return self.owner_id
