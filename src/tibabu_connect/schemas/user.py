"""User-related Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field


class UserPublic(BaseModel):
    """Public projection of a user account."""

    id: str
    name: str
    email: str
    profile_image: str | None = None
    role: str
    specialty: str | None = Field(None, description="Doctor specialty, when decorated")

    model_config = ConfigDict(from_attributes=True)


class MessagingUser(UserPublic):
    """A user that can be picked as the counterparty of a new conversation."""

    consultation_fee: float | None = None
    is_available: bool | None = None
    is_verified: bool | None = None


class MessagingUsersResponse(BaseModel):
    """Users available for starting a conversation."""

    users: list[MessagingUser]
    total: int
