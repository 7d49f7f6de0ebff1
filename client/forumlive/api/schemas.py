"""Pydantic models for the remote forum API.

Field names follow the wire format (camelCase) so models can be built
straight from response JSON and dumped straight into request bodies.
Unknown fields sent by the server are ignored.
"""
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


def _coerce_id(value: Any) -> Any:
    # The service emits numeric ids for some records; ids are opaque strings here.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# =============================================================================
# Records returned by the service
# =============================================================================


class User(BaseModel):
    """The signed-in participant.

    Attributes:
        id: Server-assigned user id.
        displayName: Name shown to other participants.
        aboutMe: Free-form bio.
        interests: Interest tags chosen on sign-in.
    """
    id: str = Field(..., description="Server-assigned user ID")
    displayName: str = Field(default="", description="Display name shown in UI")
    aboutMe: str = Field(default="", description="Profile bio")
    interests: List[str] = Field(default_factory=list, description="Interest tags")

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class Forum(BaseModel):
    """A discussion room as listed by ``GET /api/forums``.

    Attributes:
        id: Forum id.
        title: Room title.
        topic: Topic tag used for filtering.
        host: Display name of the host.
        participants: Live participant count.
    """
    id: str = Field(..., description="Forum ID")
    title: str = Field(..., min_length=1, description="Room title")
    topic: str = Field(default="general", description="Topic tag")
    host: str = Field(default="Unknown", description="Host display name")
    participants: int = Field(default=0, description="Live participant count")

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("topic", "host", mode="before")
    @classmethod
    def _none_to_default(cls, value: Any, info) -> Any:
        if value is None or value == "":
            return "general" if info.field_name == "topic" else "Unknown"
        return value

    @field_validator("participants", mode="before")
    @classmethod
    def _none_to_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @property
    def is_live(self) -> bool:
        return self.participants > 0


class Message(BaseModel):
    """A chat message in a forum.

    Attributes:
        id: Message id.
        forumId: Parent forum id.
        userId: Author id.
        userName: Author display name.
        text: Message body.
        timestamp: ISO-8601 string or epoch milliseconds, as sent by the server.
        edited: True once the author has changed the text.
    """
    id: str = Field(..., description="Message ID")
    forumId: Optional[str] = Field(default=None, description="Parent forum ID")
    userId: Optional[str] = Field(default=None, description="Author user ID")
    userName: Optional[str] = Field(default=None, description="Author display name")
    text: str = Field(..., min_length=1, description="Message text")
    timestamp: Optional[Union[str, float]] = Field(default=None, description="Creation time")
    edited: bool = Field(default=False, description="Whether the text was edited")

    @field_validator("id", "forumId", "userId", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> Any:
        return _coerce_id(value)

    @property
    def display_text(self) -> str:
        """Text as rendered in a bubble, with the edited marker."""
        return f"{self.text} (edited)" if self.edited else self.text


# =============================================================================
# Request bodies
# =============================================================================


class CreateSessionRequest(BaseModel):
    displayName: str
    aboutMe: str = ""
    interests: List[str] = Field(default_factory=list)


class CreateForumRequest(BaseModel):
    title: str
    topic: str
    hostId: str


class MembershipRequest(BaseModel):
    userId: str


class SendMessageRequest(BaseModel):
    """Body of ``POST /api/messages``; also the unit stored in the outbox."""
    forumId: str
    userId: str
    text: str


class EditMessageRequest(BaseModel):
    messageId: str
    userId: str
    text: str


class DeleteMessageRequest(BaseModel):
    messageId: str
    userId: str


class TypingRequest(BaseModel):
    forumId: str
    userId: str
