"""Wire models for the Devzat plugin service.

Python attribute names are the SDK's; aliases carry the names used by the
host schema (``msg``, ``from``, ``ephemeral_to``, ``regex``, ``info``,
``args_info``). Optional fields that are ``None`` are left out of the wire
payload entirely so the host can tell "absent" apart from an empty string.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for models that travel over the channel."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize using wire names, dropping absent optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, data: dict[str, Any]):
        """Build the model from a decoded wire payload."""
        return cls.model_validate(data)


class Message(WireModel):
    """An outbound chat message.

    Example:
        Message(room="#main", text="Hello World!")
        Message(room="#main", text="psst", ephemeral_to="alice")

    ``sender`` left as ``None`` sends as the plugin's own identity;
    ``ephemeral_to`` restricts visibility to a single user.
    """

    room: str
    sender: str | None = Field(default=None, alias="from")
    text: str = Field(alias="msg")
    ephemeral_to: str | None = None


class ListenerSpec(WireModel):
    """Subscription semantics declared to the host when a listener registers."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    middleware: bool = False  # handler may return a replacement message
    once: bool = False  # host ends the subscription after the first delivery
    pattern: str | None = Field(default=None, alias="regex")


class Event(WireModel):
    """An inbound chat event delivered to a listener."""

    room: str
    sender: str = Field(default="", alias="from")
    text: str = Field(alias="msg")


class MiddlewareResponse(WireModel):
    """Reply written upstream by a middleware listener after one event."""

    replacement: str | None = Field(default=None, alias="msg")


class CommandDef(WireModel):
    """A command registration: name, help text and argument usage."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    description: str = Field(default="", alias="info")
    args_usage: str = Field(default="", alias="args_info")


class CommandInvocation(WireModel):
    """One request from the host to run a registered command."""

    room: str
    sender: str = Field(default="", alias="from")
    args: str = ""


class ListenerFrame(BaseModel):
    """A client-to-host frame on the listener stream.

    Exactly one of ``listener`` (first frame only) or ``response`` is set.
    """

    listener: ListenerSpec | None = None
    response: MiddlewareResponse | None = None

    @classmethod
    def register(cls, spec: ListenerSpec) -> ListenerFrame:
        """Create the registration frame that opens a listener stream."""
        return cls(listener=spec)

    @classmethod
    def reply(cls, replacement: str) -> ListenerFrame:
        """Create a middleware response frame."""
        return cls(response=MiddlewareResponse(replacement=replacement))

    def to_wire(self) -> dict[str, Any]:
        if self.listener is not None:
            return {"listener": self.listener.to_wire()}
        if self.response is not None:
            return {"response": self.response.to_wire()}
        raise ValueError("ListenerFrame carries neither a listener nor a response")
