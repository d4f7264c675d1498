"""Wire envelopes.

Field names use camelCase on the wire (`sessionId`) to match the protocol;
the Python attributes are snake_case with aliases.

Only the outer envelope is typed. `params` and `result` stay opaque mappings.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

from ..errors import MalformedMessageError, ProtocolError


def split_method(name: str) -> tuple[str, str]:
    """Split `<Domain>.<member>` into its two parts.

    Raises:
        MalformedMessageError: If the name is not qualified by a domain
    """
    domain, sep, member = name.partition(".")
    if not sep or not domain or not member:
        raise MalformedMessageError(f"Method name is not domain-qualified: {name!r}")
    return domain, member


def join_method(domain: str, member: str) -> str:
    return f"{domain}.{member}"


class WireModel(BaseModel):
    """Base model for wire envelopes with camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ErrorPayload(WireModel):
    """The `error` member of a failed response."""

    code: int | None = None
    message: str = "Unknown error"
    data: Any | None = None


class CommandFrame(WireModel):
    """Outbound command request."""

    id: int
    method: str
    params: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = Field(default=None, alias="sessionId")


class ResponseEnvelope(WireModel):
    """Inbound response to a previously sent command."""

    id: StrictInt
    result: dict[str, Any] | None = None
    error: ErrorPayload | None = None
    session_id: str | None = Field(default=None, alias="sessionId")

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_exception(self, method: str | None = None) -> ProtocolError:
        """Build the ProtocolError surfaced to the command's caller."""
        error = self.error or ErrorPayload()
        return ProtocolError(error.code, error.message, data=error.data, method=method)


class EventEnvelope(WireModel):
    """Inbound one-way event."""

    method: str
    params: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = Field(default=None, alias="sessionId")

    @field_validator("params", mode="before")
    @classmethod
    def _null_params(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def domain(self) -> str:
        return split_method(self.method)[0]

    @property
    def event(self) -> str:
        return split_method(self.method)[1]
