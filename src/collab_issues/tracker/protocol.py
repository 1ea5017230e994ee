"""Validation of client-to-server messages.

Inbound frames are JSON objects of the form `{"type": "<event>", "data": ...}`.
Event names match the ones browser clients already send.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateIssuePayload(_Payload):
    title: str
    description: str = ""


class UpdateStatusPayload(_Payload):
    issue_id: str = Field(alias="issueId", min_length=1)
    status: str


class AddCommentPayload(_Payload):
    issue_id: str = Field(alias="issueId", min_length=1)
    text: str


class JoinRequest(BaseModel):
    type: Literal["user:join"]
    data: str


class CreateIssue(BaseModel):
    type: Literal["issue:create"]
    data: CreateIssuePayload


class UpdateStatus(BaseModel):
    type: Literal["issue:updateStatus"]
    data: UpdateStatusPayload


class AddComment(BaseModel):
    type: Literal["issue:addComment"]
    data: AddCommentPayload


class DeleteIssue(BaseModel):
    type: Literal["issue:delete"]
    data: str = Field(min_length=1)


ClientMessage = Annotated[
    JoinRequest | CreateIssue | UpdateStatus | AddComment | DeleteIssue,
    Field(discriminator="type"),
]

_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: Any) -> JoinRequest | CreateIssue | UpdateStatus | AddComment | DeleteIssue:
    """Validate a decoded frame. Raises pydantic's ValidationError on bad input."""
    return _adapter.validate_python(raw)
