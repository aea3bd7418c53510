from typing import Any, Dict, Literal, Union

from pydantic import BaseModel, Field
from typing_extensions import Annotated


class ToolStartEvent(BaseModel):
    type: Literal["tool_start"] = "tool_start"
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolEndEvent(BaseModel):
    type: Literal["tool_end"] = "tool_end"
    tool: str
    result: str


class TokenEvent(BaseModel):
    type: Literal["token"] = "token"
    content: str


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


StreamEvent = Annotated[
    Union[ToolStartEvent, ToolEndEvent, TokenEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]
