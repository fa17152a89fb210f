from typing import Any, Dict, Optional

from pydantic import BaseModel


class StreamAdvice(BaseModel):
    model_config = {"extra": "allow"}

    reconnect: Optional[str] = None
    interval: Optional[int] = None
    timeout: Optional[int] = None


class StreamMessage(BaseModel):
    """Protocol-level message seen by the incoming extension.

    Only the fields the coordinator inspects are typed; the original dict is
    what gets forwarded to the transport.
    """

    model_config = {"extra": "allow"}

    channel: Optional[str] = None
    clientId: Optional[str] = None
    successful: Optional[bool] = None
    id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    advice: Optional[StreamAdvice] = None


class StreamingEvent(BaseModel):
    model_config = {"extra": "allow"}

    createdDate: Optional[str] = None
    replayId: Optional[int] = None
    type: Optional[str] = None


class SObjectRef(BaseModel):
    model_config = {"extra": "allow"}

    Id: str


class TestResultMessage(BaseModel):
    """Payload delivered on the test result channel."""

    model_config = {"extra": "allow"}

    event: Optional[StreamingEvent] = None
    sobject: SObjectRef
