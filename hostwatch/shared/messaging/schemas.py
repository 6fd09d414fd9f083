from enum import Enum
from typing import Annotated, Any, Literal
from pydantic import BaseModel, Field, TypeAdapter

from hostwatch.shared.core.models import MetricsSnapshot


class MessageType(str, Enum):
    """Stream message types sent from the aggregator to viewers"""
    HISTORY = "history"
    METRICS = "metrics"


class HistoryMessage(BaseModel):
    """Backlog sent once when a viewer connects"""
    type: Literal["history"] = "history"
    data: list[MetricsSnapshot]


class MetricsMessage(BaseModel):
    """One broadcast snapshot"""
    type: Literal["metrics"] = "metrics"
    data: MetricsSnapshot


StreamMessage = Annotated[HistoryMessage | MetricsMessage, Field(discriminator='type')]

_stream_message_adapter: TypeAdapter[HistoryMessage | MetricsMessage] = TypeAdapter(StreamMessage)


def encode_history(snapshots: list[MetricsSnapshot]) -> str:
    """Serialize the history backlog envelope"""
    return HistoryMessage(data=snapshots).model_dump_json(by_alias=True)


def encode_metrics(snapshot: MetricsSnapshot) -> str:
    """Serialize a metrics broadcast envelope"""
    return MetricsMessage(data=snapshot).model_dump_json(by_alias=True)


def decode_message(payload: dict[str, Any]) -> HistoryMessage | MetricsMessage | None:
    """
    Decode a parsed stream message.

    Returns:
        The typed message, or None when the type is unknown.

    Raises:
        pydantic.ValidationError: known type with an invalid body
    """
    if payload.get('type') not in {t.value for t in MessageType}:
        return None
    return _stream_message_adapter.validate_python(payload)
