"""Realtime events exchanged with subscribers.

Server events (pushed by the broadcaster):
- instance.status: {instance_id, status}
- instance.stats: {instance_id, cpu, memory}
- instance.logs: {instance_id, line}

Client events (sent over the WebSocket transport):
- subscribe.instance / unsubscribe.instance
- subscribe.logs / unsubscribe.logs
"""

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class StatusData(BaseModel):
    instance_id: str
    status: str


class StatsData(BaseModel):
    instance_id: str
    cpu: float
    memory: float


class LogData(BaseModel):
    instance_id: str
    line: str


class InstanceStatusEvent(BaseModel):
    type: Literal["instance.status"] = "instance.status"
    data: StatusData


class InstanceStatsEvent(BaseModel):
    type: Literal["instance.stats"] = "instance.stats"
    data: StatsData


class InstanceLogsEvent(BaseModel):
    type: Literal["instance.logs"] = "instance.logs"
    data: LogData


ServerEvent = Annotated[
    InstanceStatusEvent | InstanceStatsEvent | InstanceLogsEvent,
    Field(discriminator="type"),
]


def status_event(instance_id: str, status: str) -> InstanceStatusEvent:
    return InstanceStatusEvent(data=StatusData(instance_id=instance_id, status=status))


def stats_event(instance_id: str, cpu: float, memory: float) -> InstanceStatsEvent:
    return InstanceStatsEvent(
        data=StatsData(instance_id=instance_id, cpu=cpu, memory=memory)
    )


def logs_event(instance_id: str, line: str) -> InstanceLogsEvent:
    return InstanceLogsEvent(data=LogData(instance_id=instance_id, line=line))


class ClientEventType(StrEnum):
    SUBSCRIBE_INSTANCE = "subscribe.instance"
    UNSUBSCRIBE_INSTANCE = "unsubscribe.instance"
    SUBSCRIBE_LOGS = "subscribe.logs"
    UNSUBSCRIBE_LOGS = "unsubscribe.logs"


class ClientEvent(BaseModel):
    """Subscription request from a connected client."""

    type: ClientEventType
    instance_id: str
