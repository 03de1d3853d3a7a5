"""Pydantic schemas for live alert channel payloads."""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel

Severity = Literal["info", "warning", "critical"]


class Alert(BaseModel):
    id: Union[int, str]
    source: str
    severity: Severity
    title: str
    message: str
    acknowledged: bool = False
    created_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class AlertAck(BaseModel):
    alert_id: Union[int, str]


class Ping(BaseModel):
    timestamp: Optional[int] = None