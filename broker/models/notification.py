"""Outbound notification models."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class NotificationType(StrEnum):
    NEW_RESPONSE = "new_response"
    RESPONSE_ACCEPTED = "response_accepted"
    RESPONSE_REJECTED = "response_rejected"
    DEAL_CREATED = "deal_created"
    DEAL_CONFIRMED = "deal_confirmed"
    DEAL_COMPLETED = "deal_completed"
    DEAL_DISPUTED = "deal_disputed"
    ORDER_EXPIRED = "order_expired"
    DEAL_EXPIRED = "deal_expired"


@dataclass(frozen=True)
class Notification:
    recipient_id: int
    address: str | None
    type: NotificationType
    title: str
    body: str
    context: dict[str, Any] = field(default_factory=dict)
