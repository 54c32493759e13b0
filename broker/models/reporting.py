"""Reporting models for background maintenance runs."""

from dataclasses import dataclass, field


@dataclass
class ExpiryCycleSummary:
    started_at: str
    orders_scanned: int = 0
    orders_expired: int = 0
    deals_scanned: int = 0
    deals_expired: int = 0
    orders_cancelled: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0
    errors: list[str] = field(default_factory=list)


@dataclass
class UserStats:
    user_id: int
    total_orders: int = 0
    active_orders: int = 0
    completed_orders: int = 0
    total_deals: int = 0
    completed_deals: int = 0
    cancelled_deals: int = 0
    total_volume: float = 0.0
    success_rate: float = 0.0
    average_rating: float = 0.0
    total_reviews: int = 0
