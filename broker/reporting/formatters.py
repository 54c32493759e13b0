"""Output formatters for expiry cycles and user statistics."""

import json
from dataclasses import asdict

from broker.models.reporting import ExpiryCycleSummary, UserStats


def format_cycle_text(s: ExpiryCycleSummary) -> str:
    """Plain text summary for logging and the CLI."""
    lines = [
        f"=== Expiry Cycle ({s.started_at}) ===",
        f"Orders: {s.orders_expired} expired of {s.orders_scanned} scanned",
        f"Deals: {s.deals_expired} expired of {s.deals_scanned} scanned, "
        f"{s.orders_cancelled} orders released",
    ]
    if s.skipped:
        lines.append(f"Skipped: {s.skipped}")
    if s.errors:
        lines.append(f"Errors: {len(s.errors)}")
        lines.extend(f"  - {e}" for e in s.errors)
    lines.append(f"Duration: {s.duration_seconds:.2f}s")
    return "\n".join(lines)


def format_cycle_json(s: ExpiryCycleSummary) -> str:
    return json.dumps(asdict(s), indent=2)


def format_user_stats_text(s: UserStats) -> str:
    return "\n".join([
        f"User {s.user_id}",
        f"Orders: {s.total_orders} total, {s.active_orders} active, "
        f"{s.completed_orders} completed",
        f"Deals: {s.total_deals} total, {s.completed_deals} completed, "
        f"{s.cancelled_deals} cancelled or expired",
        f"Success rate: {s.success_rate:.1f}%",
        f"Volume: {s.total_volume:.2f}",
        f"Rating: {s.average_rating:.2f} ({s.total_reviews} reviews)",
    ])
