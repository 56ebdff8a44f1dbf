"""
View helpers shared by the page templates
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from common.schemas import Payment, PaymentStatus, Profile, normalize_status

NAV_LINKS = (
    ("/dashboard", "Dashboard"),
    ("/payment", "Make Payment"),
    ("/check-status", "Check Status"),
    ("/support", "Support"),
)
CTA_HREF = "/payment"

def nav_links(current_path: str) -> List[Dict]:
    """Header links; the call-to-action link is never marked active."""
    links = []
    for href, label in NAV_LINKS:
        is_cta = href == CTA_HREF
        links.append({
            "href": href,
            "label": label,
            "cta": is_cta,
            "active": not is_cta and current_path == href,
        })
    return links

STATUS_CONFIG = {
    PaymentStatus.SUCCESS: {"icon": "✓", "label": "Successful", "css": "success"},
    PaymentStatus.FAILURE: {"icon": "✕", "label": "Failed", "css": "failure"},
    PaymentStatus.PROCESSING: {"icon": "⟳", "label": "Processing", "css": "processing"},
    PaymentStatus.CREATED: {"icon": "○", "label": "Created", "css": "created"},
}

def status_config(status) -> Dict[str, str]:
    return STATUS_CONFIG.get(normalize_status(status), STATUS_CONFIG[PaymentStatus.PROCESSING])

# Direction: the sender column holds the internal id, the receiver column
# holds the account identifier.

def is_sent(payment: Payment, profile: Optional[Profile]) -> bool:
    return profile is not None and payment.sender_id == profile.id

def is_received(payment: Payment, profile: Optional[Profile]) -> bool:
    return profile is not None and payment.receiver_id == profile.account_id

def direction_label(payment: Payment, profile: Optional[Profile]) -> str:
    return "Sent" if is_sent(payment, profile) else "Received"

def payments_filter_expression(profile: Profile) -> str:
    return f"sender_id.eq.{profile.id},receiver_id.eq.{profile.account_id}"

STATUS_FILTERS = {
    "all": None,
    "completed": PaymentStatus.SUCCESS,
    "failed": PaymentStatus.FAILURE,
}
TABS = ("all", "sent", "received")

@dataclass
class DashboardStats:
    total: int = 0
    completed: int = 0
    pending: int = 0
    failed: int = 0
    total_sent: float = 0.0
    total_received: float = 0.0

def dashboard_stats(payments: Iterable[Payment], profile: Optional[Profile]) -> DashboardStats:
    stats = DashboardStats()
    for p in payments:
        stats.total += 1
        if p.status == PaymentStatus.SUCCESS:
            stats.completed += 1
            if is_sent(p, profile):
                stats.total_sent += p.amount
            if is_received(p, profile):
                stats.total_received += p.amount
        elif p.status == PaymentStatus.FAILURE:
            stats.failed += 1
        else:
            stats.pending += 1
    return stats

def filter_payments(payments: Iterable[Payment], profile: Optional[Profile],
                    tab: str = "all", status: str = "all") -> List[Payment]:
    wanted = STATUS_FILTERS.get(status)
    out = []
    for p in payments:
        if tab == "sent" and not is_sent(p, profile):
            continue
        if tab == "received" and not is_received(p, profile):
            continue
        if wanted is not None and p.status != wanted:
            continue
        out.append(p)
    return out

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "INR": "₹", "GBP": "£", "JPY": "¥"}

def format_money(amount: Optional[float], currency: Optional[str] = "USD") -> str:
    if amount is None:
        return "—"
    code = (currency or "USD").upper()
    sign = "-" if amount < 0 else ""
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{sign}{symbol}{abs(amount):,.2f}"
    return f"{sign}{abs(amount):,.2f} {code}"

def time_ago(when: Optional[datetime], now: Optional[datetime] = None) -> str:
    if when is None:
        return ""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    diff = max((now - when).total_seconds(), 0)
    if diff < 60:
        return f"{int(diff)}s ago"
    if diff < 3600:
        return f"{int(diff // 60)}m ago"
    if diff < 86400:
        return f"{int(diff // 3600)}h ago"
    return f"{int(diff // 86400)}d ago"

def short_id(payment_id: str) -> str:
    return f"{payment_id[:8]}…"
