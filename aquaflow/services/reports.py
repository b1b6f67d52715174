from datetime import datetime, timedelta

from aquaflow.schemas.entities import Booking, BookingStatus, PaymentMethod, parse_timestamp, utcnow

PERIODS = ("today", "weekly", "monthly")


def overview(bookings: list[Booking]) -> dict:
    completed = [b for b in bookings if b.status == BookingStatus.COMPLETED]
    return {
        "totalBookings": len(bookings),
        "completed": len(completed),
        "pending": sum(1 for b in bookings if b.status == BookingStatus.PENDING),
        "revenue": sum(b.price for b in completed),
    }


def period_start(period: str, now: datetime) -> datetime:
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return today
    if period == "weekly":
        return today - timedelta(days=today.weekday())  # Monday
    if period == "monthly":
        return today.replace(day=1)
    raise ValueError(f"unknown period {period!r}, expected one of {PERIODS}")


def revenue_report(bookings: list[Booking], period: str = "today", now: datetime | None = None) -> dict:
    """Revenue of bookings completed since the start of ``period``, split by payment method."""
    now = parse_timestamp(now) or utcnow()
    start = period_start(period, now)
    done = [
        b for b in bookings
        if b.status == BookingStatus.COMPLETED and b.completed_at is not None and b.completed_at >= start
    ]
    by_method = {m.value: 0 for m in PaymentMethod}
    for b in done:
        by_method[b.payment_method.value] += b.price
    return {
        "period": period,
        "since": start.isoformat(),
        "count": len(done),
        "totalRevenue": sum(b.price for b in done),
        "byMethod": by_method,
        "bookings": sorted(done, key=lambda b: b.completed_at, reverse=True),
    }
