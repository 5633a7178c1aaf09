from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """
    Current UTC time as a naive datetime. SQLite hands DateTime columns back
    without tzinfo, so everything stored and compared uses naive UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utctoday() -> date:
    return utcnow().date()


def paginate(limit: int, offset: int, total: int) -> dict:
    return {"limit": limit, "offset": offset, "total": total, "has_more": offset + limit < total}
