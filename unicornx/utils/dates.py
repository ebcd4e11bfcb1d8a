from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta

UTC = timezone.utc

def now_utc() -> datetime:
    return datetime.now(tz=UTC)

def as_utc(dt: datetime) -> datetime:
    # naive считаем UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)

def add_months(dt: datetime, months: int) -> datetime:
    # 31 янв + 1 мес = последний день февраля
    return dt + relativedelta(months=months)
