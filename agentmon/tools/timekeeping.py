from datetime import datetime, timezone


def date_now() -> datetime:
    # credential helpers report expiry as an aware timestamp
    return datetime.now(timezone.utc)
