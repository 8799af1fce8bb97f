from datetime import datetime, timedelta, timezone

from ..domain.value_types import EPOCH_DURATION_S


def epoch_to_time(epoch0: datetime, epoch: int) -> datetime:
    return epoch0 + timedelta(seconds=EPOCH_DURATION_S * epoch)


def iso_z(ts: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. 2024-04-24T14:00:00.000Z"""
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"
