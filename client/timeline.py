import datetime
from typing import List, Optional, Sequence, Tuple

from common.messages import Message

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


def _local(dt: datetime.datetime, tz: Optional[datetime.tzinfo]) -> datetime.datetime:
    return dt.astimezone(tz) if tz is not None else dt.astimezone()


def timestamp_labels(messages: Sequence[Message],
                     tz: Optional[datetime.tzinfo] = None) -> List[Tuple[Message, Optional[str]]]:
    '''
    Pair each message with the separator label shown above it.
        - first message, or first message of a new day: the date
        - first message of a new minute within the same day: the time
        - otherwise: None
    Times are shown in `tz` (local time when omitted).
    '''
    out: List[Tuple[Message, Optional[str]]] = []
    prev: Optional[datetime.datetime] = None
    for m in messages:
        cur = _local(m.created_at, tz)
        if prev is None or prev.date() != cur.date():
            label = cur.strftime(DATE_FORMAT)
        elif (prev.hour, prev.minute) != (cur.hour, cur.minute):
            label = cur.strftime(TIME_FORMAT)
        else:
            label = None
        out.append((m, label))
        prev = cur
    return out
