# models.py
import time
import datetime
from dataclasses import dataclass
from typing import Optional

import pytz
from sqlalchemy import Column, Integer, BigInteger, String, Boolean

from database import Base


EPOCH = datetime.datetime(1970, 1, 1, tzinfo=pytz.UTC)
ONE_MILLI = datetime.timedelta(milliseconds=1)


def now_millis() -> int:
    return int(time.time() * 1000)


# Integer timedelta arithmetic keeps the round trip exact.
def millis_to_datetime(millis, tz=pytz.UTC):
    return (EPOCH + millis * ONE_MILLI).astimezone(tz)


def datetime_to_millis(dt) -> int:
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return (dt - EPOCH) // ONE_MILLI


class Reminder(Base):
    __tablename__ = "reminders"
    # AUTOINCREMENT: ids of deleted reminders are never handed out again
    __table_args__ = {"sqlite_autoincrement": True}
    id = Column(Integer, primary_key=True, autoincrement=True)
    message = Column(String, nullable=False)
    fire_at_epoch_millis = Column(BigInteger, nullable=False, index=True)
    alarm_id = Column(Integer, nullable=False, index=True)
    is_scheduled = Column(Boolean, nullable=False, default=True)
    created_at = Column(BigInteger, nullable=False, default=now_millis)
    chat_id = Column(BigInteger, nullable=True, index=True)

    def __repr__(self):
        return (
            f"<Reminder id={self.id} alarm_id={self.alarm_id} "
            f"fire_at={self.fire_at_epoch_millis} scheduled={self.is_scheduled}>"
        )


@dataclass(frozen=True)
class AlarmEvent:
    """Payload handed to the alarm handler when a registration fires."""
    alarm_id: int
    message: str
    chat_id: Optional[int] = None
