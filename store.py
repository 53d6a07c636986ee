# store.py
import logging
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.exc import SQLAlchemyError

from errors import StorageError
from models import Reminder

logger = logging.getLogger(__name__)


class ReminderStore:
    """Durable reminder records; the single source of truth for what should fire.

    Every write commits before returning. Any SQLAlchemy failure surfaces as
    StorageError and is never retried here.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, action):
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Reminder store failed to {action}: {e}")
            raise StorageError(f"could not {action}") from e
        finally:
            db.close()

    def insert(self, reminder: Reminder) -> int:
        with self._session("insert reminder") as db:
            db.add(reminder)
            db.commit()
            db.refresh(reminder)
            db.expunge(reminder)
            logger.debug(f"Inserted {reminder!r}")
            return reminder.id

    def get(self, reminder_id: int) -> Optional[Reminder]:
        with self._session("read reminder") as db:
            return db.get(Reminder, reminder_id)

    def get_scheduled(self, chat_id: Optional[int] = None) -> List[Reminder]:
        stmt = (
            select(Reminder)
            .where(Reminder.is_scheduled.is_(True))
            .order_by(Reminder.fire_at_epoch_millis.asc(), Reminder.id.asc())
        )
        if chat_id is not None:
            stmt = stmt.where(Reminder.chat_id == chat_id)
        with self._session("list scheduled reminders") as db:
            return list(db.execute(stmt).scalars())

    def get_by_alarm_id(self, alarm_id: int) -> Optional[Reminder]:
        # Pending records win over finished ones if an alarm id was ever reused.
        stmt = (
            select(Reminder)
            .where(Reminder.alarm_id == alarm_id)
            .order_by(Reminder.is_scheduled.desc(), Reminder.id.desc())
            .limit(1)
        )
        with self._session("look up alarm") as db:
            return db.execute(stmt).scalars().first()

    def alarm_id_in_use(self, alarm_id: int) -> bool:
        return self.get_by_alarm_id(alarm_id) is not None

    def mark_completed(self, reminder_id: int) -> None:
        with self._session("complete reminder") as db:
            db.execute(
                update(Reminder)
                .where(Reminder.id == reminder_id)
                .values(is_scheduled=False)
            )
            db.commit()

    def delete(self, reminder_id: int) -> bool:
        with self._session("delete reminder") as db:
            result = db.execute(delete(Reminder).where(Reminder.id == reminder_id))
            db.commit()
            return result.rowcount > 0

    def delete_all(self) -> int:
        with self._session("clear reminders") as db:
            result = db.execute(delete(Reminder))
            db.commit()
            logger.info(f"Cleared {result.rowcount} reminders")
            return result.rowcount
