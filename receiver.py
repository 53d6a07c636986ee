# receiver.py
import asyncio
import logging

from models import AlarmEvent

logger = logging.getLogger(__name__)


def format_reminder(message):
    return f"⏰ Reminder: {message}"


class LogPresenter:
    async def present(self, event: AlarmEvent):
        logger.info(f"Reminder {event.alarm_id} fired: {event.message}")


class TelegramPresenter:
    def __init__(self, bot):
        self.bot = bot

    async def present(self, event: AlarmEvent):
        if event.chat_id is None:
            return
        await self.bot.send_message(chat_id=event.chat_id, text=format_reminder(event.message))


class VoicePresenter:
    """Speaks the reminder through any engine exposing ``speak(text)``."""

    def __init__(self, engine):
        self.engine = engine

    async def present(self, event: AlarmEvent):
        await asyncio.to_thread(self.engine.speak, f"Reminder: {event.message}")


class AlarmReceiver:
    """Handles a fired alarm: present it, then complete the stored reminder.

    An alarm whose record is gone or already finished is ignored. Presenter
    failures are logged and never change the store.
    """

    def __init__(self, store, presenters=None):
        self.store = store
        self.presenters = list(presenters) if presenters else [LogPresenter()]

    async def on_alarm(self, event: AlarmEvent):
        reminder = self.store.get_by_alarm_id(event.alarm_id)
        if reminder is None:
            logger.debug(f"Alarm {event.alarm_id} fired with no matching reminder")
            return
        if not reminder.is_scheduled:
            logger.debug(f"Alarm {event.alarm_id} fired for finished reminder {reminder.id}")
            return
        for presenter in self.presenters:
            try:
                await presenter.present(event)
            except Exception as e:
                logger.error(f"{type(presenter).__name__} failed for alarm {event.alarm_id}: {e}")
        self.store.mark_completed(reminder.id)
        logger.info(f"Reminder {reminder.id} delivered and completed")
