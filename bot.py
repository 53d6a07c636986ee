# bot.py
import re
import asyncio
import logging
from dataclasses import dataclass
from functools import wraps

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.util import ref_to_obj
from telegram import Update
from telegram.ext import (
    Application, CommandHandler, MessageHandler, ContextTypes, filters
)

import config
import gpt_parser
from database import make_engine, make_session_factory, init_db
from errors import ValidationError, StorageError, SchedulingError, NotFound
from models import millis_to_datetime
from receiver import AlarmReceiver, LogPresenter, TelegramPresenter, VoicePresenter, format_reminder
from recovery import RecoveryCoordinator
from scheduler import AlarmScheduler
from service import ReminderService
from store import ReminderStore

logger = logging.getLogger(__name__)

TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
RECONCILE_JOB_ID = "reconcile"


@dataclass
class Components:
    store: ReminderStore
    alarms: AlarmScheduler
    receiver: AlarmReceiver
    recovery: RecoveryCoordinator
    service: ReminderService
    tz: object


def build_components(db_url, scheduler, presenters=None, tz=pytz.UTC,
                     exact_alarm_permission=None, inexact_fallback=True,
                     misfire_grace_seconds=60):
    engine = make_engine(db_url)
    init_db(engine)
    store = ReminderStore(make_session_factory(engine))
    receiver = AlarmReceiver(store, presenters)
    alarms = AlarmScheduler(
        scheduler,
        receiver.on_alarm,
        exact_alarm_permission=exact_alarm_permission,
        inexact_fallback=inexact_fallback,
        misfire_grace_seconds=misfire_grace_seconds,
    )
    return Components(
        store=store,
        alarms=alarms,
        receiver=receiver,
        recovery=RecoveryCoordinator(store, alarms),
        service=ReminderService(store, alarms, tz=tz),
        tz=tz,
    )


def _components(context) -> Components:
    return context.application.bot_data["reminders"]


def _describe(reminder, tz):
    when = millis_to_datetime(reminder.fire_at_epoch_millis, tz).strftime("%Y-%m-%d %H:%M %Z")
    return f"[{reminder.id}] {reminder.message} at {when}"


def _parse_time(value):
    m = TIME_RE.match(value or "")
    if not m:
        raise ValidationError("Time must look like HH:MM")
    return int(m.group(1)), int(m.group(2))


def _parse_id(args):
    if not args or not args[0].isdecimal():
        raise ValidationError("Please give the reminder id, e.g. /cancel 3")
    return int(args[0])


async def _reply_error(update: Update, error):
    if isinstance(error, ValidationError):
        text = str(error)
    elif isinstance(error, NotFound):
        text = "Reminder not found."
    elif isinstance(error, SchedulingError):
        text = "Reminder saved, but the alarm could not be set. It will be retried on /resync."
    elif isinstance(error, StorageError):
        text = "Sorry, I couldn't save that. Please try again."
    else:
        raise error
    await update.message.reply_text(text)


# --- Telegram Bot Handlers ---

def user_only(func):
    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        if update.effective_user is None or update.message is None:
            return
        return await func(update, context)
    return wrapper


def admin_only(func):
    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        if update.effective_user.id not in config.ADMIN_USER_IDS:
            await update.message.reply_text("Not allowed.")
            return
        return await func(update, context)
    return wrapper


@user_only
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(
        "Hi! I'm your voice reminder bot. "
        "Send me something like 'Remind me to take my medication at 9pm' or use /remind 21:00 Take medication."
    )


@user_only
async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(
        "Send reminders in natural language, or use the commands:\n"
        "/remind HH:MM <text> - remind at the next HH:MM\n"
        "/list - show pending reminders\n"
        "/cancel <id> - cancel a reminder\n"
        "/reschedule <id> HH:MM - move a reminder\n"
        "/preview <text> - show how a reminder will look\n"
        "/resync - re-register pending alarms"
    )


@user_only
async def remind_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    parts = _components(context)
    try:
        if len(context.args) < 2:
            raise ValidationError("Usage: /remind HH:MM <text>")
        hour, minute = _parse_time(context.args[0])
        reminder = parts.service.create_at_time_of_day(
            " ".join(context.args[1:]), hour, minute, chat_id=update.effective_chat.id
        )
    except (ValidationError, StorageError, SchedulingError) as e:
        await _reply_error(update, e)
        return
    await update.message.reply_text(f"Reminder set: {_describe(reminder, parts.tz)}")


@user_only
async def list_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    parts = _components(context)
    try:
        reminders = parts.service.list_scheduled(chat_id=update.effective_chat.id)
    except StorageError as e:
        await _reply_error(update, e)
        return
    if not reminders:
        await update.message.reply_text("You have no active reminders.")
        return
    msg = "Your active reminders:\n"
    for reminder in reminders:
        msg += f"- {_describe(reminder, parts.tz)}\n"
    await update.message.reply_text(msg)


@user_only
async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    parts = _components(context)
    try:
        reminder_id = _parse_id(context.args)
        reminder = parts.service.get(reminder_id)
        if reminder.chat_id != update.effective_chat.id:
            raise NotFound(f"Reminder {reminder_id} not found")
        parts.service.cancel(reminder_id)
    except (ValidationError, StorageError, NotFound) as e:
        await _reply_error(update, e)
        return
    await update.message.reply_text("Reminder cancelled.")


@user_only
async def reschedule_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    parts = _components(context)
    try:
        reminder_id = _parse_id(context.args)
        if len(context.args) < 2:
            raise ValidationError("Usage: /reschedule <id> HH:MM")
        hour, minute = _parse_time(context.args[1])
        if parts.service.get(reminder_id).chat_id != update.effective_chat.id:
            raise NotFound(f"Reminder {reminder_id} not found")
        fire_at = parts.service.next_time_of_day(hour, minute)
        reminder = parts.service.reschedule(reminder_id, fire_at)
    except (ValidationError, StorageError, SchedulingError, NotFound) as e:
        await _reply_error(update, e)
        return
    await update.message.reply_text(f"Reminder moved: {_describe(reminder, parts.tz)}")


@user_only
async def preview_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    text = " ".join(context.args).strip()
    if not text:
        await update.message.reply_text("Please enter a message to preview.")
        return
    await update.message.reply_text(format_reminder(text))


@user_only
async def resync_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    parts = _components(context)
    try:
        report = await asyncio.to_thread(parts.recovery.run)
    except StorageError as e:
        await _reply_error(update, e)
        return
    await update.message.reply_text(
        f"Resynced: {len(report.rescheduled)} alarms set, {len(report.completed)} missed reminders closed"
        + (f", {len(report.failed)} failed" if report.failed else "")
    )


@user_only
@admin_only
async def clear_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    parts = _components(context)
    try:
        removed = parts.service.clear_all()
    except StorageError as e:
        await _reply_error(update, e)
        return
    await update.message.reply_text(f"Cleared {removed} reminders.")


@user_only
async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    parts = _components(context)
    client = context.application.bot_data.get("llm_client")
    if client is None:
        await update.message.reply_text("Natural language reminders are not configured. Use /remind HH:MM <text>.")
        return
    await update.message.reply_chat_action("typing")
    parsed = await gpt_parser.parse(update.message.text.strip(), client, config.OPENAI_MODEL)
    if "error" in parsed:
        if parsed["error"] == "no_time":
            await update.message.reply_text("Sorry, I couldn't find a time in your reminder. Please specify when.")
        elif parsed["error"] == "not_reminder":
            await update.message.reply_text("That doesn't look like a reminder. Please try again.")
        else:
            await update.message.reply_text("Sorry, I couldn't understand. Please try again.")
        return
    try:
        fire_at = gpt_parser.to_epoch_millis(parsed["datetime_iso"], parts.tz)
        reminder = parts.service.create(parsed["task"], fire_at, chat_id=update.effective_chat.id)
    except (ValidationError, StorageError, SchedulingError) as e:
        await _reply_error(update, e)
        return
    await update.message.reply_text(f"Reminder set: {_describe(reminder, parts.tz)}")


# --- Main Application Setup ---

def build_presenters(bot):
    presenters = [LogPresenter(), TelegramPresenter(bot)]
    if config.TTS_ENGINE_FACTORY:
        # "package.module:callable" returning an object with speak(text)
        engine = ref_to_obj(config.TTS_ENGINE_FACTORY)()
        presenters.append(VoicePresenter(engine))
        logger.info(f"Speaking reminders through {config.TTS_ENGINE_FACTORY}")
    return presenters


async def post_init(application: Application):
    parts: Components = application.bot_data["reminders"]
    scheduler = parts.alarms.scheduler
    scheduler.start()
    if config.RECONCILE_INTERVAL_MINUTES > 0:
        scheduler.add_job(
            parts.recovery.run, "interval",
            minutes=config.RECONCILE_INTERVAL_MINUTES,
            id=RECONCILE_JOB_ID, replace_existing=True,
        )
    # Every alarm registration died with the previous process.
    try:
        report = await asyncio.to_thread(parts.recovery.run)
        logger.info(f"Startup recovery: {report}")
    except StorageError as e:
        logger.error(f"Startup recovery could not read reminders: {e}")


async def post_shutdown(application: Application):
    parts: Components = application.bot_data["reminders"]
    if parts.alarms.scheduler.running:
        parts.alarms.scheduler.shutdown(wait=False)


def build_application():
    application = (
        Application.builder()
        .token(config.TELEGRAM_BOT_TOKEN)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )
    tz = pytz.timezone(config.TIMEZONE)
    parts = build_components(
        config.DB_URL,
        AsyncIOScheduler(timezone=pytz.UTC),
        presenters=build_presenters(application.bot),
        tz=tz,
        exact_alarm_permission=lambda: config.EXACT_ALARMS_ALLOWED,
        inexact_fallback=config.INEXACT_FALLBACK_ENABLED,
        misfire_grace_seconds=config.MISFIRE_GRACE_SECONDS,
    )
    application.bot_data["reminders"] = parts
    if config.OPENAI_API_KEY:
        application.bot_data["llm_client"] = gpt_parser.make_client(
            config.OPENAI_API_KEY, config.OPENAI_BASE_URL
        )

    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("remind", remind_command))
    application.add_handler(CommandHandler("list", list_command))
    application.add_handler(CommandHandler("cancel", cancel_command))
    application.add_handler(CommandHandler("reschedule", reschedule_command))
    application.add_handler(CommandHandler("preview", preview_command))
    application.add_handler(CommandHandler("resync", resync_command))
    application.add_handler(CommandHandler("clear", clear_command))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))
    return application


def main():
    config.setup_logging()
    if not config.TELEGRAM_BOT_TOKEN:
        raise SystemExit("TELEGRAM_BOT_TOKEN is not set")
    application = build_application()
    logger.info("Bot started.")
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        logger.info("Bot stopped by user.")
