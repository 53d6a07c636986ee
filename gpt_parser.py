# gpt_parser.py
import json
import re
import datetime
import logging

import pytz
from openai import AsyncOpenAI, OpenAIError

from models import datetime_to_millis

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a reminder-creation assistant.
The current time is {now}.
If the text is a valid reminder (specific task AND a specific time)
return a JSON exactly like:
{{"task":"...","datetime_iso":"..."}}
Use ISO 8601 with a UTC offset for datetime_iso.
If time missing: {{"error":"no_time"}}
If not a reminder: {{"error":"not_reminder"}}"""


def make_client(api_key, base_url=None):
    return AsyncOpenAI(api_key=api_key, base_url=base_url)


def parse_iso(value, tz=pytz.UTC):
    """Parse an ISO 8601 string; naive values are taken in ``tz``."""
    dt = datetime.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = tz.localize(dt)
    return dt


def to_epoch_millis(value, tz=pytz.UTC):
    return datetime_to_millis(parse_iso(value, tz))


async def parse(text: str, client, model: str, now=None) -> dict:
    now = now or datetime.datetime.now(pytz.UTC)
    chat = [
        {"role": "system", "content": SYSTEM_PROMPT.format(now=now.isoformat())},
        {"role": "user", "content": text}
    ]
    try:
        resp = await client.chat.completions.create(
            model=model, messages=chat, temperature=0, max_tokens=128
        )
    except OpenAIError as e:
        logger.error(f"OpenAI request error: {e}")
        return {"error": "llm_error"}
    raw = (resp.choices[0].message.content or "").strip()
    # guard-rail: must be valid JSON
    match = re.search(r'\{.*\}', raw, re.DOTALL)
    if not match:
        return {"error": "parse_failed"}
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return {"error": "parse_failed"}
    if not isinstance(data, dict):
        return {"error": "parse_failed"}
    if "error" in data:
        return data
    if not data.get("task") or not data.get("datetime_iso"):
        return {"error": "no_time"}
    # datetime sanity
    try:
        parse_iso(data["datetime_iso"])
    except (ValueError, AttributeError):
        return {"error": "bad_time"}
    return data
