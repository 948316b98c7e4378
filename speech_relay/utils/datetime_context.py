"""
Template context preparation.

The backend agent prompt may declare a "current datetime" template variable.
It is filled in with a human-readable, locale-aware value right before the
session is created, so the agent never sees a raw timestamp.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from babel import Locale
from babel.core import UnknownLocaleError
from babel.dates import format_datetime, format_time, match_skeleton

from speech_relay.config.constants import (
    DEFAULT_DATETIME_LOCALE,
    DEFAULT_DATETIME_TIMEZONE,
    LOGGER_NAME,
)

logger = logging.getLogger(LOGGER_NAME)

# CLDR skeleton for month, weekday and day; the matched pattern is widened below
DATE_SKELETON = "MMMMEd"
FALLBACK_DATE_PATTERN = "EEEE, MMMM d"
TIME_PATTERN = "HH:mm"

QUOTED_LITERAL = re.compile(r"('[^']*')")
FIELD_RUN = re.compile(r"([EcML])\1*")


def _widen_field(match: re.Match) -> str:
    run = match.group(0)
    symbol = run[0]
    if symbol in "Ec":
        return symbol * 4
    # Only abbreviated month names are widened, numeric months stay numeric
    return symbol * 4 if len(run) == 3 else run


def long_date_pattern(locale: Locale) -> str:
    """
    Return the locale's month/weekday/day pattern with full weekday and month names.

    CLDR only ships the abbreviated ``MMMMEd`` form, so every weekday field
    is widened to its wide form (``EEEE``) and abbreviated months to ``MMMM``.
    Quoted literals such as ``'de'`` are left alone.
    """
    skeleton = match_skeleton(DATE_SKELETON, locale.datetime_skeletons)
    if skeleton is None:
        return FALLBACK_DATE_PATTERN
    pattern = locale.datetime_skeletons[skeleton].pattern
    parts = QUOTED_LITERAL.split(pattern)
    return "".join(
        part if part.startswith("'") else FIELD_RUN.sub(_widen_field, part)
        for part in parts
    )


def format_current_datetime(
    locale: str = DEFAULT_DATETIME_LOCALE,
    timezone: str = DEFAULT_DATETIME_TIMEZONE,
    now: Optional[datetime] = None,
) -> str:
    """
    Render a moment as weekday, long month and day, then HH:mm, in the given locale.

    Args:
        locale: Babel/CLDR locale identifier, e.g. ``es_ES``
        timezone: IANA time zone name
        now: Moment to render, defaults to the current time

    Returns:
        The formatted string, e.g. ``martes, 15 de octubre, 14:30``

    Raises:
        ValueError: If the locale or the time zone is unknown
    """
    try:
        tz = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown time zone: {timezone}") from e

    moment = now.astimezone(tz) if now else datetime.now(tz)
    try:
        babel_locale = Locale.parse(locale)
    except (UnknownLocaleError, ValueError) as e:
        raise ValueError(f"Unknown locale: {locale}") from e

    date_part = format_datetime(moment, long_date_pattern(babel_locale), tzinfo=tz, locale=babel_locale)
    time_part = format_time(moment, TIME_PATTERN, tzinfo=tz, locale=babel_locale)
    return f"{date_part}, {time_part}"


def resolve_template_context(
    base: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    datetime_variable: Optional[str] = None,
    locale: str = DEFAULT_DATETIME_LOCALE,
    timezone: str = DEFAULT_DATETIME_TIMEZONE,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Merge the configured and per-call context and fill the datetime variable.

    The datetime variable is only filled when one of the two contexts declares
    it; a declared value is always replaced.
    """
    context: Dict[str, Any] = dict(base or {})
    context.update(overrides or {})

    if datetime_variable and datetime_variable in context:
        context[datetime_variable] = format_current_datetime(locale, timezone, now)
        logger.debug(f"Resolved {datetime_variable}: {context[datetime_variable]}")

    return context
