"""Reassemble Sabbath records from a month of calendar timeline events.

The calendar service emits each Sabbath as separate, consecutive timeline
items (candle lighting, optional parsha, havdalah) with no shared
identifier. The parser walks the events once, in the order delivered,
using a two-state machine.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from processor.date_keys import day_of, key_of
from processor.errors import MalformedEventOrder
from processor.models import (
    PARASHAT_PREFIX,
    CalendarEvent,
    EventCategory,
    SabbathRecord,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    """No Sabbath in progress."""


@dataclass(frozen=True)
class Pending:
    """Candle lighting seen, waiting for havdalah."""
    candle_lighting: datetime
    parsha: Optional[str] = None


ParserState = Union[Idle, Pending]

IDLE = Idle()


def parsha_name(event: CalendarEvent) -> Optional[str]:
    """
    Return the parsha name if the event announces one.

    Args:
        event: Timeline event

    Returns:
        Name with the "Parashat " prefix removed, or None
    """
    has_prefix = event.title.startswith(PARASHAT_PREFIX)
    if event.category is not EventCategory.PARASHAT and not has_prefix:
        return None
    if has_prefix:
        return event.title[len(PARASHAT_PREFIX):].strip()
    return event.title.strip()


def transition(
    state: ParserState, event: CalendarEvent
) -> Tuple[ParserState, Optional[SabbathRecord]]:
    """
    Apply one event to the parser state.

    Args:
        state: Current state
        event: Next event in delivery order

    Returns:
        Tuple of (new state, record emitted by this event or None)
    """
    if event.category is EventCategory.CANDLES:
        # A candle while pending discards the unterminated Sabbath
        if isinstance(state, Pending):
            logger.warning(
                f"Candle lighting at {event.date.isoformat()} reopened a pending "
                f"Sabbath from {state.candle_lighting.isoformat()}; discarding it"
            )
        return Pending(candle_lighting=event.date), None

    if isinstance(state, Idle):
        if event.category is EventCategory.HAVDALAH:
            error = MalformedEventOrder(
                f"Havdalah at {event.date.isoformat()} has no pending candle lighting"
            )
            logger.warning(f"Dropping event: {error}")
        return state, None

    if event.category is EventCategory.HAVDALAH:
        record = SabbathRecord(
            shabbat_date=day_of(state.candle_lighting),
            candle_lighting=state.candle_lighting,
            havdalah=event.date,
            parsha=state.parsha,
        )
        return IDLE, record

    name = parsha_name(event)
    if name is not None:
        return Pending(candle_lighting=state.candle_lighting, parsha=name), None

    return state, None


class ShabbatParser:
    """Parser turning a month timeline into SabbathRecords."""

    def parse(self, events: List[CalendarEvent]) -> List[SabbathRecord]:
        """
        Correlate candle lighting, parsha and havdalah events.

        Args:
            events: Timeline events in the order returned by the service

        Returns:
            Emitted records, in emission order
        """
        state: ParserState = IDLE
        records = []

        for event in events:
            state, record = transition(state, event)
            if record is not None:
                records.append(record)

        if isinstance(state, Pending):
            logger.info(
                f"Timeline ended with unterminated Sabbath starting "
                f"{state.candle_lighting.isoformat()}"
            )

        logger.info(f"Parsed {len(records)} Sabbath records from {len(events)} events")
        return records

    def parse_by_key(self, events: List[CalendarEvent]) -> Dict[str, SabbathRecord]:
        """
        Parse events and key the records by Sabbath date.

        A later record for the same date replaces an earlier one.
        """
        return {key_of(record.shabbat_date): record for record in self.parse(events)}
