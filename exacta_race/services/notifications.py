"""
Notification sinks for engine events.

LoggingSink        - writes each event to the module logger
RecordingSink      - keeps events in memory (tests, API introspection)
DBNotificationSink - persists to race_events / race_results
FanoutSink         - forwards each event to several sinks
"""

import logging
from typing import Callable, List, Sequence

from sqlalchemy.orm import Session

from exacta_race.core.events import RaceEvent, RaceFinished
from exacta_race.core.interfaces import NotificationSink
from exacta_race.models import RaceEventRecord, RaceResultRecord

logger = logging.getLogger(__name__)


class LoggingSink(NotificationSink):
    def __init__(self, level: int = logging.INFO):
        self.level = level

    def emit(self, event: RaceEvent) -> None:
        logger.log(self.level, "Event %s: %s", event.event_type, event.to_dict())


class RecordingSink(NotificationSink):
    def __init__(self):
        self.events: List[RaceEvent] = []

    def emit(self, event: RaceEvent) -> None:
        self.events.append(event)

    def of_type(self, event_cls: type) -> List[RaceEvent]:
        return [e for e in self.events if isinstance(e, event_cls)]

    def clear(self) -> None:
        self.events.clear()


class DBNotificationSink(NotificationSink):
    """
    Persist every event as a RaceEventRecord; RaceFinished events are
    also archived as a RaceResultRecord.

    The engine state change has already happened when a sink runs, so a
    database failure here is logged and rolled back, not re-raised.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def emit(self, event: RaceEvent) -> None:
        db = self._session_factory()
        try:
            db.add(RaceEventRecord(event_type=event.event_type, payload=event.to_dict()))
            if isinstance(event, RaceFinished):
                db.add(RaceResultRecord(
                    race_id=event.race_id,
                    first_place=event.first_place,
                    second_place=event.second_place,
                    third_place=event.third_place,
                ))
            db.commit()
        except Exception as exc:
            logger.error("Failed to persist %s event: %s", event.event_type, exc, exc_info=True)
            db.rollback()
        finally:
            db.close()


class FanoutSink(NotificationSink):
    def __init__(self, sinks: Sequence[NotificationSink]):
        self.sinks = list(sinks)

    def emit(self, event: RaceEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)
