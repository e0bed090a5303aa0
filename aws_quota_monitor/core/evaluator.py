"""Alarm evaluation: find the most severe alarm a quota's usage has crossed."""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from ..models import AlarmDefinition


@dataclass(frozen=True)
class AlarmMatch:
    """The alarm selected for a quota."""

    name: str
    threshold: int


def usage_percent(usage: int, limit: Optional[float]) -> Optional[float]:
    """Usage as a percentage of the limit, or None when the limit is unusable.

    Not capped at 100: over-limit usage still matches high thresholds.
    """
    if limit is None or limit <= 0:
        return None
    return usage * 100.0 / limit


def evaluate(usage: int, limit: Optional[float], alarms: Iterable[AlarmDefinition]) -> Optional[AlarmMatch]:
    """Select the alarm with the highest threshold not above the usage percent.

    Alarms are scanned in the order given; on equal thresholds the first one
    wins. A zero or missing limit makes the quota non-evaluable and yields None.
    """
    percent = usage_percent(usage, limit)
    if percent is None:
        return None

    best: Optional[AlarmDefinition] = None
    for alarm in alarms:
        if alarm.threshold_percent > percent:
            continue
        if best is None or alarm.threshold_percent > best.threshold_percent:
            best = alarm

    if best is None:
        return None
    return AlarmMatch(name=best.name, threshold=best.threshold_percent)


class AlarmRegistry:
    """Named alarms in registration order.

    Upserts replace the mapping wholesale so a reader holding the result of
    :meth:`alarms` never sees a partially applied change. Re-registering a
    name keeps its original position.
    """

    def __init__(self, alarms: Iterable[Tuple[str, int]] = ()):
        self._alarms: Dict[str, AlarmDefinition] = {}
        for name, threshold in alarms:
            self.register(name, threshold)

    def register(self, name: str, threshold_percent: int) -> AlarmDefinition:
        if not isinstance(name, str) or not name:
            raise ValueError("alarm name must be a non-empty string")
        if isinstance(threshold_percent, bool) or not isinstance(threshold_percent, int):
            raise ValueError(f"alarm '{name}' threshold must be an integer")
        if threshold_percent < 0:
            raise ValueError(f"alarm '{name}' threshold must be >= 0")

        alarm = AlarmDefinition(name=name, threshold_percent=threshold_percent)
        updated = dict(self._alarms)
        updated[name] = alarm
        self._alarms = updated
        return alarm

    def unregister(self, name: str) -> bool:
        if name not in self._alarms:
            return False
        updated = dict(self._alarms)
        del updated[name]
        self._alarms = updated
        return True

    def alarms(self) -> Tuple[AlarmDefinition, ...]:
        return tuple(self._alarms.values())

    def get(self, name: str) -> Optional[AlarmDefinition]:
        return self._alarms.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._alarms

    def __len__(self) -> int:
        return len(self._alarms)
