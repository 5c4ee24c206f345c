# dualarb/health.py
import time
from typing import Callable, Dict, List, Optional
from .models import Downtime, VENUES


class ConnectionMonitor:
    """
    Bookkeeping of stream outages per venue.
    Each venue has at most one open downtime; reconnecting closes and archives it.
    """
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.started_at = clock()
        self._current: Dict[str, Downtime] = {}
        self._archive: List[Downtime] = []

    def record_disconnect(self, venue: str, reason: str, at: Optional[float] = None):
        if venue in self._current:
            return
        self._current[venue] = Downtime(
            venue=venue,
            disconnected_at=self.clock() if at is None else at,
            reason=reason
        )

    def record_reconnect(self, venue: str, at: Optional[float] = None) -> Optional[Downtime]:
        downtime = self._current.pop(venue, None)
        if downtime is None:
            return None
        downtime.reconnected_at = self.clock() if at is None else at
        self._archive.append(downtime)
        return downtime

    def is_connected(self, venue: str) -> bool:
        return venue not in self._current

    def downtimes(self, venue: Optional[str] = None) -> List[Downtime]:
        if venue is None:
            return list(self._archive)
        return [d for d in self._archive if d.venue == venue]

    def current_downtimes(self) -> List[Downtime]:
        return list(self._current.values())

    def stats(self) -> dict:
        """
        Aggregate outage figures. Ongoing outages count towards downtime but not towards
        the disconnect total until they are closed.
        """
        now = self.clock()
        session = max(now - self.started_at, 0.0)
        venues = list(VENUES) + sorted({d.venue for d in self._archive} - set(VENUES))

        result = {'venues': {}}
        total_disconnects = 0
        total_downtime = 0.0
        for venue in venues:
            archived = self.downtimes(venue)
            downtime = sum(d.duration for d in archived)
            ongoing = self._current.get(venue)
            if ongoing is not None:
                downtime += max(now - ongoing.disconnected_at, 0.0)

            result['venues'][venue] = {
                'disconnects': len(archived),
                'connected': ongoing is None,
                'total_downtime_seconds': downtime,
                'total_downtime_minutes': round(downtime / 60, 2),
                'uptime_percent': _uptime(session, downtime),
            }
            total_disconnects += len(archived)
            total_downtime += downtime

        result['total_disconnects'] = total_disconnects
        result['total_downtime_seconds'] = total_downtime
        result['total_downtime_minutes'] = round(total_downtime / 60, 2)
        result['session_seconds'] = session
        return result


def _uptime(session: float, downtime: float) -> float:
    if session <= 0:
        return 100.0
    return max(0.0, 100.0 * (1 - downtime / session))
