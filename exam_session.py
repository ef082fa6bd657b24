# exam_session.py
# -----------------------------------------------------------------------------
# Server-side exam timer, one per signed-in student.
# - A session is {user_id, exam_id, started_at, ends_at}; ends_at is absolute
#   and fixed when the session is created, so reloads never move the deadline
# - Remaining time is computed from ends_at on every read; nothing ticks
# - Opening a different exam replaces the live session (no inherited deadline)
# - Creation is compare-and-set under a per-user lock; the first caller wins
# - Process-local: a restart forgets every timer (the attempt starts fresh, the
#   results table still blocks a second submission)
# -----------------------------------------------------------------------------

import math
import threading
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional


@dataclass(frozen=True)
class ExamSession:
    user_id: int
    exam_id: int
    started_at: float
    ends_at: float

    def remaining_seconds(self, now: float) -> int:
        return max(0, int(math.floor(self.ends_at - now)))

    def is_expired(self, now: float) -> bool:
        return now >= self.ends_at

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExamSessionManager:
    """Keyed store of live exam sessions with per-user serialisation."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._sessions: Dict[int, ExamSession] = {}
        self._locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, user_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------ writes
    def begin_or_resume(self, user_id: int, exam_id: int, duration_minutes: Any) -> int:
        """
        Create the session on first access (or when the live one belongs to
        another exam) and return the whole seconds left before ends_at.
        A repeated call for the same exam leaves ends_at untouched.
        """
        user_id, exam_id = int(user_id), int(exam_id)
        with self._lock_for(user_id):
            now = self._clock()
            current = self._sessions.get(user_id)
            if current is None or current.exam_id != exam_id:
                minutes = max(0, int(duration_minutes or 0))
                if current is not None:
                    print(f"[exam] user {user_id} switched from exam {current.exam_id} to {exam_id}; new deadline")
                current = ExamSession(
                    user_id=user_id,
                    exam_id=exam_id,
                    started_at=now,
                    ends_at=now + minutes * 60,
                )
                self._sessions[user_id] = current
            return current.remaining_seconds(now)

    def clear(self, user_id: int, exam_id: int) -> bool:
        """Drop the session for (user, exam). Missing sessions are fine."""
        user_id, exam_id = int(user_id), int(exam_id)
        with self._lock_for(user_id):
            current = self._sessions.get(user_id)
            if current is None or current.exam_id != exam_id:
                return False
            del self._sessions[user_id]
            return True

    def clear_user(self, user_id: int) -> bool:
        """Drop whatever session the user has (quit / logout)."""
        user_id = int(user_id)
        with self._lock_for(user_id):
            return self._sessions.pop(user_id, None) is not None

    # ------------------------------------------------------------------- reads
    def get(self, user_id: int, exam_id: int) -> Optional[ExamSession]:
        current = self._sessions.get(int(user_id))
        if current is None or current.exam_id != int(exam_id):
            return None
        return current

    def active(self, user_id: int) -> Optional[ExamSession]:
        return self._sessions.get(int(user_id))

    def remaining_seconds(self, user_id: int, exam_id: int) -> Optional[int]:
        current = self.get(user_id, exam_id)
        if current is None:
            return None
        return current.remaining_seconds(self._clock())

    def is_expired(self, user_id: int, exam_id: int) -> bool:
        current = self.get(user_id, exam_id)
        return current is not None and current.is_expired(self._clock())

    def live_count(self, exam_id: int) -> int:
        now = self._clock()
        return sum(
            1 for s in list(self._sessions.values())
            if s.exam_id == int(exam_id) and not s.is_expired(now)
        )


__all__ = ["ExamSession", "ExamSessionManager"]
