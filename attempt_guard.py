# attempt_guard.py
# One attempt per (student, exam): a results row means the attempt is used up.

from typing import Any, Callable

from errors import AlreadyAttempted, PersistenceFailure


class AttemptGuard:
    def __init__(self, fetch_one: Callable[..., Any]):
        self._fetch_one = fetch_one

    def can_attempt(self, user_id: int, exam_id: int) -> bool:
        """
        True when no result exists yet. Store errors raise PersistenceFailure,
        so callers that do not handle it deny access (fail closed).
        """
        try:
            row = self._fetch_one("""
                SELECT result_id
                  FROM results
                 WHERE user_id = %s AND exam_id = %s
                 LIMIT 1;
            """, (int(user_id), int(exam_id)))
        except Exception as e:
            print(f"[guard] results lookup failed for user {user_id} exam {exam_id}: {e}")
            raise PersistenceFailure("results lookup failed", user_id=user_id, exam_id=exam_id) from e
        return row is None

    def ensure_can_attempt(self, user_id: int, exam_id: int) -> None:
        if not self.can_attempt(user_id, exam_id):
            raise AlreadyAttempted(user_id=user_id, exam_id=exam_id)


__all__ = ["AttemptGuard"]
