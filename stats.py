"""
Student statistics.

`StudentStats` is maintained as an online summary stored at
`students/{uid}/stats/summary`. Both the incremental path (one new attempt)
and the cold-start path (no summary yet) go through the same fold,
`apply_attempt`, so the two can never disagree.

Running means keep the exact sum of percentages next to the count and only
round when writing `averageScore`, which avoids the drift of re-rounding an
already rounded mean on every update.
"""

import logging
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable

from documents import DocumentStore
from models import (
    MASTERY_THRESHOLD,
    QuizAttempt,
    StudentStats,
    TopicMastery,
    quizzes_path,
    round_half_up,
    stats_path,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_day(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _advance_streak(stats: StudentStats, day: date) -> None:
    """Consecutive activity days: same day keeps, next day extends, a gap resets."""
    last = _parse_day(stats.last_activity_day)
    if last is None or stats.streak <= 0:
        stats.streak = 1
    elif day == last + timedelta(days=1):
        stats.streak += 1
    elif day > last:
        stats.streak = 1
    if last is None or day > last:
        stats.last_activity_day = day.isoformat()


def apply_attempt(stats: StudentStats, attempt: QuizAttempt, when: datetime) -> StudentStats:
    """Fold one quiz attempt into `stats` (in place) and return it."""
    pct = attempt.percentage
    stats.total_quizzes_taken += 1
    stats.score_sum += pct
    stats.average_score = round_half_up(stats.score_sum / stats.total_quizzes_taken)

    if attempt.duration:
        stats.time_spent_seconds += attempt.duration
        stats.total_time_spent = round_half_up(stats.time_spent_seconds / 60)

    _advance_streak(stats, when.date())
    if stats.last_activity_date is None or when >= stats.last_activity_date:
        stats.last_activity_date = when

    # exact match: "Kinematics" and "Kinematics " are different topics
    entry = next((t for t in stats.topic_breakdown if t.topic == attempt.topic), None)
    if entry is None:
        entry = TopicMastery(topic=attempt.topic)
        stats.topic_breakdown.append(entry)
    entry.quizzes_taken += 1
    entry.score_sum += pct
    entry.average_score = round_half_up(entry.score_sum / entry.quizzes_taken)
    entry.last_attempted = when
    entry.mastered = entry.average_score >= MASTERY_THRESHOLD

    stats.topics_mastered = sum(1 for t in stats.topic_breakdown if t.mastered)
    return stats


def _attempt_time(attempt: QuizAttempt) -> datetime | None:
    return attempt.timestamp if isinstance(attempt.timestamp, datetime) else None


def compute_stats(user_id: str, attempts: Iterable[QuizAttempt], fallback_time: datetime) -> StudentStats:
    """Recompute a summary from the full attempt history, oldest first."""
    ordered = sorted(
        attempts,
        key=lambda a: _attempt_time(a).timestamp() if _attempt_time(a) else float("inf"),
    )
    stats = StudentStats(user_id=user_id)
    for attempt in ordered:
        apply_attempt(stats, attempt, _attempt_time(attempt) or fallback_time)
    return stats


def stats_overview(stats: StudentStats | None) -> dict:
    """Numbers shown on the analytics page; zeros when there is no data yet."""
    if stats is None:
        return {
            "hasData": False,
            "quizzesCompleted": 0,
            "averageScore": 0,
            "topicsMastered": 0,
            "streak": 0,
            "totalTimeSpent": 0,
        }
    return {
        "hasData": stats.total_quizzes_taken > 0,
        "quizzesCompleted": stats.total_quizzes_taken,
        "averageScore": stats.average_score,
        "topicsMastered": stats.topics_mastered,
        "streak": stats.streak,
        "totalTimeSpent": stats.total_time_spent,
    }


class StatsAggregator:
    """Reads and maintains per-user summaries.

    Updates for one user are serialized with a per-user lock, so concurrent
    quiz saves handled by this process all land in the aggregate. Callers
    that store the attempt themselves hold `lock_for(uid)` across the insert
    and `record_attempt`, otherwise a cold-start recompute could pick up an
    attempt that is folded in again later. Writers in
    other processes are not coordinated: their read-modify-write can still
    overwrite each other's summary (the raw attempts are unaffected).
    """

    def __init__(self, documents: DocumentStore, clock: Callable[[], datetime] = _now):
        self.documents = documents
        self.clock = clock
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, user_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.RLock()
            return lock

    def load_attempts(self, user_id: str) -> list[QuizAttempt]:
        return [QuizAttempt.from_dict(data, doc_id) for doc_id, data in self.documents.query(quizzes_path(user_id))]

    def _read_summary(self, user_id: str) -> StudentStats | None:
        doc = self.documents.get(stats_path(user_id))
        return StudentStats.from_dict(doc, user_id) if doc else None

    def _write_summary(self, stats: StudentStats) -> None:
        # overwrite, not merge: the breakdown list is always written whole
        self.documents.set(stats_path(stats.user_id), stats.to_dict())

    def get_stats(self, user_id: str) -> StudentStats | None:
        """Stored summary, or a recomputation from all attempts (persisted)."""
        with self.lock_for(user_id):
            stats = self._read_summary(user_id)
            if stats is not None:
                return stats
            attempts = self.load_attempts(user_id)
            if not attempts:
                return None
            logger.info("No stats summary for %s; recomputing from %d attempts", user_id, len(attempts))
            stats = compute_stats(user_id, attempts, self.clock())
            self._write_summary(stats)
            return stats

    def record_attempt(self, attempt: QuizAttempt) -> StudentStats:
        """Fold a newly saved attempt into the user's summary."""
        user_id = attempt.user_id
        with self.lock_for(user_id):
            stats = self._read_summary(user_id)
            if stats is None:
                attempts = self.load_attempts(user_id)
                if attempt.id is None or all(a.id != attempt.id for a in attempts):
                    attempts.append(attempt)
                stats = compute_stats(user_id, attempts, self.clock())
            else:
                stats = apply_attempt(stats, attempt, self.clock())
            self._write_summary(stats)
            return stats
