"""Tests for the stats summary: fold, recompute, streaks and concurrency."""

import threading
from datetime import datetime, timezone

from models import QuizAttempt, StudentStats, quizzes_path, stats_path
from stats import apply_attempt, compute_stats, stats_overview


def _attempt(pct, topic="Kinematics", user="u1", score=None, total=100, **kw):
    return QuizAttempt(
        user_id=user,
        topic=topic,
        score=pct if score is None else score,
        total=total,
        percentage=pct,
        **kw,
    )


def test_first_attempt_at_threshold_masters_topic(service):
    service.save_quiz_attempt(_attempt(80, score=4, total=5))

    stats = service.get_stats("u1")
    assert stats.total_quizzes_taken == 1
    assert stats.average_score == 80
    assert stats.topics_mastered == 1
    [entry] = stats.topic_breakdown
    assert (entry.topic, entry.quizzes_taken, entry.average_score, entry.mastered) == ("Kinematics", 1, 80, True)


def test_second_attempt_drops_mastery(service):
    service.save_quiz_attempt(_attempt(80, score=4, total=5))
    service.save_quiz_attempt(_attempt(60, score=3, total=5))

    stats = service.get_stats("u1")
    assert stats.total_quizzes_taken == 2
    assert stats.average_score == 70
    assert stats.topics_mastered == 0
    [entry] = stats.topic_breakdown
    assert entry.quizzes_taken == 2
    assert entry.average_score == 70
    assert entry.mastered is False


def test_just_below_threshold_is_not_mastered(service):
    service.save_quiz_attempt(_attempt(79))
    assert service.get_stats("u1").topic_breakdown[0].mastered is False


def test_average_uses_exact_sum_and_rounds_half_up(service):
    for pct in (33, 67, 100, 50):
        service.save_quiz_attempt(_attempt(pct, topic="Optics"))

    stats = service.get_stats("u1")
    assert stats.total_quizzes_taken == 4
    assert stats.score_sum == 250
    # 62.5 rounds up, not to even
    assert stats.average_score == 63


def test_topics_mastered_counts_entries(service):
    service.save_quiz_attempt(_attempt(90, topic="Kinematics"))
    service.save_quiz_attempt(_attempt(85, topic="Thermodynamics"))
    service.save_quiz_attempt(_attempt(40, topic="Cell Division"))

    stats = service.get_stats("u1")
    assert len(stats.topic_breakdown) == 3
    assert stats.topics_mastered == 2


def test_topics_match_exactly(service):
    service.save_quiz_attempt(_attempt(90, topic="Kinematics"))
    service.save_quiz_attempt(_attempt(90, topic="Kinematics "))

    stats = service.get_stats("u1")
    assert [t.topic for t in stats.topic_breakdown] == ["Kinematics", "Kinematics "]


def test_missing_summary_is_recomputed_and_persisted(service, documents):
    for day, pct in ((1, 100), (2, 50)):
        data = _attempt(pct).to_dict()
        data["timestamp"] = datetime(2025, 3, day, tzinfo=timezone.utc)
        documents.add(quizzes_path("u1"), data)
    assert documents.get(stats_path("u1")) is None

    stats = service.get_stats("u1")

    assert stats.total_quizzes_taken == 2
    assert stats.average_score == 75
    assert stats.streak == 2
    assert documents.get(stats_path("u1"))["totalQuizzesTaken"] == 2


def test_cold_start_save_counts_each_attempt_once(service, documents):
    documents.add(quizzes_path("u1"), _attempt(100).to_dict())

    service.save_quiz_attempt(_attempt(50))

    stats = service.get_stats("u1")
    assert stats.total_quizzes_taken == 2
    assert stats.average_score == 75


def test_no_attempts_means_no_stats(service):
    assert service.get_stats("nobody") is None


def test_legacy_summary_without_score_sum(service, documents):
    documents.set(stats_path("u1"), {
        "userId": "u1",
        "totalQuizzesTaken": 2,
        "averageScore": 70,
        "streak": 1,
        "topicsMastered": 0,
        "topicBreakdown": [{"topic": "Kinematics", "quizzesTaken": 2, "averageScore": 70, "mastered": False}],
    })

    service.save_quiz_attempt(_attempt(100))

    stats = service.get_stats("u1")
    assert stats.total_quizzes_taken == 3
    assert stats.score_sum == 240
    assert stats.average_score == 80
    assert stats.topics_mastered == 1


def test_streak_and_time_spent():
    stats = StudentStats(user_id="u1")
    day1 = datetime(2025, 3, 10, 8, tzinfo=timezone.utc)

    apply_attempt(stats, _attempt(80, duration=90), day1)
    apply_attempt(stats, _attempt(80, duration=90), day1.replace(hour=20))
    assert stats.streak == 1
    assert stats.time_spent_seconds == 180
    assert stats.total_time_spent == 3

    apply_attempt(stats, _attempt(80), datetime(2025, 3, 11, tzinfo=timezone.utc))
    assert stats.streak == 2

    apply_attempt(stats, _attempt(80), datetime(2025, 3, 14, tzinfo=timezone.utc))
    assert stats.streak == 1
    assert stats.last_activity_day == "2025-03-14"


def test_compute_stats_matches_incremental_fold():
    when = datetime(2025, 3, 10, tzinfo=timezone.utc)
    attempts = [_attempt(p, timestamp=when) for p in (55, 80, 95)]

    folded = StudentStats(user_id="u1")
    for a in attempts:
        apply_attempt(folded, a, when)

    assert compute_stats("u1", attempts, when) == folded


def test_overview_without_data():
    overview = stats_overview(None)
    assert overview["hasData"] is False
    assert overview["quizzesCompleted"] == 0


def test_concurrent_saves_keep_both_attempts(service):
    barrier = threading.Barrier(2)

    def save(pct):
        barrier.wait()
        service.save_quiz_attempt(_attempt(pct))

    threads = [threading.Thread(target=save, args=(pct,)) for pct in (100, 60)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(service.get_quizzes("u1")) == 2
    stats = service.get_stats("u1")
    assert stats.total_quizzes_taken == 2
    assert stats.average_score == 80
    assert service.secondary_failures == 0
