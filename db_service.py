"""
Persistence operations for student data.

Document layout:

    users/{uid}                        account + credits
    students/{uid}                     StudentProfile
    students/{uid}/quizzes/{id}        QuizAttempt
    students/{uid}/lessons/{id}        LessonProgress
    students/{uid}/courses/{id}        Course
    students/{uid}/stats/summary       StudentStats

Functions raise on database failure; the request router turns that into an
error envelope.
"""

import logging
from datetime import datetime

from documents import SERVER_TIMESTAMP, DocumentNotFoundError, DocumentStore
from models import (
    PROFILE_FIELDS,
    Course,
    Identity,
    LessonProgress,
    QuizAttempt,
    StudentProfile,
    StudentStats,
    courses_path,
    lessons_path,
    quizzes_path,
    student_path,
    unique_subjects,
    user_account_path,
)
from stats import StatsAggregator

logger = logging.getLogger(__name__)

STARTING_CREDITS = 100


class StudentDataService:
    def __init__(self, documents: DocumentStore, aggregator: StatsAggregator | None = None):
        self.documents = documents
        self.aggregator = aggregator or StatsAggregator(documents)
        # failed best-effort writes that followed a successful primary write
        self.secondary_failures = 0

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def initialize_user(self, identity: Identity) -> None:
        """Create `users/{uid}` with starting credits, or refresh its login time."""
        path = user_account_path(identity.uid)
        if self.documents.get(path) is None:
            self.documents.set(path, {
                "displayName": identity.display_name,
                "email": identity.email,
                "photoURL": identity.photo_url,
                "credits": STARTING_CREDITS,
                "friends": [],
                "createdAt": SERVER_TIMESTAMP,
                "lastLogin": SERVER_TIMESTAMP,
                "totalQuizzesTaken": 0,
                "totalCreditsEarned": 0,
            })
            logger.info("Created account document for %s", identity.uid)
        else:
            self.documents.update(path, {"lastLogin": SERVER_TIMESTAMP, "photoURL": identity.photo_url})

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> StudentProfile | None:
        doc = self.documents.get(student_path(user_id))
        return StudentProfile.from_dict(doc, user_id) if doc else None

    def upsert_profile(self, data: dict) -> StudentProfile:
        """Create or merge a profile. Counters and createdAt of an existing profile are kept."""
        user_id = data.get("userId")
        if not user_id:
            raise ValueError("userId is required")
        path = student_path(user_id)
        existing = self.documents.get(path)

        to_save = {k: v for k, v in data.items() if k in PROFILE_FIELDS}
        if "preferredSubjects" in to_save:
            to_save["preferredSubjects"] = unique_subjects(to_save["preferredSubjects"])
        to_save["lastLogin"] = SERVER_TIMESTAMP
        if existing:
            to_save["createdAt"] = existing.get("createdAt")
            to_save["streak"] = existing.get("streak") or 0
            to_save["totalQuizzesTaken"] = existing.get("totalQuizzesTaken") or 0
            to_save["averageScore"] = existing.get("averageScore") or 0
        else:
            to_save["createdAt"] = SERVER_TIMESTAMP
            to_save["streak"] = 0
            to_save["totalQuizzesTaken"] = 0
            to_save["averageScore"] = 0
            to_save.setdefault("preferredSubjects", [])

        self.documents.set(path, to_save, merge=True)
        return self.get_profile(user_id)

    def ensure_profile(self, identity: Identity) -> StudentProfile:
        return self.upsert_profile({
            "userId": identity.uid,
            "displayName": identity.display_name,
            "email": identity.email,
            "photoURL": identity.photo_url,
        })

    # ------------------------------------------------------------------
    # Quizzes
    # ------------------------------------------------------------------

    def save_quiz_attempt(self, attempt: QuizAttempt) -> QuizAttempt:
        """Store the attempt, then update stats as a best-effort secondary write."""
        data = attempt.to_dict()
        data["timestamp"] = SERVER_TIMESTAMP
        with self.aggregator.lock_for(attempt.user_id):
            attempt.id = self.documents.add(quizzes_path(attempt.user_id), data)
            try:
                stats = self.aggregator.record_attempt(attempt)
                self._mirror_stats_to_profile(stats)
            except Exception:
                self.secondary_failures += 1
                logger.exception("Stats update failed after saving quiz %s for %s", attempt.id, attempt.user_id)
        return attempt

    def _mirror_stats_to_profile(self, stats: StudentStats) -> None:
        try:
            self.documents.update(student_path(stats.user_id), {
                "totalQuizzesTaken": stats.total_quizzes_taken,
                "averageScore": stats.average_score,
                "streak": stats.streak,
            })
        except DocumentNotFoundError:
            logger.debug("No profile for %s; skipping stats mirror", stats.user_id)

    def get_quizzes(self, user_id: str) -> list[QuizAttempt]:
        return [QuizAttempt.from_dict(d, doc_id) for doc_id, d in self.documents.query(quizzes_path(user_id))]

    def get_quizzes_by_topic(self, user_id: str, topic: str) -> list[QuizAttempt]:
        return [
            QuizAttempt.from_dict(d, doc_id)
            for doc_id, d in self.documents.query(quizzes_path(user_id), "topic", topic)
        ]

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------

    def save_lesson_progress(self, progress: LessonProgress) -> LessonProgress:
        """Upsert keyed by (userId, topic)."""
        collection = lessons_path(progress.user_id)
        data = progress.to_dict()
        data["lastAccessed"] = SERVER_TIMESTAMP
        matches = self.documents.query(collection, "topic", progress.topic)
        if matches:
            doc_id = matches[0][0]
            self.documents.update(f"{collection}/{doc_id}", data)
        else:
            doc_id = self.documents.add(collection, data)
        progress.id = doc_id
        return progress

    def get_lessons(self, user_id: str) -> list[LessonProgress]:
        return [LessonProgress.from_dict(d, doc_id) for doc_id, d in self.documents.query(lessons_path(user_id))]

    def get_last_lesson(self, user_id: str) -> LessonProgress | None:
        """Most recently accessed lesson, for "continue where you left off"."""
        lessons = self.get_lessons(user_id)
        if not lessons:
            return None

        def accessed(lesson):
            ts = lesson.last_accessed
            return ts.timestamp() if isinstance(ts, datetime) else 0

        return max(lessons, key=accessed)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self, user_id: str) -> StudentStats | None:
        return self.aggregator.get_stats(user_id)

    # ------------------------------------------------------------------
    # Courses
    # ------------------------------------------------------------------

    def save_course(self, course: Course) -> Course:
        data = course.to_dict()
        data["createdAt"] = SERVER_TIMESTAMP
        course.id = self.documents.add(courses_path(course.user_id), data)
        return course

    def get_courses(self, user_id: str) -> list[Course]:
        return [Course.from_dict(d, doc_id) for doc_id, d in self.documents.query(courses_path(user_id))]
