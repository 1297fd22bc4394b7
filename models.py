"""
Document models for StudyWise.

Each model is a dataclass with a `to_dict()` method producing the camelCase
document stored in Firestore and a `from_dict(data, doc_id)` classmethod for
the reverse. Datetime fields are kept as native datetimes (Firestore returns
DatetimeWithNanoseconds, a datetime subclass).
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

MASTERY_THRESHOLD = 80
COURSE_LEVELS = ("beginner", "intermediate", "advanced")


# ============================================================================
# DOCUMENT PATHS
# ============================================================================

def user_account_path(uid: str) -> str:
    return f"users/{uid}"


def student_path(uid: str) -> str:
    return f"students/{uid}"


def quizzes_path(uid: str) -> str:
    return f"students/{uid}/quizzes"


def lessons_path(uid: str) -> str:
    return f"students/{uid}/lessons"


def courses_path(uid: str) -> str:
    return f"students/{uid}/courses"


def stats_path(uid: str) -> str:
    return f"students/{uid}/stats/summary"


# ============================================================================
# HELPERS
# ============================================================================

def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for non-negatives."""
    return int(math.floor(value + 0.5))


def percentage_of(score: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(score / total * 100)


def _require(data: dict, key: str):
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"{key} is required")
    return value


def _as_int(value, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    try:
        return round_half_up(float(value))
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"expected a number, got {value!r}")


def as_duration(value) -> int | None:
    """Seconds spent on an attempt; None when absent."""
    if value is None:
        return None
    seconds = _as_int(value)
    if seconds < 0:
        raise ValueError("duration must not be negative")
    return seconds


# ============================================================================
# IDENTITY
# ============================================================================

@dataclass
class Identity:
    uid: str
    display_name: str | None = None
    email: str | None = None
    photo_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "displayName": self.display_name,
            "email": self.email,
            "photoURL": self.photo_url,
        }


# ============================================================================
# PROFILE
# ============================================================================

PROFILE_FIELDS = {
    "userId": "user_id",
    "displayName": "display_name",
    "email": "email",
    "photoURL": "photo_url",
    "createdAt": "created_at",
    "lastLogin": "last_login",
    "streak": "streak",
    "totalQuizzesTaken": "total_quizzes_taken",
    "averageScore": "average_score",
    "preferredSubjects": "preferred_subjects",
}


@dataclass
class StudentProfile:
    user_id: str
    display_name: str | None = None
    email: str | None = None
    photo_url: str | None = None
    created_at: datetime | None = None
    last_login: datetime | None = None
    streak: int = 0
    total_quizzes_taken: int = 0
    average_score: int = 0
    preferred_subjects: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, attr) for key, attr in PROFILE_FIELDS.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any], doc_id: str | None = None) -> "StudentProfile":
        subjects = data.get("preferredSubjects") or []
        return cls(
            user_id=data.get("userId") or doc_id,
            display_name=data.get("displayName"),
            email=data.get("email"),
            photo_url=data.get("photoURL"),
            created_at=data.get("createdAt"),
            last_login=data.get("lastLogin"),
            streak=data.get("streak") or 0,
            total_quizzes_taken=data.get("totalQuizzesTaken") or 0,
            average_score=data.get("averageScore") or 0,
            preferred_subjects=unique_subjects(subjects),
        )


def unique_subjects(subjects) -> list[str]:
    out: list[str] = []
    for s in subjects or []:
        s = str(s).strip()
        if s and s not in out:
            out.append(s)
    return out


# ============================================================================
# QUIZZES
# ============================================================================

@dataclass
class QuestionRecord:
    question: str
    selected_answer: str
    correct_answer: str
    is_correct: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "selectedAnswer": self.selected_answer,
            "correctAnswer": self.correct_answer,
            "isCorrect": self.is_correct,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuestionRecord":
        return cls(
            question=str(data.get("question") or ""),
            selected_answer=str(data.get("selectedAnswer") or ""),
            correct_answer=str(data.get("correctAnswer") or ""),
            is_correct=bool(data.get("isCorrect")),
        )


@dataclass
class QuizAttempt:
    user_id: str
    topic: str
    score: int
    total: int
    percentage: int
    questions_answered: list[QuestionRecord] = field(default_factory=list)
    duration: int | None = None
    timestamp: datetime | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "userId": self.user_id,
            "topic": self.topic,
            "score": self.score,
            "total": self.total,
            "percentage": self.percentage,
            "timestamp": self.timestamp,
            "questionsAnswered": [q.to_dict() for q in self.questions_answered],
        }
        if self.duration is not None:
            data["duration"] = self.duration
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], doc_id: str | None = None) -> "QuizAttempt":
        score = _as_int(data.get("score"))
        total = _as_int(data.get("total"))
        if score < 0 or total < 0 or score > total:
            raise ValueError("score must be between 0 and total")
        percentage = data.get("percentage")
        percentage = percentage_of(score, total) if percentage is None else _as_int(percentage)
        duration = data.get("duration")
        return cls(
            user_id=_require(data, "userId"),
            # topics are matched byte-for-byte, so no stripping here
            topic=str(_require(data, "topic")),
            score=score,
            total=total,
            percentage=percentage,
            questions_answered=[
                QuestionRecord.from_dict(q) for q in (data.get("questionsAnswered") or []) if isinstance(q, dict)
            ],
            duration=as_duration(duration),
            timestamp=data.get("timestamp"),
            id=doc_id or data.get("id"),
        )


# ============================================================================
# LESSONS
# ============================================================================

@dataclass
class LessonProgress:
    user_id: str
    topic: str
    content: str = ""
    completed: bool = False
    time_spent: int = 0
    last_accessed: datetime | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "topic": self.topic,
            "content": self.content,
            "completed": self.completed,
            "timeSpent": self.time_spent,
            "lastAccessed": self.last_accessed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], doc_id: str | None = None) -> "LessonProgress":
        return cls(
            user_id=_require(data, "userId"),
            topic=str(_require(data, "topic")),
            content=str(data.get("content") or ""),
            completed=bool(data.get("completed")),
            time_spent=_as_int(data.get("timeSpent")),
            last_accessed=data.get("lastAccessed"),
            id=doc_id or data.get("id"),
        )


# ============================================================================
# STATS
# ============================================================================

@dataclass
class TopicMastery:
    topic: str
    quizzes_taken: int = 0
    score_sum: int = 0
    average_score: int = 0
    last_attempted: datetime | None = None
    mastered: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "quizzesTaken": self.quizzes_taken,
            "scoreSum": self.score_sum,
            "averageScore": self.average_score,
            "lastAttempted": self.last_attempted,
            "mastered": self.mastered,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TopicMastery":
        taken = data.get("quizzesTaken") or 0
        average = data.get("averageScore") or 0
        score_sum = data.get("scoreSum")
        if score_sum is None:
            # summaries written before exact sums were tracked
            score_sum = average * taken
        return cls(
            topic=data.get("topic") or "",
            quizzes_taken=taken,
            score_sum=score_sum,
            average_score=average,
            last_attempted=data.get("lastAttempted"),
            mastered=bool(data.get("mastered", average >= MASTERY_THRESHOLD)),
        )


@dataclass
class StudentStats:
    user_id: str
    total_quizzes_taken: int = 0
    score_sum: int = 0
    average_score: int = 0
    streak: int = 0
    topics_mastered: int = 0
    time_spent_seconds: int = 0
    total_time_spent: int = 0
    last_activity_date: datetime | None = None
    last_activity_day: str | None = None
    topic_breakdown: list[TopicMastery] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "totalQuizzesTaken": self.total_quizzes_taken,
            "scoreSum": self.score_sum,
            "averageScore": self.average_score,
            "streak": self.streak,
            "topicsMastered": self.topics_mastered,
            "timeSpentSeconds": self.time_spent_seconds,
            "totalTimeSpent": self.total_time_spent,
            "lastActivityDate": self.last_activity_date,
            "lastActivityDay": self.last_activity_day,
            "topicBreakdown": [t.to_dict() for t in self.topic_breakdown],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], doc_id: str | None = None) -> "StudentStats":
        taken = data.get("totalQuizzesTaken") or 0
        average = data.get("averageScore") or 0
        score_sum = data.get("scoreSum")
        if score_sum is None:
            score_sum = average * taken
        minutes = data.get("totalTimeSpent") or 0
        seconds = data.get("timeSpentSeconds")
        return cls(
            user_id=data.get("userId") or doc_id,
            total_quizzes_taken=taken,
            score_sum=score_sum,
            average_score=average,
            streak=data.get("streak") or 0,
            topics_mastered=data.get("topicsMastered") or 0,
            time_spent_seconds=seconds if seconds is not None else minutes * 60,
            total_time_spent=minutes,
            last_activity_date=data.get("lastActivityDate"),
            last_activity_day=data.get("lastActivityDay"),
            topic_breakdown=[TopicMastery.from_dict(t) for t in (data.get("topicBreakdown") or [])],
        )


# ============================================================================
# COURSES
# ============================================================================

@dataclass
class CourseModule:
    title: str
    description: str = ""
    topics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "description": self.description, "topics": list(self.topics)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CourseModule":
        topics = data.get("topics")
        return cls(
            title=str(data.get("title") or "Module"),
            description=str(data.get("description") or ""),
            topics=[str(t) for t in topics] if isinstance(topics, list) else [],
        )


@dataclass
class Course:
    user_id: str
    title: str
    description: str = ""
    goal: str = ""
    level: str = "beginner"
    estimated_duration_hours: int = 0
    modules: list[CourseModule] = field(default_factory=list)
    created_at: datetime | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "goal": self.goal,
            "level": self.level,
            "estimatedDurationHours": self.estimated_duration_hours,
            "modules": [m.to_dict() for m in self.modules],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], doc_id: str | None = None) -> "Course":
        level = data.get("level") or "beginner"
        if level not in COURSE_LEVELS:
            raise ValueError(f"level must be one of {', '.join(COURSE_LEVELS)}")
        return cls(
            user_id=_require(data, "userId"),
            title=str(_require(data, "title")).strip(),
            description=str(data.get("description") or ""),
            goal=str(data.get("goal") or ""),
            level=level,
            estimated_duration_hours=_as_int(data.get("estimatedDurationHours")),
            modules=[CourseModule.from_dict(m) for m in (data.get("modules") or []) if isinstance(m, dict)],
            created_at=data.get("createdAt"),
            id=doc_id or data.get("id"),
        )
