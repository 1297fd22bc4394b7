"""
Request router.

Every student-data operation goes through `ApiRouter.dispatch(action)`. The
set of actions is closed: each is a frozen dataclass tagged with its wire
name, and `dispatch` matches them exhaustively. Callers always get an
`APIResponse` back; the router itself never raises.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Union, assert_never

from db_service import StudentDataService
from documents import SERVER_TIMESTAMP
from models import Course, LessonProgress, QuizAttempt

logger = logging.getLogger(__name__)


class UnknownActionError(ValueError):
    pass


def to_jsonable(value: Any) -> Any:
    """Convert models, datetimes and sentinels into JSON-friendly values."""
    if value is SERVER_TIMESTAMP:
        return None
    if hasattr(value, "to_dict"):
        data = value.to_dict()
        if getattr(value, "id", None) is not None:
            data = {"id": value.id, **data}
        return to_jsonable(data)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


@dataclass
class APIResponse:
    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            out["data"] = to_jsonable(self.data)
        if self.error is not None:
            out["error"] = self.error
        if self.message is not None:
            out["message"] = self.message
        return out


# ============================================================================
# ACTIONS
# ============================================================================

@dataclass(frozen=True)
class ProfileGet:
    type: ClassVar[str] = "profile.get"
    user_id: str


@dataclass(frozen=True)
class ProfileUpsert:
    type: ClassVar[str] = "profile.upsert"
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class QuizSave:
    type: ClassVar[str] = "quiz.save"
    data: QuizAttempt


@dataclass(frozen=True)
class QuizGetAll:
    type: ClassVar[str] = "quiz.getAll"
    user_id: str


@dataclass(frozen=True)
class QuizGetByTopic:
    type: ClassVar[str] = "quiz.getByTopic"
    user_id: str
    topic: str


@dataclass(frozen=True)
class LessonSave:
    type: ClassVar[str] = "lesson.save"
    data: LessonProgress


@dataclass(frozen=True)
class LessonGetAll:
    type: ClassVar[str] = "lesson.getAll"
    user_id: str


@dataclass(frozen=True)
class LessonGetLast:
    type: ClassVar[str] = "lesson.getLast"
    user_id: str


@dataclass(frozen=True)
class StatsGet:
    type: ClassVar[str] = "stats.get"
    user_id: str


@dataclass(frozen=True)
class CourseSave:
    type: ClassVar[str] = "course.save"
    data: Course


@dataclass(frozen=True)
class CourseGetAll:
    type: ClassVar[str] = "course.getAll"
    user_id: str


Action = Union[
    ProfileGet, ProfileUpsert,
    QuizSave, QuizGetAll, QuizGetByTopic,
    LessonSave, LessonGetAll, LessonGetLast,
    StatsGet,
    CourseSave, CourseGetAll,
]

ACTION_TYPES: dict[str, type] = {
    cls.type: cls
    for cls in (
        ProfileGet, ProfileUpsert,
        QuizSave, QuizGetAll, QuizGetByTopic,
        LessonSave, LessonGetAll, LessonGetLast,
        StatsGet,
        CourseSave, CourseGetAll,
    )
}


def action_from_payload(payload: dict, user_id: str | None = None) -> Action:
    """Build an action from a JSON body like {"type": "quiz.getAll", "userId": ...}.

    When `user_id` is given it replaces whatever user the payload names.
    """
    if not isinstance(payload, dict):
        raise ValueError("payload must be an object")
    tag = payload.get("type")
    cls = ACTION_TYPES.get(tag) if isinstance(tag, str) else None
    if cls is None:
        raise UnknownActionError(f"Unknown action type: {tag}")

    uid = user_id or payload.get("userId")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise ValueError("data must be an object")
    data = dict(data)
    if user_id:
        data["userId"] = user_id

    if cls is ProfileUpsert:
        return ProfileUpsert(data=data)
    if cls is QuizSave:
        return QuizSave(data=QuizAttempt.from_dict(data))
    if cls is LessonSave:
        return LessonSave(data=LessonProgress.from_dict(data))
    if cls is CourseSave:
        return CourseSave(data=Course.from_dict(data))

    if not uid:
        raise ValueError("userId is required")
    if cls is QuizGetByTopic:
        topic = payload.get("topic")
        if topic is None:
            raise ValueError("topic is required")
        return QuizGetByTopic(user_id=uid, topic=str(topic))
    return cls(user_id=uid)


# ============================================================================
# DISPATCH
# ============================================================================

class ApiRouter:
    def __init__(self, service: StudentDataService):
        self.service = service

    def dispatch(self, action: Action) -> APIResponse:
        try:
            return self._dispatch(action)
        except Exception as e:
            logger.exception("API handler error for %s", getattr(action, "type", action))
            return APIResponse(success=False, error=str(e) or type(e).__name__)

    def _dispatch(self, action: Action) -> APIResponse:
        service = self.service
        match action:
            case ProfileGet(user_id=uid):
                profile = service.get_profile(uid)
                if profile is None:
                    return APIResponse(success=False, error="Student profile not found")
                return APIResponse(success=True, data=profile, message="Profile retrieved successfully")

            case ProfileUpsert(data=data):
                profile = service.upsert_profile(data)
                return APIResponse(success=True, data=profile, message="Profile updated successfully")

            case QuizSave(data=attempt):
                saved = service.save_quiz_attempt(attempt)
                return APIResponse(success=True, data=saved, message="Quiz saved successfully")

            case QuizGetAll(user_id=uid):
                quizzes = service.get_quizzes(uid)
                return APIResponse(success=True, data=quizzes, message=f"Retrieved {len(quizzes)} quizzes")

            case QuizGetByTopic(user_id=uid, topic=topic):
                quizzes = service.get_quizzes_by_topic(uid, topic)
                return APIResponse(
                    success=True,
                    data=quizzes,
                    message=f"Retrieved {len(quizzes)} quizzes for topic: {topic}",
                )

            case LessonSave(data=progress):
                lesson = service.save_lesson_progress(progress)
                return APIResponse(success=True, data=lesson, message="Lesson progress saved successfully")

            case LessonGetAll(user_id=uid):
                lessons = service.get_lessons(uid)
                return APIResponse(success=True, data=lessons, message=f"Retrieved {len(lessons)} lessons")

            case LessonGetLast(user_id=uid):
                lesson = service.get_last_lesson(uid)
                if lesson is None:
                    return APIResponse(success=False, error="No lessons found")
                return APIResponse(success=True, data=lesson, message="Last lesson retrieved successfully")

            case StatsGet(user_id=uid):
                stats = service.get_stats(uid)
                if stats is None:
                    return APIResponse(success=False, error="No statistics found")
                return APIResponse(success=True, data=stats, message="Student statistics retrieved successfully")

            case CourseSave(data=course):
                saved = service.save_course(course)
                return APIResponse(success=True, data=saved, message="Course saved successfully")

            case CourseGetAll(user_id=uid):
                courses = service.get_courses(uid)
                return APIResponse(success=True, data=courses, message=f"Retrieved {len(courses)} courses")

            case _:
                assert_never(action)
