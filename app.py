# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import logging
import os
from types import SimpleNamespace

# Third-Party: Flask & Extensions
from flask import Blueprint, Flask, Response, current_app, jsonify, request, session, stream_with_context
from flask_cors import CORS
from werkzeug.utils import secure_filename

# Local
from ai import generate_course_outline, generate_flashcards, generate_quiz_from_lesson, grade_quiz, stream_lesson
from api_router import (
    ApiRouter,
    APIResponse,
    CourseGetAll,
    CourseSave,
    LessonGetAll,
    LessonGetLast,
    LessonSave,
    ProfileGet,
    ProfileUpsert,
    QuizGetAll,
    QuizGetByTopic,
    QuizSave,
    StatsGet,
    action_from_payload,
)
from config import Settings
from db_service import StudentDataService
from documents import FirestoreDocumentStore, MemoryDocumentStore, init_firebase
from gemini import GeminiTextService, GenerationError, load_image
from identity import AuthError, DemoIdentityProvider, FirebaseIdentityProvider
from models import Course, LessonProgress, QuizAttempt
from session_store import SessionRegistry, SessionStore
from stats import stats_overview

logger = logging.getLogger(__name__)

GENERATION_FAILED = "We couldn't generate that right now. Please try again in a moment."
ALLOWED_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif"}

api = Blueprint("api", __name__)


# ============================================================================
# FLASK APP SETUP
# ============================================================================

def create_app(settings=None, documents=None, text_service=None, identity_factory=None) -> Flask:
    """Build the Flask app. Collaborators can be injected (tests, demo mode)."""
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="[%(asctime)s] %(levelname)-8s %(name)s | %(message)s",
    )

    app = Flask(__name__)
    CORS(app, supports_credentials=True, origins=settings.cors_origins)
    app.secret_key = settings.secret_key
    app.config.update(
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=False,
    )

    if not settings.demo_mode and (documents is None or identity_factory is None):
        init_firebase(settings.firebase_credentials)
    if documents is None:
        documents = MemoryDocumentStore() if settings.demo_mode else FirestoreDocumentStore()
    if identity_factory is None:
        identity_factory = DemoIdentityProvider if settings.demo_mode else FirebaseIdentityProvider
    if text_service is None:
        text_service = GeminiTextService(api_key=settings.google_api_key, model=settings.gemini_model)

    service = StudentDataService(documents)
    app.extensions["studywise"] = SimpleNamespace(
        settings=settings,
        documents=documents,
        service=service,
        router=ApiRouter(service),
        text_service=text_service,
        registry=SessionRegistry(
            lambda: SessionStore(identity_factory(), documents, service),
            idle_timeout=settings.session_idle_minutes * 60,
        ),
    )
    if settings.demo_mode:
        logger.warning("[DEMO MODE] in-memory documents and demo sign-in are active")

    app.register_blueprint(api)
    app.register_error_handler(404, not_found)
    return app


# ============================================================================
# HELPERS
# ============================================================================

def _ctx():
    return current_app.extensions["studywise"]


def _store() -> SessionStore | None:
    """Session store for the current browser session, if it signed in."""
    return _ctx().registry.get(session.get("sid"))


def _json_body() -> dict:
    """The JSON request body when it is an object, else an empty dict."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _current_user_id() -> str | None:
    store = _store()
    if store is None or store.user is None:
        return None
    return store.user.uid


def _unauthorized():
    return jsonify(error="unauthorized"), 401


def _envelope(resp: APIResponse, created: bool = False):
    status = 201 if created and resp.success else 200
    return jsonify(resp.to_dict()), status


def _dispatch(action):
    return _ctx().router.dispatch(action)


def _with_user(data: dict, uid: str) -> dict:
    data = dict(data)
    data["userId"] = uid
    return data


# ============================================================================
# ROUTES - AUTHENTICATION
# ============================================================================

@api.post("/api/firebase-login")
def firebase_login():
    """Verify a Firebase ID token and sign this browser session in."""
    data = _json_body()
    registry = _ctx().registry
    store = registry.get(session.get("sid"))
    # a new store is registered only once sign-in succeeded
    fresh = store is None
    if fresh:
        store = registry.create()
    try:
        identity = store.sign_in(data.get("idToken"))
    except Exception as e:
        if fresh:
            store.close()
        return jsonify(error=str(e)), (401 if isinstance(e, AuthError) else 500)
    if fresh:
        session["sid"] = registry.put(store)
    return jsonify(message="Firebase login verified", user=identity.to_dict(), credits=store.credits), 200


@api.post("/api/logout")
def logout():
    """Sign out and forget this browser session."""
    sid = session.get("sid")
    store = _store()
    if store is not None:
        store.sign_out()
    _ctx().registry.discard(sid)
    session.clear()
    return jsonify(message="Logged out successfully")


@api.get("/api/session")
def get_session_user():
    """Return the session state, or 401 when nobody is signed in."""
    store = _store()
    if store is None or not store.authenticated:
        return _unauthorized()
    return jsonify(store.snapshot()), 200


@api.post("/api/lesson_text")
def set_lesson_text():
    store = _store()
    if store is None or not store.authenticated:
        return _unauthorized()
    data = _json_body()
    store.set_lesson_text(str(data.get("text") or ""))
    return jsonify(store.snapshot()), 200


# ============================================================================
# ROUTES - STUDENT DATA
# ============================================================================

@api.post("/api/dispatch")
def dispatch_action():
    """Run one router action given as {type, ...}; the session user always wins."""
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    try:
        action = action_from_payload(_json_body(), user_id=uid)
    except ValueError as e:
        return jsonify(APIResponse(success=False, error=str(e)).to_dict()), 400
    return _envelope(_dispatch(action), created=action.type.endswith(".save"))


@api.get("/api/profile")
def get_profile():
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    return _envelope(_dispatch(ProfileGet(user_id=uid)))


@api.put("/api/profile")
def upsert_profile():
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    data = _with_user(_json_body(), uid)
    return _envelope(_dispatch(ProfileUpsert(data=data)))


@api.get("/api/quizzes")
def list_quizzes():
    """All quiz attempts of the current user, or only those for ?topic=."""
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    topic = request.args.get("topic")
    if topic is not None:
        return _envelope(_dispatch(QuizGetByTopic(user_id=uid, topic=topic)))
    return _envelope(_dispatch(QuizGetAll(user_id=uid)))


@api.post("/api/quizzes")
def save_quiz():
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    try:
        attempt = QuizAttempt.from_dict(_with_user(_json_body(), uid))
    except ValueError as e:
        return jsonify(APIResponse(success=False, error=str(e)).to_dict()), 400
    return _envelope(_dispatch(QuizSave(data=attempt)), created=True)


@api.get("/api/lessons")
def list_lessons():
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    return _envelope(_dispatch(LessonGetAll(user_id=uid)))


@api.get("/api/lessons/last")
def last_lesson():
    """Most recently accessed lesson ("continue where you left off")."""
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    return _envelope(_dispatch(LessonGetLast(user_id=uid)))


@api.post("/api/lessons")
def save_lesson():
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    try:
        progress = LessonProgress.from_dict(_with_user(_json_body(), uid))
    except ValueError as e:
        return jsonify(APIResponse(success=False, error=str(e)).to_dict()), 400
    return _envelope(_dispatch(LessonSave(data=progress)), created=True)


@api.get("/api/stats")
def get_stats():
    """Stats envelope plus the analytics overview (zeros when there is no data yet)."""
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    resp = _dispatch(StatsGet(user_id=uid))
    body = resp.to_dict()
    body["overview"] = stats_overview(resp.data if resp.success else None)
    return jsonify(body), 200


@api.get("/api/courses")
def list_courses():
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    return _envelope(_dispatch(CourseGetAll(user_id=uid)))


@api.post("/api/courses")
def create_course():
    """Save a generated course outline for the current user."""
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    try:
        course = Course.from_dict(_with_user(_json_body(), uid))
    except ValueError as e:
        return jsonify(APIResponse(success=False, error=str(e)).to_dict()), 400
    return _envelope(_dispatch(CourseSave(data=course)), created=True)


# ============================================================================
# ROUTES - AI GENERATION
# ============================================================================

@api.post("/api/lesson")
def lesson_stream():
    """Stream a lesson as plain text. Accepts JSON {query} or multipart with an image.

    The finished lesson becomes the session's current lesson text, which the
    quiz generator uses when no text is given.
    """
    store = _store()
    if store is None or not store.authenticated:
        return _unauthorized()

    image = None
    upload = request.files.get("image")
    if upload is not None:
        filename = secure_filename(upload.filename or "")
        if os.path.splitext(filename)[1].lower() not in ALLOWED_IMAGE_EXTENSIONS:
            return jsonify(error="unsupported image type"), 400
        try:
            image = load_image(upload.read())
        except ValueError as e:
            return jsonify(error=str(e)), 400
        query = request.form.get("query")
    else:
        query = _json_body().get("query")

    try:
        chunks = stream_lesson(_ctx().text_service, query, image=image)
    except ValueError as e:
        return jsonify(error=str(e)), 400

    def generate():
        parts: list[str] = []
        try:
            for chunk in chunks:
                parts.append(chunk)
                yield chunk
        except GenerationError as e:
            logger.error("Lesson stream failed: %s", e)
            yield "\n\n" + GENERATION_FAILED
            return
        store.set_lesson_text("".join(parts))

    return Response(stream_with_context(generate()), mimetype="text/plain")


@api.post("/api/quiz/generate")
def quiz_generate():
    """Build a quiz from {lessonText} or, if absent, the session's last lesson."""
    store = _store()
    if store is None or not store.authenticated:
        return _unauthorized()
    data = _json_body()
    lesson_text = str(data.get("lessonText") or "").strip() or store.lesson_text
    if not lesson_text:
        return jsonify(error="no lesson to build a quiz from"), 400
    try:
        count = max(1, min(20, int(data.get("count") or 5)))
    except (TypeError, ValueError, OverflowError):
        return jsonify(error="count must be a number"), 400
    try:
        quiz = generate_quiz_from_lesson(_ctx().text_service, lesson_text, count)
    except GenerationError as e:
        logger.warning("Quiz generation failed: %s", e)
        return jsonify(error=GENERATION_FAILED, detail=str(e)), 502
    return jsonify(quiz=quiz), 200


@api.post("/api/quiz/submit")
def quiz_submit():
    """Grade {topic, questions, answers, duration?} and save the attempt."""
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    data = _json_body()
    topic = data.get("topic")
    questions = data.get("questions")
    answers = data.get("answers") or []
    if not topic or not isinstance(questions, list) or not isinstance(answers, list):
        return jsonify(error="topic, questions and answers are required"), 400
    try:
        attempt = grade_quiz(uid, str(topic), questions, answers, duration=data.get("duration"))
    except ValueError as e:
        return jsonify(error=str(e)), 400
    return _envelope(_dispatch(QuizSave(data=attempt)), created=True)


@api.post("/api/courses/outline")
def course_outline():
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    data = _json_body()
    try:
        modules = generate_course_outline(_ctx().text_service, data.get("goal"), data.get("level") or "beginner")
    except ValueError as e:
        return jsonify(error=str(e)), 400
    except GenerationError as e:
        logger.warning("Course outline failed: %s", e)
        return jsonify(error=GENERATION_FAILED, detail=str(e)), 502
    return jsonify(modules=[m.to_dict() for m in modules]), 200


@api.post("/api/flashcards")
def flashcards():
    uid = _current_user_id()
    if not uid:
        return _unauthorized()
    data = _json_body()
    topic = str(data.get("topic") or "General").strip() or "General"
    try:
        count = max(1, min(50, int(data.get("count") or 5)))
        result = generate_flashcards(_ctx().text_service, data.get("content"), topic, count)
    except (TypeError, ValueError, OverflowError) as e:
        return jsonify(error=str(e)), 400
    except GenerationError as e:
        logger.warning("Flashcard generation failed: %s", e)
        return jsonify(error=GENERATION_FAILED, detail=str(e)), 502
    return jsonify(result), 200


# ============================================================================
# ROUTES - UTILITY
# ============================================================================

@api.post("/api/client-log")
def client_log():
    """Client log sink (to surface frontend logs in server terminal)."""
    try:
        data = _json_body()
        level = str(data.get("level") or "info").upper()
        msg = str(data.get("message") or "").strip()
        ctx = data.get("context")
        levelno = logging.getLevelName(level)
        if not isinstance(levelno, int):
            levelno = logging.INFO
        logger.log(levelno, "[CLIENT-%s] %s | context=%s", level, msg, ctx)
    except Exception:
        logger.exception("[CLIENT-LOG ERROR]")
    return ("", 204)


@api.get("/api/ping")
def ping():
    """Simple test route."""
    return jsonify({"message": "StudyWise backend is running"})


# ============================================================================
# ERROR HANDLERS
# ============================================================================

def not_found(e):
    """Error handler for unknown routes."""
    return jsonify({"error": f"Not Found - {e}"}), 404


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    create_app().run(host="127.0.0.1", port=int(os.getenv("PORT", "5050")), debug=True)
