"""Flask route tests using the demo identity and in-memory documents."""

import io
import json

from PIL import Image


def test_ping(client):
    assert client.get("/api/ping").get_json() == {"message": "StudyWise backend is running"}


def test_unknown_route_is_json_404(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert "error" in resp.get_json()


def test_routes_require_sign_in(client):
    assert client.get("/api/session").status_code == 401
    assert client.get("/api/stats").status_code == 401
    assert client.post("/api/dispatch", json={"type": "stats.get"}).status_code == 401


def test_login_session_logout(client):
    resp = client.post("/api/firebase-login", json={"idToken": "anything"})
    assert resp.status_code == 200
    assert resp.get_json()["user"]["uid"] == "demo-user-12345"

    state = client.get("/api/session").get_json()
    assert state["authenticated"] is True
    assert state["loading"] is False
    assert state["credits"] == 100

    assert client.post("/api/logout").status_code == 200
    assert client.get("/api/session").status_code == 401


def test_stats_without_data(signed_in):
    body = signed_in.get("/api/stats").get_json()
    assert body["success"] is False
    assert body["error"] == "No statistics found"
    assert body["overview"]["hasData"] is False
    assert body["overview"]["quizzesCompleted"] == 0


def test_save_quiz_then_stats(signed_in):
    resp = signed_in.post("/api/quizzes", json={"topic": "Kinematics", "score": 4, "total": 5})
    assert resp.status_code == 201
    assert resp.get_json()["data"]["percentage"] == 80

    body = signed_in.get("/api/stats").get_json()
    assert body["data"]["topicsMastered"] == 1
    assert body["overview"] == {
        "hasData": True,
        "quizzesCompleted": 1,
        "averageScore": 80,
        "topicsMastered": 1,
        "streak": 1,
        "totalTimeSpent": 0,
    }

    by_topic = signed_in.get("/api/quizzes?topic=Kinematics").get_json()
    assert by_topic["message"] == "Retrieved 1 quizzes for topic: Kinematics"


def test_invalid_quiz_is_rejected(signed_in):
    resp = signed_in.post("/api/quizzes", json={"topic": "Kinematics", "score": 9, "total": 5})
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_dispatch_ignores_foreign_user_id(signed_in):
    signed_in.post("/api/dispatch", json={
        "type": "quiz.save",
        "data": {"userId": "someone-else", "topic": "Optics", "score": 1, "total": 1},
    })
    body = signed_in.post("/api/dispatch", json={"type": "quiz.getAll", "userId": "someone-else"}).get_json()
    assert body["success"] is True
    assert body["data"][0]["userId"] == "demo-user-12345"

    unknown = signed_in.post("/api/dispatch", json={"type": "quiz.delete"})
    assert unknown.status_code == 400


def test_profile_created_on_login(signed_in):
    body = signed_in.get("/api/profile").get_json()
    assert body["success"] is True
    assert body["data"]["displayName"] == "Demo User"

    updated = signed_in.put("/api/profile", json={"preferredSubjects": ["Physics"]}).get_json()
    assert updated["data"]["preferredSubjects"] == ["Physics"]
    assert updated["data"]["displayName"] == "Demo User"


def test_lessons(signed_in):
    assert signed_in.get("/api/lessons/last").get_json()["error"] == "No lessons found"
    signed_in.post("/api/lessons", json={"topic": "Optics", "content": "Light bends."})
    last = signed_in.get("/api/lessons/last").get_json()
    assert last["data"]["topic"] == "Optics"


def test_lesson_stream_sets_lesson_text(signed_in):
    resp = signed_in.post("/api/lesson", json={"query": "Kinematics"})
    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == "Of course. Here is a lesson."
    assert signed_in.get("/api/session").get_json()["lessonText"] == "Of course. Here is a lesson."


def test_lesson_stream_with_image(signed_in, text_service):
    buf = io.BytesIO()
    Image.new("RGB", (2, 2)).save(buf, format="PNG")
    resp = signed_in.post(
        "/api/lesson",
        data={"query": "Explain this diagram", "image": (io.BytesIO(buf.getvalue()), "diagram.png")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == "Of course. Here is a lesson."
    assert "uploaded an image" in text_service.prompts[-1]


def test_lesson_stream_failure_appends_retry_message(signed_in, text_service):
    text_service.fail = True
    text = signed_in.post("/api/lesson", json={"query": "Kinematics"}).get_data(as_text=True)
    assert text.startswith("Of course. Here is a lesson.")
    assert "try again" in text
    assert signed_in.get("/api/session").get_json()["lessonText"] is None


def test_quiz_generate_uses_session_lesson(signed_in, text_service):
    signed_in.post("/api/lesson_text", json={"text": "Velocity has direction."})
    quiz = [{"question": "Q?", "options": ["A. yes", "B. no"], "answer": "A. yes"}]
    text_service.responses.append("```json\n" + json.dumps({"quiz": quiz}) + "\n```")

    resp = signed_in.post("/api/quiz/generate", json={})
    assert resp.status_code == 200
    assert resp.get_json()["quiz"] == quiz
    assert "Velocity has direction." in text_service.prompts[-1]


def test_quiz_generate_failure_is_502(signed_in, text_service):
    text_service.responses.append("sorry, I cannot do that")
    resp = signed_in.post("/api/quiz/generate", json={"lessonText": "Some lesson"})
    assert resp.status_code == 502
    assert "try again" in resp.get_json()["error"]


def test_quiz_submit(signed_in):
    questions = [{"question": "Q?", "options": ["A. yes", "B. no"], "answer": "A. yes"}]
    resp = signed_in.post("/api/quiz/submit", json={
        "topic": "Logic",
        "questions": questions,
        "answers": ["A. yes"],
        "duration": 30,
    })
    assert resp.status_code == 201
    assert resp.get_json()["data"]["percentage"] == 100


def test_courses(signed_in, text_service):
    text_service.responses.append(json.dumps({"modules": [{"title": "Motion", "topics": ["velocity"]}]}))
    outline = signed_in.post("/api/courses/outline", json={"goal": "Mechanics", "level": "beginner"}).get_json()
    assert outline["modules"][0]["title"] == "Motion"

    resp = signed_in.post("/api/courses", json={"title": "Mechanics", "modules": outline["modules"]})
    assert resp.status_code == 201
    listed = signed_in.get("/api/courses").get_json()
    assert listed["data"][0]["modules"][0]["topics"] == ["velocity"]


def test_flashcards(signed_in, text_service):
    text_service.responses.append('{"cards": [{"front": "F?", "back": "ma"}], "summary": "forces"}')
    body = signed_in.post("/api/flashcards", json={"content": "Newton", "topic": "Physics"}).get_json()
    assert body["cards"][0]["back"] == "ma"
    assert signed_in.post("/api/flashcards", json={"content": ""}).status_code == 400


def test_client_log(client):
    assert client.post("/api/client-log", json={"level": "warn", "message": "hi"}).status_code == 204


def test_quiz_submit_normalizes_duration(signed_in, app):
    questions = [{"question": "Q?", "options": ["A. yes", "B. no"], "answer": "A. yes"}]
    for duration in (30, "45"):
        resp = signed_in.post("/api/quiz/submit", json={
            "topic": "Logic", "questions": questions, "answers": ["A. yes"], "duration": duration,
        })
        assert resp.status_code == 201

    for bad in ("soon", -5):
        resp = signed_in.post("/api/quiz/submit", json={
            "topic": "Logic", "questions": questions, "answers": ["A. yes"], "duration": bad,
        })
        assert resp.status_code == 400

    stats = signed_in.get("/api/stats").get_json()["data"]
    assert stats["totalQuizzesTaken"] == 2
    assert stats["timeSpentSeconds"] == 75
    assert len(signed_in.get("/api/quizzes").get_json()["data"]) == 2
    assert app.extensions["studywise"].service.secondary_failures == 0


def test_quiz_submit_rejects_non_object_questions(signed_in):
    resp = signed_in.post("/api/quiz/submit", json={"topic": "Logic", "questions": ["x"], "answers": []})
    assert resp.status_code == 400


def test_client_log_with_unknown_level(client):
    for level in ("basic_format", "nonsense", 42):
        assert client.post("/api/client-log", json={"level": level, "message": "hi"}).status_code == 204


def test_dispatch_rejects_malformed_payloads(signed_in):
    for payload in ({"type": "quiz.save", "data": 5}, {"type": ["quiz.save"]}, [1, 2]):
        resp = signed_in.post("/api/dispatch", json=payload)
        assert resp.status_code == 400


def test_non_object_bodies_are_rejected(signed_in):
    assert signed_in.post("/api/quiz/generate", json=[1]).status_code == 400
    assert signed_in.post("/api/quizzes", json="text").status_code == 400


def test_failed_login_leaves_no_session(documents, text_service):
    from app import create_app
    from config import Settings

    class ReadOnlyDocuments(type(documents)):
        def set(self, path, data, merge=False):
            if path.startswith("users/"):
                raise RuntimeError("permission denied")
            super().set(path, data, merge=merge)

    flask_app = create_app(
        settings=Settings(secret_key="test-secret", demo_mode=True, log_level="WARNING"),
        documents=ReadOnlyDocuments(),
        text_service=text_service,
    )
    client = flask_app.test_client()

    for _ in range(3):
        assert client.post("/api/firebase-login", json={"idToken": "demo"}).status_code == 500
        assert client.get("/api/session").status_code == 401
    assert len(flask_app.extensions["studywise"].registry) == 0
