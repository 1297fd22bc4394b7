import json

import pytest

from ai import generate_course_outline, generate_flashcards, generate_quiz_from_lesson, grade_quiz, stream_lesson
from gemini import MalformedResponseError

QUESTIONS = [
    {"question": "Which quantity has direction?", "options": ["A. Speed", "B. Velocity"], "answer": "B. Velocity"},
    {"question": "Unit of force?", "options": ["A. Newton", "B. Joule"], "answer": "A. Newton"},
]


def test_quiz_from_fenced_response(text_service):
    text_service.responses.append("```json\n" + json.dumps({"quiz": QUESTIONS}) + "\n```")
    assert generate_quiz_from_lesson(text_service, "Kinematics lesson") == QUESTIONS
    assert "Kinematics lesson" in text_service.prompts[0]


def test_quiz_answer_letter_is_mapped_to_option(text_service):
    item = {"question": "Q?", "options": ["A. one", "B. two", "C. three"], "answer": "C"}
    text_service.responses.append(json.dumps([item, {"question": "", "options": []}]))
    assert generate_quiz_from_lesson(text_service, "text") == [{**item, "answer": "C. three"}]


def test_quiz_without_usable_questions(text_service):
    text_service.responses.append('{"quiz": []}')
    with pytest.raises(MalformedResponseError):
        generate_quiz_from_lesson(text_service, "text")


def test_quiz_requires_lesson_text(text_service):
    with pytest.raises(ValueError):
        generate_quiz_from_lesson(text_service, "  ")


def test_grade_quiz():
    attempt = grade_quiz("u1", "Physics: Kinematics", QUESTIONS, ["B. Velocity", None], duration=42)
    assert (attempt.score, attempt.total, attempt.percentage) == (1, 2, 50)
    assert [q.is_correct for q in attempt.questions_answered] == [True, False]
    assert attempt.questions_answered[1].selected_answer == ""
    assert attempt.duration == 42


def test_stream_lesson(text_service):
    assert "".join(stream_lesson(text_service, "Kinematics")) == "Of course. Here is a lesson."
    with pytest.raises(ValueError):
        stream_lesson(text_service, "")


def test_course_outline(text_service):
    text_service.responses.append(json.dumps({"modules": [{"title": "Motion", "topics": ["velocity"]}]}))
    [module] = generate_course_outline(text_service, "Learn mechanics", "beginner")
    assert module.title == "Motion"
    assert module.topics == ["velocity"]

    with pytest.raises(ValueError):
        generate_course_outline(text_service, "Learn mechanics", "expert")


def test_flashcards(text_service):
    text_service.responses.append(json.dumps({
        "cards": [
            {"front": "F = ?", "back": "ma", "difficulty": "easy"},
            {"front": "Unit of work?", "back": "Joule", "difficulty": "brutal"},
            {"front": "", "back": "skipped"},
        ],
        "summary": "Newton's laws",
    }))
    result = generate_flashcards(text_service, "Newton's laws of motion", "Physics", count=5)

    assert result["summary"] == "Newton's laws"
    assert [c["front"] for c in result["cards"]] == ["F = ?", "Unit of work?"]
    assert result["cards"][1]["difficulty"] == "medium"
    assert all(c["topic"] == "Physics" for c in result["cards"])


def test_grade_quiz_rejects_bad_input():
    with pytest.raises(ValueError):
        grade_quiz("u1", "Logic", ["x"], [])
    with pytest.raises(ValueError):
        grade_quiz("u1", "Logic", QUESTIONS, [], duration="soon")
    assert grade_quiz("u1", "Logic", QUESTIONS, [], duration="12").duration == 12
