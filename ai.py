"""AI generators: lessons, quizzes, course outlines and flashcards."""

import logging
import time
from typing import Iterator

from PIL import Image

from gemini import MalformedResponseError, TextService, parse_json_response
from models import COURSE_LEVELS, CourseModule, QuestionRecord, QuizAttempt, as_duration, percentage_of

logger = logging.getLogger(__name__)


# ============================================================================
# LESSONS
# ============================================================================

def lesson_prompt(query: str, with_image: bool = False) -> str:
    if with_image:
        return (
            "You are an expert tutor for students preparing for competitive exams like JEE, NEET, UPSC, and GATE. "
            "A student has uploaded an image (e.g., a math problem, a diagram, a page of text) and asked a question about it.\n\n"
            "Your goal is to:\n"
            "1. Analyze the image (read any text, understand the diagram or problem).\n"
            "2. Answer the student's question about it with a clear, beginner-friendly explanation using simple analogies.\n"
            "3. Ensure the explanation is accurate and provides a solid foundation.\n"
            "4. Do not include any formatting like markdown, bolding, or lists. Just provide a single, plain text explanation.\n\n"
            f'Here is the student\'s question: "{query}"'
        )
    return (
        "You are an expert tutor for students preparing for competitive exams like JEE, NEET, UPSC, and GATE. "
        f'A student has asked for help with the topic: "{query}".\n\n'
        "Your goal is to explain this complex topic as simply as possible, as if you are teaching a complete beginner.\n"
        f'1. Start your response with: "Of course. Here is a beginner-friendly explanation of {query}."\n'
        "2. Use easy-to-understand examples and simple analogies to break down the core concepts.\n"
        "3. Ensure the explanation is accurate and provides a solid foundation for someone who will study this topic "
        "in more detail for an exam.\n"
        "4. Do not include any formatting like markdown, bolding, or lists. Just provide a single, plain text explanation.\n\n"
        f"Here is the student's question: {query}"
    )


def stream_lesson(service: TextService, query: str, image: Image.Image | None = None) -> Iterator[str]:
    """Stream a beginner-friendly lesson on `query`, optionally about an image."""
    query = (query or "").strip()
    if not query:
        raise ValueError("query is required")
    return service.generate_stream(lesson_prompt(query, with_image=image is not None), image=image)


# ============================================================================
# QUIZZES
# ============================================================================

def quiz_prompt(lesson_text: str, count: int) -> str:
    return (
        f"You are an expert test maker. Based ONLY on the following text, create a {count}-question "
        "multiple-choice quiz. Each question must have 3 options (A, B, C).\n\n"
        "RESPOND WITH ONLY A VALID JSON OBJECT. DO NOT add any markdown, explanations, or extra text "
        "before or after the JSON.\n\n"
        "The JSON format MUST be exactly:\n"
        "{\n"
        '  "quiz": [\n'
        "    {\n"
        '      "question": "What is...",\n'
        '      "options": ["A. Option 1", "B. Option 2", "C. Option 3"],\n'
        '      "answer": "B. Option 2"\n'
        "    }\n"
        "  ]\n"
        "}\n\n"
        f"LESSON TEXT:\n{lesson_text}"
    )


def _clean_question(item) -> dict | None:
    if not isinstance(item, dict):
        return None
    question = str(item.get("question") or "").strip()
    opts = item.get("options")
    if not question or not isinstance(opts, list):
        return None
    options = [str(o).strip() for o in opts if str(o).strip()]
    if len(options) < 2:
        return None
    answer = str(item.get("answer") or "").strip()
    if answer not in options:
        # "B" instead of "B. Option 2"
        letter = answer[:1].upper()
        matches = [o for o in options if o[:1].upper() == letter and o[1:2] in (".", ")")]
        if len(matches) != 1:
            return None
        answer = matches[0]
    return {"question": question, "options": options, "answer": answer}


def generate_quiz_from_lesson(service: TextService, lesson_text: str, count: int = 5) -> list[dict]:
    """Ask for a quiz about `lesson_text`; returns [{question, options, answer}]."""
    lesson_text = (lesson_text or "").strip()
    if not lesson_text:
        raise ValueError("lesson text is required")
    raw = service.generate(quiz_prompt(lesson_text, count))
    data = parse_json_response(raw)
    items = data.get("quiz") if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise MalformedResponseError("Quiz response has no question list")
    quiz = [q for q in (_clean_question(it) for it in items) if q]
    if not quiz:
        raise MalformedResponseError("Quiz response contained no usable questions")
    return quiz[:count]


def grade_quiz(user_id: str, topic: str, questions: list[dict], selected: list[str | None],
               duration: int | None = None) -> QuizAttempt:
    """Score submitted answers and build the attempt record to save."""
    if not questions:
        raise ValueError("questions are required")
    duration = as_duration(duration)
    records = []
    for i, q in enumerate(questions):
        if not isinstance(q, dict):
            raise ValueError(f"question {i + 1} must be an object")
        choice = selected[i] if i < len(selected) and selected[i] is not None else ""
        correct = str(q.get("answer") or "")
        records.append(QuestionRecord(
            question=str(q.get("question") or ""),
            selected_answer=str(choice),
            correct_answer=correct,
            is_correct=str(choice) == correct,
        ))
    score = sum(1 for r in records if r.is_correct)
    total = len(records)
    return QuizAttempt(
        user_id=user_id,
        topic=topic,
        score=score,
        total=total,
        percentage=percentage_of(score, total),
        questions_answered=records,
        duration=duration,
    )


# ============================================================================
# COURSES
# ============================================================================

def generate_course_outline(service: TextService, goal: str, level: str) -> list[CourseModule]:
    goal = (goal or "").strip()
    if not goal:
        raise ValueError("goal is required")
    if level not in COURSE_LEVELS:
        raise ValueError(f"level must be one of {', '.join(COURSE_LEVELS)}")
    prompt = (
        "You are an expert curriculum designer.\n"
        f'Create a short, focused learning path as JSON for the goal: "{goal}".\n'
        f"Level: {level}.\n\n"
        "Output JSON ONLY in this format:\n"
        "{\n"
        '  "modules": [\n'
        "    {\n"
        '      "title": "...",\n'
        '      "description": "...",\n'
        '      "topics": ["topic 1", "topic 2", "topic 3"]\n'
        "    }\n"
        "  ]\n"
        "}\n\n"
        "Keep it practical and exam-focused. 3-5 modules max."
    )
    data = parse_json_response(service.generate(prompt))
    modules = data.get("modules") if isinstance(data, dict) else None
    if not isinstance(modules, list):
        raise MalformedResponseError("Course outline has no modules")
    return [CourseModule.from_dict(m) for m in modules if isinstance(m, dict)]


# ============================================================================
# FLASHCARDS
# ============================================================================

def generate_flashcards(service: TextService, content: str, topic: str, count: int = 5) -> dict:
    """Flashcards plus a short summary of `content`."""
    content = (content or "").strip()
    if not content:
        raise ValueError("content is required")
    prompt = (
        f"You are an expert educator. Create exactly {count} flashcards from the following content.\n"
        "Each flashcard should have a clear question on the front and a concise answer on the back.\n"
        "Include a mix of difficulty levels (easy, medium, hard).\n\n"
        f"Content:\n{content}\n\n"
        "Respond ONLY with valid JSON in this format:\n"
        "{\n"
        '  "cards": [\n'
        '    {"front": "question", "back": "answer", "difficulty": "easy|medium|hard"}\n'
        "  ],\n"
        '  "summary": "brief summary of key concepts"\n'
        "}\n\n"
        "Do not include markdown formatting or code blocks. Output raw JSON only."
    )
    data = parse_json_response(service.generate(prompt))
    if not isinstance(data, dict):
        raise MalformedResponseError("Flashcard response is not an object")
    stamp = int(time.time() * 1000)
    cards = []
    for idx, card in enumerate(data.get("cards") or []):
        if not isinstance(card, dict):
            continue
        front = str(card.get("front") or "").strip()
        back = str(card.get("back") or "").strip()
        if not front or not back:
            continue
        difficulty = card.get("difficulty")
        cards.append({
            "id": f"card_{stamp}_{idx}",
            "front": front,
            "back": back,
            "topic": topic,
            "difficulty": difficulty if difficulty in ("easy", "medium", "hard") else "medium",
        })
        if len(cards) >= count:
            break
    logger.info("Generated %d flashcards for %s", len(cards), topic)
    return {
        "topic": topic,
        "summary": str(data.get("summary") or "Study this content thoroughly"),
        "cards": cards,
    }
