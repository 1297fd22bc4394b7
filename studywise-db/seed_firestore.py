"""
Seeds Firestore with demo data for the demo user.

    python studywise-db/seed_firestore.py [--uid UID]

Writes the account, profile, lesson progress and a few graded quiz attempts.
Stats are built by the normal quiz-save path so the summary matches the attempts.
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ai import grade_quiz  # noqa: E402
from config import Settings  # noqa: E402
from db_service import StudentDataService  # noqa: E402
from documents import FirestoreDocumentStore, init_firebase  # noqa: E402
from identity import DEMO_IDENTITY  # noqa: E402
from models import Identity, LessonProgress  # noqa: E402

# --- TOPICS ---
TOPICS = [
    {
        "title": "Physics: Kinematics",
        "lesson": "Kinematics describes how objects move without asking why they move. "
                  "For constant acceleration we use v = u + at, s = ut + 1/2 at² and v² = u² + 2as.",
        "quiz": [
            {"question": "Which quantity describes how fast and in what direction an object moves?",
             "options": ["A. Speed", "B. Velocity", "C. Acceleration"], "answer": "B. Velocity"},
            {"question": "A car accelerates from rest at 2 m/s² for 5 s. What is its final velocity?",
             "options": ["A. 2 m/s", "B. 5 m/s", "C. 10 m/s"], "answer": "C. 10 m/s"},
            {"question": "In kinematics, which equation relates v, u, a and s?",
             "options": ["A. v = u + at", "B. s = ut + 1/2 at²", "C. v² = u² + 2as"], "answer": "C. v² = u² + 2as"},
        ],
        "answers": ["B. Velocity", "C. 10 m/s", "C. v² = u² + 2as"],
    },
    {
        "title": "Chemistry: Thermodynamics",
        "lesson": "Enthalpy (ΔH) is the heat absorbed or released at constant pressure. "
                  "Spontaneity is decided by Gibbs free energy, ΔG = ΔH − TΔS.",
        "quiz": [
            {"question": "For an exothermic reaction at constant pressure, ΔH is:",
             "options": ["A. Positive", "B. Negative", "C. Zero"], "answer": "B. Negative"},
            {"question": "A reaction is spontaneous when:",
             "options": ["A. ΔG < 0", "B. ΔH > 0", "C. ΔS < 0"], "answer": "A. ΔG < 0"},
            {"question": "ΔG = ΔH − TΔS represents:",
             "options": ["A. Arrhenius equation", "B. Gibbs free energy", "C. Ideal gas law"],
             "answer": "B. Gibbs free energy"},
        ],
        "answers": ["B. Negative", "B. ΔH > 0", "B. Gibbs free energy"],
    },
    {
        "title": "Biology: Cell Division",
        "lesson": "Mitosis produces two genetically identical daughter cells in four stages: "
                  "prophase, metaphase, anaphase and telophase.",
        "quiz": [
            {"question": "How many daughter cells does mitosis produce?",
             "options": ["A. One", "B. Two", "C. Four"], "answer": "B. Two"},
            {"question": "In which stage do chromosomes line up at the cell's equator?",
             "options": ["A. Prophase", "B. Metaphase", "C. Telophase"], "answer": "B. Metaphase"},
        ],
        "answers": ["B. Two", "A. Prophase"],
    },
]


def seed(service: StudentDataService, identity: Identity) -> None:
    service.initialize_user(identity)
    service.ensure_profile(identity)
    service.upsert_profile({
        "userId": identity.uid,
        "preferredSubjects": [t["title"].split(":")[0] for t in TOPICS],
    })

    for topic in TOPICS:
        service.save_lesson_progress(LessonProgress(
            user_id=identity.uid,
            topic=topic["title"],
            content=topic["lesson"],
            completed=True,
            time_spent=300,
        ))
        attempt = grade_quiz(identity.uid, topic["title"], topic["quiz"], topic["answers"], duration=240)
        service.save_quiz_attempt(attempt)
        print(f"  {topic['title']}: {attempt.score}/{attempt.total} ({attempt.percentage}%)")


def main():
    parser = argparse.ArgumentParser(description="Seed Firestore with StudyWise demo data")
    parser.add_argument("--uid", default=DEMO_IDENTITY.uid, help="user id to seed (default: demo user)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    settings = Settings.from_env()
    init_firebase(settings.firebase_credentials)
    service = StudentDataService(FirestoreDocumentStore())

    identity = DEMO_IDENTITY if args.uid == DEMO_IDENTITY.uid else Identity(uid=args.uid, display_name=args.uid)
    print(f"Seeding data for {identity.uid}...")
    seed(service, identity)
    stats = service.get_stats(identity.uid)
    print(f"✅ Sample data inserted (average {stats.average_score}%, {stats.topics_mastered} topics mastered)")


if __name__ == "__main__":
    main()
