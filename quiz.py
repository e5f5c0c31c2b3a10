"""Quiz grading: one point per correct option, percentage and badge."""
from typing import Dict, List

from models import QuizAnswerResult, QuizQuestion, QuizResult


def badge_for(percentage: float) -> str:
    if percentage >= 80:
        return "Pro"
    if percentage >= 60:
        return "Intermediate"
    return "Beginner"


def grade_quiz(questions: List[QuizQuestion], answers: Dict[str, int]) -> QuizResult:
    """
    Grades `answers` (question id -> selected option index) against `questions`.
    Unanswered questions count as wrong; answers to unknown ids are ignored.
    """
    results = []
    for question in questions:
        selected = answers.get(question.id)
        results.append(QuizAnswerResult(
            question_id=question.id,
            selected=selected,
            correct_answer=question.correct_answer,
            correct=selected == question.correct_answer,
        ))

    score = sum(1 for result in results if result.correct)
    total = len(questions)
    percentage = score / total * 100 if total else 0
    return QuizResult(
        score=score,
        total=total,
        percentage=round(percentage),
        badge=badge_for(percentage),
        results=results,
    )
