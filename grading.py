"""
Exam attempt state machine and scoring.

An ExamAttempt walks a fixed-order list of multiple-choice questions, collects one
answer per question and, on submit, turns them into a single numeric score. Only the
score leaves the attempt; the answers are dropped once graded.

    attempt = ExamAttempt(exam, on_submit=post_score)
    attempt.start()
    attempt.select_answer(0, 2)
    ...
    score = attempt.submit()
"""
import logging
import math
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from errors import ValidationError

logger = logging.getLogger(__name__)

UNANSWERED = -1


class NoQuestionsError(ValidationError):
    def __init__(self, message: str = "This exam has no questions"):
        super().__init__(message)


class IncompleteAttemptError(ValidationError):
    def __init__(self, unanswered: List[int]):
        numbers = ", ".join(str(i + 1) for i in unanswered)
        super().__init__(f"Please answer all questions before submitting (unanswered: {numbers})")
        self.unanswered = unanswered


class AttemptState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_score(questions: Sequence[Dict[str, Any]], answers: Sequence[int], total_score: float) -> int:
    """Each correct answer is worth total_score / len(questions); the sum is rounded once."""
    if not questions:
        raise NoQuestionsError()
    if len(answers) != len(questions):
        raise ValidationError(f"Expected {len(questions)} answers, got {len(answers)}")
    correct = sum(1 for q, a in zip(questions, answers) if a == q["correctAnswer"])
    return round_half_up(correct * total_score / len(questions))


def percentage(score: float, total_score: float) -> int:
    if not total_score:
        return 0
    return round_half_up(score / total_score * 100)


class ExamAttempt:
    """One student's pass through an exam document (camelCase keys, as stored)."""

    def __init__(
        self,
        exam: Dict[str, Any],
        on_submit: Optional[Callable[[int], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.exam = exam
        self.questions: List[Dict[str, Any]] = list(exam.get("questions") or [])
        self.total_score: float = exam.get("totalScore") or 0
        self.on_submit = on_submit
        self._clock = clock
        self.state = AttemptState.NOT_STARTED
        self.current = 0
        self.answers: Optional[List[int]] = None
        self.score: Optional[int] = None
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None

    @property
    def question_count(self) -> int:
        return len(self.questions)

    def start(self) -> "ExamAttempt":
        if self.state is not AttemptState.NOT_STARTED:
            raise ValidationError("Attempt already started")
        if not self.questions:
            raise NoQuestionsError()
        self.answers = [UNANSWERED] * self.question_count
        self.current = 0
        self._started_at = self._clock()
        self.state = AttemptState.IN_PROGRESS
        return self

    def _require_in_progress(self):
        if self.state is not AttemptState.IN_PROGRESS:
            raise ValidationError(f"Attempt is {self.state.value}")

    @property
    def current_question(self) -> Dict[str, Any]:
        self._require_in_progress()
        return self.questions[self.current]

    def select_answer(self, question_index: int, option_index: int) -> None:
        self._require_in_progress()
        if not 0 <= question_index < self.question_count:
            raise ValidationError(f"No question at index {question_index}")
        options = self.questions[question_index].get("options") or []
        if not 0 <= option_index < len(options):
            raise ValidationError(f"No option {option_index} for question {question_index + 1}")
        self.answers[question_index] = option_index

    def next(self) -> int:
        self._require_in_progress()
        if self.current < self.question_count - 1:
            self.current += 1
        return self.current

    def previous(self) -> int:
        self._require_in_progress()
        if self.current > 0:
            self.current -= 1
        return self.current

    @property
    def unanswered(self) -> List[int]:
        if self.answers is None:
            return list(range(self.question_count))
        return [i for i, a in enumerate(self.answers) if a == UNANSWERED]

    @property
    def can_submit(self) -> bool:
        return self.state is AttemptState.IN_PROGRESS and not self.unanswered

    @property
    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._finished_at if self._finished_at is not None else self._clock()
        return end - self._started_at

    def submit(self) -> int:
        self._require_in_progress()
        missing = self.unanswered
        if missing:
            raise IncompleteAttemptError(missing)
        score = compute_score(self.questions, self.answers, self.total_score)
        self.score = score
        self.answers = None
        self._finished_at = self._clock()
        self.state = AttemptState.SUBMITTED
        logger.info("Exam %s graded: %s/%s", self.exam.get("_id") or self.exam.get("id"), score, self.total_score)
        if self.on_submit is not None:
            self.on_submit(score)
        return score

    @property
    def percentage(self) -> Optional[int]:
        if self.score is None:
            return None
        return percentage(self.score, self.total_score)
