import re
import logging
from typing import Dict, List, Mapping, Union, Any

from .errors import ValidationError
from .models import MbtiQuestion, MbtiPole, MbtiCategory, MBTI_PATTERN

logger = logging.getLogger(__name__)

Answer = Union[int, str]

SCALE_MIN = -3
SCALE_MAX = 3

# Category -> (pole A letter, pole B letter)
POLES = {
    MbtiCategory.EI: ("E", "I"),
    MbtiCategory.SN: ("S", "N"),
    MbtiCategory.TF: ("T", "F"),
    MbtiCategory.JP: ("J", "P"),
}

_MBTI_RE = re.compile(MBTI_PATTERN)

def _question(qid: int, category: MbtiCategory, pole_a: str, pole_b: str) -> MbtiQuestion:
    a_id, b_id = POLES[category]
    return MbtiQuestion(
        id=qid,
        category=category,
        pole_a=MbtiPole(id=a_id, text=pole_a),
        pole_b=MbtiPole(id=b_id, text=pole_b),
    )

MBTI_QUESTIONS: List[MbtiQuestion] = [
    _question(1, MbtiCategory.EI,
              "Spend the weekend actively with a group of friends",
              "Relax at home and enjoy time alone"),
    _question(2, MbtiCategory.SN,
              "Concrete, practical facts and data",
              "The big picture, possibilities and hidden meaning"),
    _question(3, MbtiCategory.TF,
              "Analyse the problem and propose a logical solution",
              "Empathise with their feelings and offer encouragement"),
    _question(4, MbtiCategory.JP,
              "Fix destinations and a schedule in advance",
              "Decide roughly where to go and follow the mood of the moment"),
    _question(5, MbtiCategory.EI,
              "Interacting with others and activity in the outside world",
              "Reflection and thinking in a quiet environment"),
    _question(6, MbtiCategory.SN,
              "Describe things literally, as the senses perceive them",
              "Use metaphors and analogies to convey the underlying pattern"),
    _question(7, MbtiCategory.TF,
              "Objective criteria and fairness",
              "Harmony among the people involved and personal values"),
    _question(8, MbtiCategory.JP,
              "Meet deadlines and finish tasks in order",
              "Stay open to new options and enjoy the process itself"),
]

def _lookup(answers: Mapping[Any, Answer], question_id: int):
    if question_id in answers:
        return answers[question_id]
    return answers.get(str(question_id))

def _answer_value(question: MbtiQuestion, answer: Answer) -> int:
    """Signed contribution of one answer; negative favours pole A"""
    if isinstance(answer, bool):
        raise ValidationError(f"Invalid answer for question {question.id}.")
    if isinstance(answer, int):
        if not SCALE_MIN <= answer <= SCALE_MAX:
            raise ValidationError(
                f"Answer for question {question.id} must be between "
                f"{SCALE_MIN} and {SCALE_MAX}, got {answer}."
            )
        return answer
    letter = str(answer).strip().upper()
    if letter == question.pole_a.id:
        return -1
    if letter == question.pole_b.id:
        return 1
    raise ValidationError(
        f"Answer for question {question.id} must be "
        f"'{question.pole_a.id}' or '{question.pole_b.id}', got '{answer}'."
    )

def score_mbti(questions: List[MbtiQuestion], answers: Mapping[Any, Answer]) -> str:
    """
    Reduce questionnaire answers to a four-letter MBTI code

    Args:
        questions: Ordered question set
        answers: Question id -> signed intensity (-3..3) or chosen pole letter

    Returns:
        Type code such as "INFP"; a zero total selects the pole B letter
    """
    totals: Dict[MbtiCategory, int] = {category: 0 for category in POLES}

    for question in questions:
        answer = _lookup(answers, question.id)
        if answer is None:
            continue
        totals[question.category] += _answer_value(question, answer)

    code = "".join(
        POLES[category][0] if totals[category] < 0 else POLES[category][1]
        for category in POLES
    )

    if not _MBTI_RE.match(code):
        logger.error(f"Invalid MBTI type generated: {code}, totals={totals}")
        raise ValidationError("Could not determine a valid MBTI type.")

    logger.debug(f"Scored MBTI {code} from {len(answers)} answers")
    return code
