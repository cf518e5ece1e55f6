"""
Quiz session and retest state machine.

Every transition takes a ``SessionState`` and returns a new one; the input is
never mutated. The HTTP layer only stores whichever state came back last.

    ready --start_round--> quiz --submit_answer/advance--> result
    result --retest--> quiz (round + 1, pool = wrong terms)
    result --restart--> ready
"""

import logging
import random
from typing import Dict, List, Optional

from .config import settings
from .grading import record_answer
from .models import Phase, QuizMode, RoundResult, SessionState, Term
from .quiz import QuizFactory

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Base class for quiz session failures."""


class InvalidTransition(SessionError):
    """Event not allowed in the current phase."""


class EmptyQuizError(SessionError):
    """No usable questions could be built from the term pool."""


def _require_phase(state: SessionState, phase: Phase, event: str) -> None:
    if state.phase is not phase:
        raise InvalidTransition(
            f"Cannot {event} while session is in phase '{state.phase.value}'"
        )


def new_session(
    terms: List[Term],
    question_count: Optional[int] = None,
    strategy: str = "balanced",
) -> SessionState:
    if question_count is None:
        question_count = settings.DEFAULT_QUESTION_COUNT
    question_count = max(1, int(question_count))
    return SessionState(
        terms=list(terms),
        pool=list(terms),
        question_count=question_count,
        requested_count=question_count,
        strategy=strategy,
    )


def start_round(
    state: SessionState, rng: Optional[random.Random] = None
) -> SessionState:
    if state.phase is Phase.QUIZ:
        raise InvalidTransition("A round is already in progress")
    generator = QuizFactory.create(state.strategy, rng)
    items = generator.generate(state.pool, state.question_count)
    if not items:
        raise EmptyQuizError("No questions could be built from the uploaded terms")
    logger.info(
        f"Round {state.round} started [mode: {state.mode.value}, items: {len(items)}]"
    )
    return state.model_copy(
        update={
            "phase": Phase.QUIZ,
            "items": items,
            "current_index": 0,
            "records": [],
            "result": None,
        }
    )


def current_item_answered(state: SessionState) -> bool:
    return len(state.records) > state.current_index


def submit_answer(state: SessionState, answer: Optional[str]) -> SessionState:
    """Grades the current item and appends its record in one step."""
    _require_phase(state, Phase.QUIZ, "submit an answer")
    if current_item_answered(state):
        raise InvalidTransition("Answer already recorded for this question")
    record = record_answer(state.items[state.current_index], answer)
    return state.model_copy(update={"records": state.records + [record]})


def advance(state: SessionState) -> SessionState:
    """Moves to the next question, or finalizes the round after the last one."""
    _require_phase(state, Phase.QUIZ, "advance")
    if not current_item_answered(state):
        raise InvalidTransition("Current question has not been answered")
    if state.current_index < len(state.items) - 1:
        return state.model_copy(update={"current_index": state.current_index + 1})
    return finalize_round(state)


def finalize_round(state: SessionState) -> SessionState:
    _require_phase(state, Phase.QUIZ, "finalize")
    answered = [r.quiz_id for r in state.records]
    presented = [item.id for item in state.items]
    if answered != presented:
        raise InvalidTransition(
            f"Round is incomplete: {len(answered)} of {len(presented)} answered"
        )

    wrong_records = [r for r in state.records if not r.is_correct]
    wrong_term_ids = list(dict.fromkeys(r.term_id for r in wrong_records))
    previous = set(state.previous_wrong_term_ids)
    twice_wrong = [r for r in wrong_records if r.term_id in previous]

    result = RoundResult(
        records=list(state.records),
        wrong_records=wrong_records,
        wrong_term_ids=wrong_term_ids,
        twice_wrong=twice_wrong,
        can_retest=bool(wrong_term_ids),
        retest_count=len(wrong_term_ids),
        retest_round=state.round,
    )
    logger.info(
        f"Round {state.round} finished: {len(state.records) - len(wrong_records)}"
        f"/{len(state.records)} correct, {len(twice_wrong)} missed twice"
    )
    return state.model_copy(update={"phase": Phase.RESULT, "result": result})


def retest(state: SessionState, rng: Optional[random.Random] = None) -> SessionState:
    """Starts the next round restricted to the terms missed in this one."""
    _require_phase(state, Phase.RESULT, "retest")
    if not state.result or not state.result.can_retest:
        raise InvalidTransition("No wrong answers to retest")

    by_id: Dict[str, Term] = {}
    for term in state.terms:
        by_id.setdefault(term.id, term)
    pool = [
        by_id[term_id] for term_id in state.result.wrong_term_ids if term_id in by_id
    ]

    # Sized by wrong terms, not prompts. Under "balanced" a term with both ko
    # and desc prompts can be asked twice while another wrong term is skipped;
    # "unique" asks each wrong term once.
    next_state = state.model_copy(
        update={
            "phase": Phase.READY,
            "pool": pool,
            "question_count": len(pool),
            "mode": QuizMode.RETEST,
            "round": state.round + 1,
            "previous_wrong_term_ids": list(state.result.wrong_term_ids),
        }
    )
    return start_round(next_state, rng)


def restart(state: SessionState) -> SessionState:
    """Back to the initial state over the same terms and settings."""
    _require_phase(state, Phase.RESULT, "restart")
    return new_session(state.terms, state.requested_count or None, state.strategy)
