import itertools
import logging
import random
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, Optional

from .models import PromptType, QuizItem, Term

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "unknown"


def _shuffled(items: List[QuizItem], rng: random.Random) -> List[QuizItem]:
    copy = list(items)
    rng.shuffle(copy)
    return copy


def _make_item(term: Term, prompt_type: PromptType, seq: int) -> QuizItem:
    prompt_text = term.ko if prompt_type is PromptType.KO else term.desc
    return QuizItem(
        id=f"{term.id}:{prompt_type.value}:{seq}",
        term_id=term.id,
        prompt_type=prompt_type,
        prompt_text=prompt_text.strip(),
        answer=term.en.strip(),
        source_id=term.source_id,
        source_name=term.source_name,
    )


def build_candidates(term: Term, seq: int = 0) -> List[QuizItem]:
    """Every question a term can produce: one per non-empty prompt text."""
    if not term.en.strip():
        return []
    candidates = []
    if term.ko.strip():
        candidates.append(_make_item(term, PromptType.KO, seq))
    if term.desc.strip():
        candidates.append(_make_item(term, PromptType.DESC, seq))
    return candidates


def group_candidates(terms: List[Term]) -> "OrderedDict[str, List[QuizItem]]":
    """Candidates keyed by source id, in first-seen order. Empty groups are dropped."""
    groups: "OrderedDict[str, List[QuizItem]]" = OrderedDict()
    for term in terms:
        candidates = build_candidates(term)
        if candidates:
            groups.setdefault(term.source_id or UNKNOWN_SOURCE, []).extend(candidates)
    return groups


def build_quiz(
    terms: List[Term], desired_count: int, rng: Optional[random.Random] = None
) -> List[QuizItem]:
    """
    Builds a source-balanced question sequence of exactly ``desired_count`` items.

    Sources are visited round-robin in random order, one candidate per source
    per pass. No candidate repeats while any source still has unused ones;
    after that each source re-seeds its own pool when it runs dry, so repeats
    spread across sources instead of piling onto one.
    """
    rng = rng or random.Random()
    desired_count = max(1, int(desired_count or 0))
    if not terms:
        return []

    groups = group_candidates(terms)
    if not groups:
        return []

    order = list(groups)
    rng.shuffle(order)
    pools: Dict[str, List[QuizItem]] = {
        key: _shuffled(groups[key], rng) for key in order
    }

    picked: List[QuizItem] = []
    allow_repeats = False
    while len(picked) < desired_count:
        if not allow_repeats and not any(pools.values()):
            allow_repeats = True
        for key in order:
            if len(picked) >= desired_count:
                break
            pool = pools[key]
            if not pool:
                if not allow_repeats:
                    continue
                pool.extend(_shuffled(groups[key], rng))
            picked.append(pool.pop())

    # Fresh ids per build; the same candidate may appear more than once.
    counter = itertools.count()
    items = [
        item.model_copy(
            update={"id": f"{item.term_id}:{item.prompt_type.value}:{next(counter)}"}
        )
        for item in picked
    ]
    rng.shuffle(items)
    logger.debug(f"Built quiz of {len(items)} items from {len(order)} sources")
    return items


def build_unique_quiz(
    terms: List[Term], desired_count: int, rng: Optional[random.Random] = None
) -> List[QuizItem]:
    """One question per term, preferring the description prompt. Never repeats."""
    rng = rng or random.Random()
    seen = set()
    pool: List[QuizItem] = []
    for term in terms:
        if not term.id or term.id in seen:
            continue
        seen.add(term.id)
        candidates = build_candidates(term, seq=len(pool))
        if candidates:
            pool.append(candidates[-1])
    rng.shuffle(pool)
    return pool[: max(0, min(int(desired_count or 0), len(pool)))]


# --- Strategy Pattern: Quiz Generators ---
class QuizGenerator(ABC):
    """Abstract Base Class for different quiz generation strategies."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    @abstractmethod
    def generate(self, terms: List[Term], count: int) -> List[QuizItem]:
        pass


class BalancedQuizGenerator(QuizGenerator):
    """Default mode: source-balanced selection over ko/desc candidates."""

    def generate(self, terms: List[Term], count: int) -> List[QuizItem]:
        return build_quiz(terms, count, self.rng)


class UniqueTermQuizGenerator(QuizGenerator):
    """At most one question per term."""

    def generate(self, terms: List[Term], count: int) -> List[QuizItem]:
        return build_unique_quiz(terms, count, self.rng)


class QuizFactory:
    """Factory to select the appropriate generator."""

    STRATEGIES = {
        "balanced": BalancedQuizGenerator,
        "unique": UniqueTermQuizGenerator,
    }

    @staticmethod
    def create(
        strategy: str = "balanced", rng: Optional[random.Random] = None
    ) -> QuizGenerator:
        generator_cls = QuizFactory.STRATEGIES.get(strategy)
        if generator_cls is None:
            logger.warning(f"Unknown quiz strategy '{strategy}', using balanced")
            generator_cls = BalancedQuizGenerator
        return generator_cls(rng)
