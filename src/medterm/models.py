from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Enums ---
class PromptType(str, Enum):
    KO = "ko"
    DESC = "desc"


class QuizMode(str, Enum):
    NORMAL = "normal"
    RETEST = "retest"


class Phase(str, Enum):
    READY = "ready"
    QUIZ = "quiz"
    RESULT = "result"


class SourceStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


# --- Vocabulary ---
class Term(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    en: str
    ko: str = ""
    desc: str = ""
    source_id: str = ""
    source_name: str = ""


class SourceFile(BaseModel):
    """One uploaded CSV file and the terms parsed from it."""

    id: str
    name: str
    size: int
    digest: str
    status: SourceStatus
    error: Optional[str] = None
    terms: List[Term] = Field(default_factory=list)
    added_at: datetime = Field(default_factory=datetime.now)


# --- Quiz ---
class QuizItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    term_id: str
    prompt_type: PromptType
    prompt_text: str
    answer: str
    source_id: str
    source_name: str


class AnswerRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    quiz_id: str
    term_id: str
    prompt_type: PromptType
    prompt_text: str
    user_answer: str
    correct_answer: str
    is_correct: bool
    source_id: str
    source_name: str


class RoundResult(BaseModel):
    records: List[AnswerRecord]
    wrong_records: List[AnswerRecord]
    wrong_term_ids: List[str]
    twice_wrong: List[AnswerRecord]
    can_retest: bool
    retest_count: int
    retest_round: int


class SessionState(BaseModel):
    terms: List[Term]
    pool: List[Term]
    question_count: int
    # Count chosen on the upload page; retest rounds overwrite question_count.
    requested_count: int = 0
    strategy: str = "balanced"
    phase: Phase = Phase.READY
    mode: QuizMode = QuizMode.NORMAL
    round: int = 0
    items: List[QuizItem] = Field(default_factory=list)
    current_index: int = 0
    records: List[AnswerRecord] = Field(default_factory=list)
    previous_wrong_term_ids: List[str] = Field(default_factory=list)
    result: Optional[RoundResult] = None
    created_at: datetime = Field(default_factory=datetime.now)


# --- Hosted model payloads ---
class GenerationConfig(BaseModel):
    n: int = 20
    ratio_mcq: float = 0.5
    difficulty_mix: Dict[str, float] = Field(
        default_factory=lambda: {"d1": 0.4, "d2": 0.4, "d3": 0.2}
    )


class GeneratedQuestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str = Field(pattern="^(mcq|short)$")
    prompt: str
    choices: Optional[List[str]] = None
    answer: str
    explanation: str
    linked_term_ids: List[str] = Field(alias="linkedTermIds", min_length=1)
    difficulty: int
    exam_style_tags: List[str] = Field(alias="examStyleTags", default_factory=list)


class GradedAnswer(BaseModel):
    question_id: str
    user_answer: str
    is_correct: bool


class CoachingNote(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_id: str = Field(alias="questionId")
    feedback: str
