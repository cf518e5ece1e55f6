from typing import List

from pydantic import BaseModel

from .models import AnswerRecord, PromptType, RoundResult

PROMPT_LABELS = {
    PromptType.KO: "한국어 뜻",
    PromptType.DESC: "설명",
}


def prompt_label(prompt_type: PromptType) -> str:
    return PROMPT_LABELS[prompt_type]


class ResultRow(BaseModel):
    record: AnswerRecord
    prompt_label: str
    twice_wrong: bool


class ResultSummary(BaseModel):
    correct_count: int
    wrong_count: int
    total_questions: int
    score_percentage: int
    perfect: bool
    awaken: bool
    rows: List[ResultRow]
    wrong_rows: List[ResultRow]
    twice_wrong: List[AnswerRecord]
    can_retest: bool
    retest_count: int
    retest_round: int


def summarize(result: RoundResult) -> ResultSummary:
    """Flattens a finished round into what the result page renders."""
    twice_ids = {r.term_id for r in result.twice_wrong}
    rows = [
        ResultRow(
            record=record,
            prompt_label=prompt_label(record.prompt_type),
            twice_wrong=not record.is_correct and record.term_id in twice_ids,
        )
        for record in result.records
    ]
    total = len(result.records)
    wrong = len(result.wrong_records)
    correct = total - wrong
    return ResultSummary(
        correct_count=correct,
        wrong_count=wrong,
        total_questions=total,
        score_percentage=round((correct / total) * 100) if total > 0 else 0,
        perfect=total > 0 and wrong == 0,
        # Second retest and still not clean.
        awaken=result.retest_round >= 2 and wrong > 0,
        rows=rows,
        wrong_rows=[row for row in rows if not row.record.is_correct],
        twice_wrong=list(result.twice_wrong),
        can_retest=result.can_retest,
        retest_count=result.retest_count,
        retest_round=result.retest_round,
    )
