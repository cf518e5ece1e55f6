"""
Hosted language model collaborator.

Two best-effort calls, both independent of the quiz core:

* ``generate_questions`` asks the model to author exam-style questions from
  the uploaded terms (and optional past-exam text).
* ``coach_wrong_answers`` asks for a short coaching note per wrong answer.

Any transport error, missing JSON, or schema mismatch fails the whole call
with ``LLMError``; nothing is partially returned.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import openai
from pydantic import TypeAdapter, ValidationError

from .config import settings
from .grading import normalize_answer
from .models import (
    AnswerRecord,
    CoachingNote,
    GeneratedQuestion,
    GenerationConfig,
    GradedAnswer,
    Term,
)

logger = logging.getLogger(__name__)

_CLOSERS = {"{": "}", "[": "]"}


class LLMError(Exception):
    """The hosted model call failed or returned something unusable."""


def extract_json_span(text: str, opener: str = "{") -> str:
    """Returns the first balanced ``{...}`` or ``[...]`` span in ``text``."""
    closer = _CLOSERS[opener]
    text = text or ""
    start = text.find(opener)
    if start == -1:
        raise LLMError(f"JSON {opener}{closer} not found in model output")

    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(text)):
        ch = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start : pos + 1]
    raise LLMError(f"Unbalanced JSON {opener}{closer} in model output")


def _parse_json(text: str, opener: str) -> Any:
    try:
        return json.loads(extract_json_span(text, opener))
    except json.JSONDecodeError as e:
        raise LLMError(f"Model output is not valid JSON: {e}") from e


def schema_hint() -> Dict[str, Any]:
    return {
        "questions": [
            {
                "id": "string",
                "type": "mcq | short",
                "prompt": "string",
                "choices": ["string"],
                "answer": "string",
                "explanation": "string",
                "linkedTermIds": ["string"],
                "difficulty": 1,
                "examStyleTags": ["string"],
            }
        ]
    }


def build_generation_prompt(
    terms: List[Term], config: GenerationConfig, past_text: str = ""
) -> Dict[str, str]:
    instructions = (
        '너는 의대생 "의학용어" 시험 출제자다.\n'
        "입력된 용어(EN/KO/설명)와 기출 텍스트(말투/유형)를 참고해 문제를 만든다.\n\n"
        "요구사항:\n"
        f"- 총 {config.n}문항\n"
        f"- 객관식 비율 {config.ratio_mcq}\n"
        "- choices는 mcq일 때만 포함\n"
        "- answer는 mcq면 '선지 텍스트 그대로', short면 '정답 문자열'\n"
        "- explanation은 1~3문장 (시험용)\n"
        "- linkedTermIds는 반드시 존재(0개면 안 됨)\n"
        '- examStyleTags는 예: ["definition","abbrev","prefix_suffix","true_false",'
        '"fill_blank","synonym"]\n'
        f"반드시 JSON만 출력. 스키마: {json.dumps(schema_hint(), ensure_ascii=False)}"
    )
    term_lines = "\n".join(
        f"- ({t.id}) {t.en} | {t.ko} | {t.desc}"
        for t in terms[: settings.MAX_PROMPT_TERMS]
    )
    prompt = (
        f"[용어목록]\n{term_lines}\n\n"
        f"[기출 텍스트(선택)]\n{(past_text or '')[: settings.MAX_PAST_TEXT_CHARS]}\n\n"
        f"[난이도 mix]\n{json.dumps(config.difficulty_mix)}"
    )
    return {"instructions": instructions, "prompt": prompt}


def build_coaching_prompt(items: List[Dict[str, str]]) -> str:
    blocks = "\n\n".join(
        f"- id={item['question_id']}\n"
        f"Q: {item['prompt']}\n"
        f"정답: {item['answer']}\n"
        f"내답: {item['user_answer']}\n"
        f"해설: {item.get('explanation', '')}"
        for item in items
    )
    return (
        "너는 오답노트 코치다. 아래 오답들에 대해 questionId별로:\n"
        "- 왜 틀렸는지 핵심 1~2문장\n"
        "- 헷갈리기 쉬운 포인트 1개\n"
        "- 다음엔 어떻게 외울지 한 줄\n"
        "을 하나로 묶어서 feedback에 넣어라.\n\n"
        '형식(JSON만):\n[{"questionId":"...","feedback":"..."}]\n\n'
        f"[오답 목록]\n{blocks}"
    )


def grade_generated(
    questions: List[GeneratedQuestion], answers: List[Dict[str, str]]
) -> List[GradedAnswer]:
    by_id = {q.id: q for q in questions}
    results = []
    for answer in answers:
        question = by_id.get(answer["question_id"])
        user_answer = answer.get("user_answer") or ""
        results.append(
            GradedAnswer(
                question_id=answer["question_id"],
                user_answer=user_answer,
                is_correct=question is not None
                and normalize_answer(user_answer) == normalize_answer(question.answer),
            )
        )
    return results


def coaching_items_from_records(records: List[AnswerRecord]) -> List[Dict[str, str]]:
    return [
        {
            "question_id": r.quiz_id,
            "prompt": r.prompt_text,
            "answer": r.correct_answer,
            "user_answer": r.user_answer,
            "explanation": "",
        }
        for r in records
        if not r.is_correct
    ]


class HostedModelClient:
    """Thin wrapper over the OpenAI chat API."""

    def __init__(self, client: Optional[Any] = None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise LLMError("OPENAI_API_KEY is not configured")
            self._client = openai.OpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    def _complete(self, model: str, instructions: str, prompt: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": instructions},
                    {"role": "user", "content": prompt},
                ],
            )
        except openai.OpenAIError as e:
            logger.error(f"Hosted model call failed: {e}")
            raise LLMError(str(e)) from e
        return response.choices[0].message.content or ""

    def generate_questions(
        self,
        terms: List[Term],
        config: Optional[GenerationConfig] = None,
        past_text: str = "",
    ) -> List[GeneratedQuestion]:
        if not terms:
            raise LLMError("no terms")
        config = config or GenerationConfig()
        prompt = build_generation_prompt(terms, config, past_text)
        text = self._complete(
            settings.QUESTION_MODEL, prompt["instructions"], prompt["prompt"]
        )
        payload = _parse_json(text, "{")
        try:
            questions = TypeAdapter(List[GeneratedQuestion]).validate_python(
                payload.get("questions", []) if isinstance(payload, dict) else payload
            )
        except ValidationError as e:
            raise LLMError(f"Generated questions do not match schema: {e}") from e
        logger.info(f"Generated {len(questions)} questions from {len(terms)} terms")
        return questions

    def coach_wrong_answers(self, items: List[Dict[str, str]]) -> List[CoachingNote]:
        items = items[: settings.MAX_COACH_ITEMS]
        if not items:
            return []
        text = self._complete(
            settings.COACH_MODEL, "JSON만 출력", build_coaching_prompt(items)
        )
        payload = _parse_json(text, "[")
        try:
            return TypeAdapter(List[CoachingNote]).validate_python(payload)
        except ValidationError as e:
            raise LLMError(f"Coaching notes do not match schema: {e}") from e
