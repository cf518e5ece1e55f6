import json

import openai
import pytest
from conftest import FakeOpenAI, make_term

from medterm.config import settings
from medterm.grading import record_answer
from medterm.llm import (
    HostedModelClient,
    LLMError,
    coaching_items_from_records,
    extract_json_span,
    grade_generated,
)
from medterm.models import GeneratedQuestion, GenerationConfig
from medterm.quiz import build_candidates

QUESTION = {
    "id": "q1",
    "type": "short",
    "prompt": "벌림을 영어로?",
    "answer": "Abduction",
    "explanation": "몸의 중심선에서 멀어지는 운동.",
    "linkedTermIds": ["f1_0"],
    "difficulty": 1,
    "examStyleTags": ["definition"],
}


class TestExtractJsonSpan:
    def test_object_inside_prose(self):
        text = 'Sure! {"questions": [{"id": "q1"}]} Hope this helps.'
        assert json.loads(extract_json_span(text)) == {"questions": [{"id": "q1"}]}

    def test_first_balanced_span_only(self):
        assert extract_json_span('a {"x": 1} b {"y": 2}') == '{"x": 1}'

    def test_braces_inside_strings(self):
        text = '{"prompt": "use } and { freely", "n": {"k": "]"}} tail}'
        assert json.loads(extract_json_span(text))["n"] == {"k": "]"}

    def test_escaped_quotes_inside_strings(self):
        text = r'[{"feedback": "say \"abduction\" }"}] trailing ]'
        assert json.loads(extract_json_span(text, "["))[0]["feedback"] == (
            'say "abduction" }'
        )

    def test_missing_span(self):
        with pytest.raises(LLMError):
            extract_json_span("no json here")

    def test_unbalanced_span(self):
        with pytest.raises(LLMError):
            extract_json_span('{"a": {"b": 1}')


class TestGenerateQuestions:
    def test_parses_questions(self, scenario_terms):
        fake = FakeOpenAI("```json\n" + json.dumps({"questions": [QUESTION]}) + "\n```")
        questions = HostedModelClient(fake).generate_questions(
            scenario_terms, GenerationConfig(n=1, ratio_mcq=0.0)
        )
        assert len(questions) == 1
        assert questions[0].linked_term_ids == ["f1_0"]
        assert questions[0].exam_style_tags == ["definition"]
        call = fake.calls[0]
        assert call["model"] == settings.QUESTION_MODEL
        assert "총 1문항" in call["messages"][0]["content"]
        assert "(f1_0) abduction | 벌림 |" in call["messages"][1]["content"]

    def test_prompt_limits(self):
        terms = [make_term(f"t{i}", f"term{i}", ko="뜻") for i in range(600)]
        fake = FakeOpenAI(json.dumps({"questions": []}))
        HostedModelClient(fake).generate_questions(terms, past_text="가" * 9000)
        prompt = fake.calls[0]["messages"][1]["content"]
        assert prompt.count("\n- (t") == settings.MAX_PROMPT_TERMS
        assert "가" * settings.MAX_PAST_TEXT_CHARS in prompt
        assert "가" * (settings.MAX_PAST_TEXT_CHARS + 1) not in prompt

    def test_schema_mismatch_fails_whole_call(self, scenario_terms):
        broken = dict(QUESTION, linkedTermIds=[])
        fake = FakeOpenAI(json.dumps({"questions": [QUESTION, broken]}))
        with pytest.raises(LLMError):
            HostedModelClient(fake).generate_questions(scenario_terms)

    def test_invalid_type_rejected(self, scenario_terms):
        fake = FakeOpenAI(json.dumps({"questions": [dict(QUESTION, type="essay")]}))
        with pytest.raises(LLMError):
            HostedModelClient(fake).generate_questions(scenario_terms)

    def test_missing_json(self, scenario_terms):
        with pytest.raises(LLMError):
            HostedModelClient(FakeOpenAI("I cannot do that.")).generate_questions(
                scenario_terms
            )

    def test_transport_error(self, scenario_terms):
        fake = FakeOpenAI(openai.OpenAIError("boom"))
        with pytest.raises(LLMError):
            HostedModelClient(fake).generate_questions(scenario_terms)

    def test_no_terms(self):
        with pytest.raises(LLMError):
            HostedModelClient(FakeOpenAI()).generate_questions([])

    def test_missing_api_key(self, scenario_terms, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
        with pytest.raises(LLMError):
            HostedModelClient().generate_questions(scenario_terms)


class TestCoaching:
    def test_grade_generated(self):
        questions = [GeneratedQuestion(**QUESTION)]
        results = grade_generated(
            questions,
            [
                {"question_id": "q1", "user_answer": "  abduction "},
                {"question_id": "q1", "user_answer": "adduction"},
                {"question_id": "missing", "user_answer": "x"},
            ],
        )
        assert [r.is_correct for r in results] == [True, False, False]

    def test_coach_parses_notes(self):
        fake = FakeOpenAI('[{"questionId": "q1", "feedback": "벌림은 abduction"}]')
        items = [
            {
                "question_id": "q1",
                "prompt": "벌림",
                "answer": "abduction",
                "user_answer": "adduction",
            }
        ]
        notes = HostedModelClient(fake).coach_wrong_answers(items)
        assert notes[0].question_id == "q1"
        assert notes[0].feedback == "벌림은 abduction"
        assert fake.calls[0]["model"] == settings.COACH_MODEL

    def test_coach_caps_items(self):
        fake = FakeOpenAI("[]")
        items = [
            {"question_id": f"q{i}", "prompt": "p", "answer": "a", "user_answer": "b"}
            for i in range(40)
        ]
        HostedModelClient(fake).coach_wrong_answers(items)
        prompt = fake.calls[0]["messages"][1]["content"]
        assert prompt.count("- id=") == settings.MAX_COACH_ITEMS

    def test_coach_nothing_to_do(self):
        fake = FakeOpenAI()
        assert HostedModelClient(fake).coach_wrong_answers([]) == []
        assert fake.calls == []

    def test_coach_bad_payload(self):
        fake = FakeOpenAI('[{"feedback": "no id"}]')
        items = [{"question_id": "q1", "prompt": "p", "answer": "a", "user_answer": "b"}]
        with pytest.raises(LLMError):
            HostedModelClient(fake).coach_wrong_answers(items)

    def test_items_from_wrong_records_only(self, scenario_terms):
        right_item = build_candidates(scenario_terms[0])[0]
        wrong_item = build_candidates(scenario_terms[1])[0]
        records = [
            record_answer(right_item, "abduction"),
            record_answer(wrong_item, "abduct"),
        ]
        items = coaching_items_from_records(records)
        assert [i["question_id"] for i in items] == [wrong_item.id]
        assert items[0]["answer"] == "adduction"
        assert items[0]["user_answer"] == "abduct"
