import os
import random
import tempfile
from types import SimpleNamespace

import pytest

os.environ.setdefault("MEDTERM_LOG_DIR", tempfile.mkdtemp(prefix="medterm-log-"))
os.environ.setdefault("MEDTERM_VOCAB_DIR", tempfile.mkdtemp(prefix="medterm-vocab-"))
os.environ.setdefault("MEDTERM_DB_DIR", tempfile.mkdtemp(prefix="medterm-db-"))

from medterm.models import Term  # noqa: E402


def make_term(term_id, en, ko="", desc="", source_id="src1", source_name="a.csv"):
    return Term(
        id=term_id,
        en=en,
        ko=ko,
        desc=desc,
        source_id=source_id,
        source_name=source_name,
    )


class FakeCompletions:
    """Stands in for ``client.chat.completions``; replays canned replies."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self, *replies):
        self.chat = SimpleNamespace(completions=FakeCompletions(replies))

    @property
    def calls(self):
        return self.chat.completions.calls


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def scenario_terms():
    return [
        make_term("f1_0", "abduction", ko="벌림"),
        make_term("f1_1", "adduction", desc="모음 운동"),
    ]
