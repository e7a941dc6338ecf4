from types import SimpleNamespace

import pytest

from utils.token_tracker import record_openai_usage_from_response, token_tracker


@pytest.fixture(autouse=True)
def fresh_tracker():
    token_tracker.reset()
    yield
    token_tracker.reset()


def test_usage_is_totalled_overall_and_per_purpose():
    usage = SimpleNamespace(prompt_tokens=100, completion_tokens=20, total_tokens=120)
    record_openai_usage_from_response(SimpleNamespace(usage=usage), purpose="plan")
    record_openai_usage_from_response({"usage": None}, purpose="plan")
    record_openai_usage_from_response(
        SimpleNamespace(usage={"prompt_tokens": 40, "completion_tokens": 10}), purpose="synthesize"
    )

    assert token_tracker.get_totals() == {
        "prompt_tokens": 140, "completion_tokens": 30, "total_tokens": 170, "calls": 2,
    }
    by_purpose = token_tracker.get_by_purpose()
    assert by_purpose["plan"]["total_tokens"] == 120
    assert by_purpose["synthesize"] == {"prompt_tokens": 40, "completion_tokens": 10, "total_tokens": 50, "calls": 1}


def test_by_purpose_is_a_copy():
    token_tracker.add(1, 1, purpose="classify")
    token_tracker.get_by_purpose()["classify"]["calls"] = 99
    assert token_tracker.get_by_purpose()["classify"]["calls"] == 1
