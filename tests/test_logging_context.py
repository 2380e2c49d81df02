"""Tests for logging context propagation."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from placement_guard.logging.context import (
    bind_log_context,
    clear_log_context,
    get_log_context,
    log_context,
    pop_log_context,
    push_log_context,
)


@pytest.fixture(autouse=True)
def clean_context():
    clear_log_context()
    yield
    clear_log_context()


def test_empty_context():
    assert get_log_context() == {}


def test_nested_push_and_pop():
    token1 = push_log_context(run_id="abc123")
    token2 = push_log_context(introduction_id="intro-1")
    assert get_log_context() == {"run_id": "abc123", "introduction_id": "intro-1"}

    token3 = push_log_context(check_in_id="ci-1")
    assert get_log_context() == {
        "run_id": "abc123",
        "introduction_id": "intro-1",
        "check_in_id": "ci-1",
    }

    pop_log_context(token3)
    assert get_log_context() == {"run_id": "abc123", "introduction_id": "intro-1"}

    pop_log_context(token2)
    pop_log_context(token1)
    assert get_log_context() == {}


def test_context_override():
    token1 = push_log_context(run_id="abc123")
    token2 = push_log_context(run_id="xyz789")
    assert get_log_context() == {"run_id": "xyz789"}

    pop_log_context(token2)
    assert get_log_context() == {"run_id": "abc123"}

    pop_log_context(token1)


def test_context_manager_nested():
    with log_context(run_id="abc123", job="check-ins"):
        with log_context(check_in_id="ci-1"):
            assert get_log_context() == {"run_id": "abc123", "job": "check-ins", "check_in_id": "ci-1"}

        assert get_log_context() == {"run_id": "abc123", "job": "check-ins"}

    assert get_log_context() == {}


def test_context_manager_restores_after_exception():
    with pytest.raises(ValueError):
        with log_context(run_id="abc123"):
            raise ValueError("Test exception")

    assert get_log_context() == {}


def test_clear_context():
    push_log_context(run_id="abc123", flag_id="flag-1")

    clear_log_context()

    assert get_log_context() == {}


def test_get_returns_copy():
    token = push_log_context(run_id="abc123")

    context = get_log_context()
    context["flag_id"] = "modified"

    assert get_log_context() == {"run_id": "abc123"}
    pop_log_context(token)


def test_plain_thread_starts_without_context():
    seen = {}

    def worker():
        seen.update(get_log_context())

    with log_context(run_id="abc123"):
        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

    assert seen == {}


def test_bind_log_context_carries_into_pool():
    def worker(check_in_id):
        with log_context(check_in_id=check_in_id):
            return get_log_context()

    with log_context(run_id="abc123", job="check-ins"):
        with ThreadPoolExecutor(max_workers=2) as executor:
            results = list(executor.map(bind_log_context(worker), ["ci-1", "ci-2"]))

    assert results == [
        {"run_id": "abc123", "job": "check-ins", "check_in_id": "ci-1"},
        {"run_id": "abc123", "job": "check-ins", "check_in_id": "ci-2"},
    ]
    assert get_log_context() == {}


def test_bound_function_does_not_leak_changes():
    def worker():
        push_log_context(flag_id="flag-1")

    with log_context(run_id="abc123"):
        bound = bind_log_context(worker)
        bound()
        assert get_log_context() == {"run_id": "abc123"}
