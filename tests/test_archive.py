from __future__ import annotations

import pytest

from typoforge.errors import FeedbackError
from typoforge.nodes.archive import SessionStore, sanitize


def _store_with_eval(tmp_path):
    store = SessionStore(tmp_path)
    store.create("run_1")
    store.save_evaluation("run_1", 2, {"iteration": 2, "score": 77})
    return store


def test_amend_feedback_merges_into_eval(tmp_path):
    store = _store_with_eval(tmp_path)
    doc = store.amend_feedback("run_1", 2, 4, "nice curves")
    assert doc["score"] == 77
    assert doc["userFeedback"]["rating"] == 4
    assert doc["userFeedback"]["comment"] == "nice curves"
    assert store.load_evaluation("run_1", 2)["userFeedback"]["timestamp"]
    # a second rating replaces the first
    store.amend_feedback("run_1", 2, 1)
    assert store.load_evaluation("run_1", 2)["userFeedback"]["rating"] == 1


@pytest.mark.parametrize("rating", [0, 6, 3.5, True, "5"])
def test_amend_feedback_rejects_bad_rating(tmp_path, rating):
    store = _store_with_eval(tmp_path)
    with pytest.raises(FeedbackError):
        store.amend_feedback("run_1", 2, rating)


def test_amend_feedback_unknown_iteration(tmp_path):
    store = _store_with_eval(tmp_path)
    with pytest.raises(FeedbackError):
        store.amend_feedback("run_1", 9, 3)


@pytest.mark.parametrize("session_id", ["../etc", "a/b", "", "x y"])
def test_session_id_is_validated(tmp_path, session_id):
    with pytest.raises(FeedbackError):
        SessionStore(tmp_path).session_dir(session_id)


def test_iteration_paths(tmp_path):
    store = SessionStore(tmp_path)
    assert store.iteration_path("s", 3).name == "iteration_03.png"
    assert store.iteration_path("s", 12, "_eval.json").name == "iteration_12_eval.json"


def test_sanitize():
    assert sanitize("Hello World!") == "Hello_World_"
    assert sanitize("") == "untitled"
