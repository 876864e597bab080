"""
Category affinity (TF-IDF cosine) tests.
"""

import math

import pytest

from runnergate.engine.affinity import AffinityScorer, normalize_tokens, term_frequencies


def test_tokens_are_lowercased_trimmed_and_split():
    assert normalize_tokens(["  Groceries , Pharmacy", "LAUNDRY", ""]) == [
        "groceries",
        "pharmacy",
        "laundry",
    ]


def test_term_frequency_is_count_over_length():
    tf = term_frequencies(["food", "food", "print", "laundry"])
    assert tf == {"food": 0.5, "print": 0.25, "laundry": 0.25}


def test_empty_history_scores_zero():
    scorer = AffinityScorer({"r1": [], "r2": ["groceries"]})
    assert scorer.score("r1", ["groceries"]) == 0.0


def test_empty_task_scores_zero():
    scorer = AffinityScorer({"r1": ["groceries"]})
    assert scorer.score("r1", []) == 0.0


def test_unknown_runner_scores_zero():
    scorer = AffinityScorer({"r1": ["groceries"]})
    assert scorer.score("ghost", ["groceries"]) == 0.0


def test_perfect_match_scores_one():
    scorer = AffinityScorer({"r1": [], "r2": ["groceries"]})
    assert scorer.score("r2", ["groceries"]) == pytest.approx(1.0)


def test_idf_rules():
    scorer = AffinityScorer(
        {
            "r1": ["food", "print"],
            "r2": ["food"],
            "r3": ["food", "laundry"],
        }
    )
    # Present in every document
    assert scorer.term_idf("food") == pytest.approx(0.1)
    # Present in one of three
    assert scorer.term_idf("print") == pytest.approx(math.log(3))
    # Present in none
    assert scorer.term_idf("pharmacy") == 0.0


def test_idf_is_relative_to_pool():
    """The same runner scores differently against a different pool."""
    alone = AffinityScorer({"r1": ["food", "print"]})
    crowded = AffinityScorer({"r1": ["food", "print"], "r2": ["food"], "r3": ["food"]})

    # Alone, every term has df == N and the same shared weight
    assert alone.score("r1", ["print"]) == pytest.approx(1 / math.sqrt(2))
    assert crowded.score("r1", ["print"]) != pytest.approx(alone.score("r1", ["print"]))


def test_scores_stay_in_unit_interval():
    scorer = AffinityScorer(
        {
            "r1": ["food", "food", "print"],
            "r2": ["laundry"],
            "r3": ["food", "laundry", "pharmacy"],
        }
    )
    for runner_id, score in scorer.score_all(["food", "laundry"]).items():
        assert 0.0 <= score <= 1.0, runner_id


def test_comma_separated_commission_categories():
    scorer = AffinityScorer({"r1": ["printing"], "r2": ["laundry, printing"]})
    assert scorer.score("r1", ["Printing, Laundry"]) > 0.0
    assert scorer.score("r2", ["Printing, Laundry"]) > scorer.score("r1", ["Printing, Laundry"])
