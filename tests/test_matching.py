"""
Unit tests for fuzzy search helpers.
"""
from core.matching import calculate_similarity, fuzzy_filter, match_score, normalize_string


def test_normalize_string():
    assert normalize_string("  Globex   CORP ") == "globex corp"
    assert normalize_string(None) == ""
    assert normalize_string(42) == ""


def test_similarity_bounds():
    assert calculate_similarity("Acme", "acme") == 1.0
    assert calculate_similarity("", "acme") == 0.0
    assert 0.0 < calculate_similarity("acme", "acne") < 1.0


def test_substring_scores_full_match():
    assert match_score("rent", "Office rent March") == 1.0


def test_typo_matches_single_word():
    assert match_score("globx", "Globex Corporation") > 0.8


def test_blank_inputs_score_zero():
    assert match_score("", "anything") == 0.0
    assert match_score("rent", None) == 0.0


def test_fuzzy_filter_orders_by_score():
    records = [
        {"client_name": "Initech", "title": "Consulting"},
        {"client_name": "Globe Trotters", "title": "Travel"},
        {"client_name": "Globex", "title": "Website"},
    ]
    result = fuzzy_filter(records, "globex", ["client_name", "title"])
    assert [r["client_name"] for r in result][0] == "Globex"
    assert "Initech" not in [r["client_name"] for r in result]


def test_fuzzy_filter_blank_query_keeps_all():
    records = [{"name": "a"}, {"name": "b"}]
    assert fuzzy_filter(records, "  ", ["name"]) == records


def test_fuzzy_filter_custom_threshold():
    records = [{"name": "Acme"}]
    assert fuzzy_filter(records, "acne", ["name"], threshold=0.99) == []
    assert fuzzy_filter(records, "acne", ["name"], threshold=0.5) == records
