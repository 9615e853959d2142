"""Tests for tag normalization, merging and classification."""

import logging

from tagsync.taxonomy import (
    classify_tags,
    collation_key,
    dedupe_tags,
    merge_tags,
    normalize_tag,
    tag_key,
)
from tagsync.types import UNCATEGORIZED, TaxonomyRule


class TestNormalization:
    def test_collapses_separator_runs(self):
        assert normalize_tag("  machine__learning ") == "machine learning"
        assert normalize_tag("CI/CD") == "CI CD"
        assert normalize_tag("a \t _ / b") == "a b"

    def test_empty_values(self):
        assert normalize_tag(None) == ""
        assert normalize_tag("") == ""
        assert normalize_tag(" _/ ") == ""

    def test_style_variants_share_a_key(self):
        variants = ["Machine Learning", "machine_learning", "MACHINE/LEARNING", "machine  learning"]
        assert len({tag_key(v) for v in variants}) == 1

    def test_dedupe_keeps_first_spelling(self):
        assert dedupe_tags(["Machine_Learning", "machine learning", "Rust", "rust"]) == [
            "Machine Learning", "Rust",
        ]

    def test_dedupe_drops_empties(self):
        assert dedupe_tags(["", "  ", "Go"]) == ["Go"]

    def test_dedupe_sort_ignores_case_and_accents(self):
        assert dedupe_tags(["zeta", "Émigré", "alpha", "Beta"], sort=True) == [
            "alpha", "Beta", "Émigré", "zeta",
        ]

    def test_collation_is_total(self):
        tags = ["b", "B", "a"]
        assert sorted(tags, key=collation_key) == ["a", "B", "b"]


class TestMerge:
    def test_union_order_historical_own_proposed(self):
        result = merge_tags(["B", "C"], ["C", "D"], ["A", "B"])
        assert result.tags == ["A", "B", "C", "D"]

    def test_sorted_merge_is_same_set(self):
        result = merge_tags(["beta"], ["Alpha", "gamma"], ["delta"], sort=True)
        assert result.tags == ["Alpha", "beta", "delta", "gamma"]

    def test_added_excludes_known_tags(self):
        result = merge_tags([], ["X", "Y"], ["X"])
        assert result.added == ["Y"]

    def test_added_compares_normalized_keys(self):
        result = merge_tags(["web_dev"], ["Web Dev", "Machine Learning"], ["machine/learning"])
        assert result.tags == ["machine learning", "web dev"]
        assert result.added == []

    def test_first_seen_casing_wins(self):
        result = merge_tags(["python"], ["Python", "PYTHON"], [])
        assert result.tags == ["python"]

    def test_no_proposals_keeps_known_tags(self):
        result = merge_tags(["Own"], [], ["Hist"])
        assert result.tags == ["Hist", "Own"]
        assert result.added == []

    def test_classification_defaults_to_uncategorized(self):
        result = merge_tags([], ["Rust"])
        assert result.classification == {"Rust": UNCATEGORIZED}


class TestClassification:
    def test_includes_match_before_later_pattern(self):
        rules = {
            "framework": TaxonomyRule(includes=("Django",)),
            "language": TaxonomyRule(pattern="^(python|django)$"),
        }
        assert classify_tags(["django"], rules) == {"django": "framework"}

    def test_includes_checked_before_pattern_within_category(self):
        rules = {
            "language": TaxonomyRule(includes=("Rust",), pattern="^py"),
        }
        assert classify_tags(["rust", "Python"], rules) == {
            "rust": "language",
            "Python": "language",
        }

    def test_declared_order_decides(self):
        rules = {
            "first": TaxonomyRule(pattern="script"),
            "second": TaxonomyRule(pattern="type"),
        }
        assert classify_tags(["TypeScript"], rules) == {"TypeScript": "first"}

    def test_includes_compare_normalized(self):
        rules = {"ml": TaxonomyRule(includes=("machine_learning",))}
        assert classify_tags(["Machine Learning"], rules) == {"Machine Learning": "ml"}

    def test_pattern_is_case_insensitive_search(self):
        rules = {"db": TaxonomyRule(pattern="sql")}
        assert classify_tags(["PostgreSQL"], rules) == {"PostgreSQL": "db"}

    def test_unmatched_is_uncategorized(self):
        rules = {"db": TaxonomyRule(pattern="sql")}
        assert classify_tags(["Rust"], rules) == {"Rust": UNCATEGORIZED}

    def test_no_rules(self):
        assert classify_tags(["a", "b"], None) == {"a": UNCATEGORIZED, "b": UNCATEGORIZED}

    def test_invalid_pattern_disables_only_that_pattern(self, caplog):
        rules = {
            "broken": TaxonomyRule(includes=("Go",), pattern="(unclosed"),
            "db": TaxonomyRule(pattern="sql"),
        }
        with caplog.at_level(logging.WARNING, logger="tagsync"):
            result = classify_tags(["Go", "MySQL", "(unclosed"], rules)
        assert result == {"Go": "broken", "MySQL": "db", "(unclosed": UNCATEGORIZED}
        assert "invalid pattern" in caplog.text

    def test_merge_applies_taxonomy(self):
        rules = {"language": TaxonomyRule(includes=("Python",))}
        result = merge_tags(["python"], ["Docker"], taxonomy=rules)
        assert result.classification == {"python": "language", "Docker": UNCATEGORIZED}

    def test_rule_from_dict(self):
        rule = TaxonomyRule.from_dict({"includes": "Go", "pattern": ""})
        assert rule.includes == ("Go",)
        assert rule.pattern is None
