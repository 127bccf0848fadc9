"""Tests for label normalization and the alias learning window."""

import pytest

from utils.label_normalizer import has_signal, label_similarity, normalize_label, worth_learning


class TestNormalizeLabel:
    def test_lowercases_and_strips_punctuation(self):
        assert normalize_label("  Maggi-Noodles (70g)! ") == "magginoodles70g"

    def test_strips_diacritics(self):
        assert normalize_label("Crème Brûlée") == "cremebrulee"

    def test_none_and_empty(self):
        assert normalize_label(None) == ""
        assert normalize_label("   ") == ""

    def test_spacing_variants_share_a_key(self):
        assert normalize_label("paneer biryani") == normalize_label("Paneer-Biryani")


class TestHasSignal:
    @pytest.mark.parametrize("key,expected", [("", False), ("ab", False), ("abc", True), ("noodles", True)])
    def test_minimum_length(self, key, expected):
        assert has_signal(key) is expected


class TestLabelSimilarity:
    def test_identical_after_normalization(self):
        assert label_similarity("Noodles", "noodles!") == 1.0

    def test_empty_side_scores_zero(self):
        assert label_similarity("", "noodles") == 0.0

    def test_symmetric_and_bounded(self):
        a, b = "paneer biriyani", "Paneer Biryani"
        assert label_similarity(a, b) == label_similarity(b, a)
        assert 0.5 < label_similarity(a, b) < 1.0

    def test_unrelated_labels_score_low(self):
        assert label_similarity("noodles", "toothpaste") < 0.5


class TestWorthLearning:
    @pytest.mark.parametrize(
        "score,expected",
        [(0.49, False), (0.5, True), (0.75, True), (0.979, True), (0.98, False), (1.0, False)],
    )
    def test_window(self, score, expected):
        assert worth_learning(score) is expected
