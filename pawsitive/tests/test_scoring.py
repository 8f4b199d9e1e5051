"""Tests for the safety scorer and stored-product analysis."""

import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from pawsitive import db
from pawsitive.scoring import (
    analyze_candidate,
    analyze_product,
    derive_clarity,
    display_clarity,
    is_analysis_stale,
    is_safety_concern,
    paw_rating,
    recall_penalty,
    review_penalty,
    score,
)


def _review(rating=5, content="My dog loves it"):
    return {"rating": rating, "content": content}


class TestScore:
    """Tests for score()."""

    def test_urgent_recall_from_default_baseline(self):
        """One urgent recall: 50 - 30 - 10 = 10."""
        recalls = [{"severity": "urgent", "is_active": True}]
        result = score({}, recalls, [], [])
        assert result.cosmic_score == 10
        assert result.cosmic_clarity == "cursed"

    def test_one_in_four_concerning_reviews(self):
        """Baseline 90 with 1 of 4 reviews flagged: 90 - 10 = 80."""
        reviews = [_review(), _review(), _review(4), _review(1, "Awful")]
        result = score({"baseline_score": 90}, [], reviews, [])
        assert result.cosmic_score == 80
        assert result.cosmic_clarity == "blessed"

    def test_baseline_defaults_to_50(self):
        result = score({"baseline_score": None})
        assert result.cosmic_score == 50
        assert result.cosmic_clarity == "questionable"

    def test_clamped_at_zero(self):
        recalls = [{"severity": "urgent", "is_active": True}] * 3
        result = score({"baseline_score": 20}, recalls, [_review(1)], ["BHA", "BHT"])
        assert result.cosmic_score == 0

    def test_clamped_at_hundred(self):
        assert score({"baseline_score": 140}).cosmic_score == 100

    def test_blacklist_penalty_per_distinct_match(self):
        result = score({"baseline_score": 100}, [], [], ["BHA", "bha", "BHT"])
        assert result.cosmic_score == 50
        assert result.cosmic_clarity == "cursed"

    def test_inactive_recalls_ignored(self):
        recalls = [{"severity": "urgent", "is_active": False}]
        result = score({"baseline_score": 90}, recalls, [], [])
        assert result.cosmic_score == 90
        assert result.cosmic_clarity == "blessed"

    def test_partial_inputs_apply_no_penalty(self):
        """None means the input could not be fetched; never an error."""
        result = score({"baseline_score": 85}, None, None, None)
        assert result.cosmic_score == 85
        assert result.cosmic_clarity == "blessed"

    def test_missing_product(self):
        assert score(None).cosmic_score == 50


class TestPenalties:

    def test_recall_penalty_weights(self):
        recalls = [
            {"severity": "urgent", "is_active": True},
            {"severity": "moderate", "is_active": True},
            {"severity": "low", "is_active": True},
        ]
        assert recall_penalty(recalls) == 30 + 20 + 0 + 3 * 10

    def test_recall_penalty_empty(self):
        assert recall_penalty([]) == 0
        assert recall_penalty(None) == 0

    def test_review_penalty_empty(self):
        assert review_penalty([]) == 0

    @pytest.mark.parametrize("content", [
        "My cat got SICK after two days",
        "Allergic reaction, very itchy",
        "Caused vomiting",
        "Terrible diarrhea",
    ])
    def test_keywords_flag_concern(self, content):
        assert is_safety_concern(_review(5, content))

    def test_low_rating_flags_concern(self):
        assert is_safety_concern(_review(2, "Fine I guess"))
        assert not is_safety_concern(_review(3, "Fine I guess"))

    def test_keywords_in_title_only_are_ignored(self):
        review = {"rating": 5, "title": "Not sick of it yet", "content": "Third bag this year"}
        assert not is_safety_concern(review)


class TestClarity:
    """Tests for derive_clarity and display_clarity."""

    def test_blacklist_hit_curses_high_score(self):
        assert derive_clarity(95, ["BHA"], []) == "cursed"

    def test_active_urgent_recall_curses(self):
        assert derive_clarity(85, [], [{"severity": "urgent", "is_active": True}]) == "cursed"

    def test_any_active_recall_blocks_blessed(self):
        assert derive_clarity(85, [], [{"severity": "low", "is_active": True}]) == "questionable"

    def test_below_threshold_curses(self):
        assert derive_clarity(49, [], []) == "cursed"

    def test_override_wins_for_display(self):
        assert display_clarity({"cosmic_clarity": "cursed", "clarity_override": "blessed"}) == "blessed"
        assert display_clarity({"cosmic_clarity": "cursed", "clarity_override": None}) == "cursed"

    def test_paw_rating_bounds(self):
        assert paw_rating(0) == 1
        assert paw_rating(100) == 5
        assert paw_rating(60) == 3


class TestStaleness:

    def test_never_analyzed_is_stale(self):
        assert is_analysis_stale({"last_analyzed": None})

    def test_recent_analysis_is_fresh(self):
        now = datetime(2024, 5, 10, tzinfo=timezone.utc)
        product = {"last_analyzed": (now - timedelta(days=2)).isoformat()}
        assert not is_analysis_stale(product, timedelta(days=7), now=now)

    def test_old_analysis_is_stale(self):
        now = datetime(2024, 5, 10, tzinfo=timezone.utc)
        product = {"last_analyzed": "2024-04-01 08:00:00"}
        assert is_analysis_stale(product, timedelta(days=7), now=now)


class TestAnalyzeProduct:
    """Tests for analyze_product against a real store."""

    def test_persists_score_and_clears_override(self, db_path, blacklist, make_product):
        product = make_product(
            ingredients="Chicken, corn gluten meal, animal fat preserved with BHA, salt, vitamins",
            baseline_score=90,
        )
        db.set_clarity_override(db_path, product["id"], "blessed")

        updated, analysis = analyze_product(db_path, product["id"])

        assert analysis["suspicious_ingredients"] == ["BHA"]
        assert analysis["cosmic_score"] == 65
        assert analysis["cosmic_clarity"] == "cursed"
        assert analysis["transparency_level"] == "good"
        assert updated["cosmic_score"] == 65
        assert updated["is_blacklisted"] is True
        assert updated["clarity_override"] is None
        assert updated["last_analyzed"] is not None

    def test_uses_recalls_and_reviews(self, db_path, user_id, make_product):
        product = make_product(baseline_score=90)
        db.create_recall(db_path, {
            "product_id": product["id"],
            "recall_number": "FDA-2024-001",
            "reason": "Salmonella",
            "severity": "moderate",
            "recall_date": "2024-03-01",
        })
        db.create_review(db_path, product["id"], user_id, {"rating": 5, "content": "Great"})
        db.create_review(db_path, product["id"], user_id, {"rating": 4, "content": "Dog got sick"})

        _, analysis = analyze_product(db_path, product["id"])

        # 90 - (20 + 10) - 0.5 * 40
        assert analysis["cosmic_score"] == 40
        assert analysis["cosmic_clarity"] == "cursed"

    def test_unavailable_input_degrades(self, db_path, make_product):
        product = make_product(baseline_score=90)
        with patch("pawsitive.scoring.db.get_product_reviews", side_effect=sqlite3.OperationalError("locked")):
            _, analysis = analyze_product(db_path, product["id"])
        assert analysis["cosmic_score"] == 90

    def test_missing_product(self, db_path):
        assert analyze_product(db_path, 999) is None


def test_analyze_candidate_is_not_persisted(db_path, blacklist):
    candidate = {"name": "Peanut Treats", "ingredients": "Peanut butter, xylitol, oat flour"}
    analysis = analyze_candidate(candidate, blacklist)

    assert analysis["suspicious_ingredients"] == ["Xylitol"]
    assert analysis["cosmic_score"] == 25
    assert analysis["cosmic_clarity"] == "cursed"
    assert db.get_products(db_path) == []
