"""Tests for the four-factor confidence scorer."""

from __future__ import annotations

import dataclasses
import math
from datetime import datetime, timedelta

import pytest

from src.reconciliation.base import ConfidenceFactors, DataSource
from src.reconciliation.confidence_scorer import (
    CROSS_VALIDATION_NEUTRAL,
    ConfidenceScorer,
    deviation_score,
    freshness_score,
    frequency_score,
    mean_deviation_pct,
    reliability_score,
)
from src.reconciliation.tests.conftest import NOW, TEST_DATE, make_obs


class TestFactorFunctions:
    """Step tables for each factor band."""

    def test_reliability_rescales_priority(self) -> None:
        assert reliability_score(10) == 40.0
        assert reliability_score(5) == 20.0
        assert reliability_score(7) == pytest.approx(28.0)
        assert reliability_score(1) == 4.0

    @pytest.mark.parametrize(
        "hours, expected",
        [
            (0.0, 20.0),
            (0.5, 20.0),     # 30 minutes
            (1.0, 18.0),
            (2.0, 18.0),
            (24.0, 15.0),
            (48.0, 15.0),    # 2 days
            (72.0, 10.0),
            (96.0, 10.0),    # 4 days
            (168.0, 5.0),
            (240.0, 5.0),    # 10 days
            (720.0, 0.0),
            (2400.0, 0.0),   # 100 days
            (9600.0, 0.0),   # 400 days
        ],
    )
    def test_freshness_steps(self, hours: float, expected: float) -> None:
        assert freshness_score(hours) == expected

    @pytest.mark.parametrize(
        "count, expected",
        [(30, 20.0), (28, 20.0), (27, 15.0), (12, 15.0), (11, 10.0),
         (4, 10.0), (3, 5.0), (1, 5.0), (0, 0.0)],
    )
    def test_frequency_steps(self, count: int, expected: float) -> None:
        assert frequency_score(count) == expected

    @pytest.mark.parametrize(
        "pct, expected",
        [(0.0, 20.0), (1.9, 20.0), (2.0, 15.0), (4.9, 15.0), (5.0, 10.0),
         (9.99, 10.0), (10.0, 5.0), (19.9, 5.0), (20.0, 0.0), (math.inf, 0.0)],
    )
    def test_deviation_steps(self, pct: float, expected: float) -> None:
        assert deviation_score(pct) == expected

    def test_mean_deviation_pct(self) -> None:
        assert mean_deviation_pct([100.0, 100.0]) == 0.0
        assert mean_deviation_pct([98.0, 102.0]) == pytest.approx(2.0)

    def test_mean_deviation_zero_mean(self) -> None:
        assert mean_deviation_pct([0.0, 0.0]) == 0.0
        assert mean_deviation_pct([-1.0, 0.0, 1.0]) == math.inf


class TestConfidenceFactors:
    """The confidence total is the capped factor sum."""

    def test_total_is_sum(self) -> None:
        factors = ConfidenceFactors(40.0, 18.0, 5.0, 10.0)
        assert factors.total == 73.0

    def test_total_capped_at_100(self) -> None:
        factors = ConfidenceFactors(40.0, 20.0, 20.0, 30.0)
        assert factors.total == 100.0

    def test_to_dict_keys(self) -> None:
        assert set(ConfidenceFactors(0, 0, 0, 0).to_dict()) == {
            "source_reliability",
            "data_freshness",
            "measurement_frequency",
            "cross_validation",
        }


class TestScoreObservation:
    """Scoring single readings against their context."""

    def test_lone_fresh_reading(self, scorer: ConfidenceScorer) -> None:
        obs = make_obs(DataSource.WHOOP, 55.0, "hrv", hours_ago=0.5)
        scored = scorer.score(obs, [obs])
        assert scored.factors == ConfidenceFactors(
            source_reliability=40.0,
            data_freshness=20.0,
            measurement_frequency=5.0,
            cross_validation=CROSS_VALIDATION_NEUTRAL,
        )
        assert scored.confidence == 75.0
        assert scored.observation is obs

    def test_confidence_equals_factor_sum(self, scorer: ConfidenceScorer) -> None:
        a = make_obs(DataSource.INBODY, 80.2, hours_ago=4)
        b = make_obs(DataSource.WITHINGS, 80.9, hours_ago=5)
        for obs in (a, b):
            scored = scorer.score(obs, [a, b])
            f = scored.factors
            assert scored.confidence == pytest.approx(
                f.source_reliability + f.data_freshness
                + f.measurement_frequency + f.cross_validation
            )
            assert 0.0 <= scored.confidence <= 100.0

    def test_missing_observed_at_uses_midnight(self, scorer: ConfidenceScorer) -> None:
        # NOW is noon on TEST_DATE, so the reading is 12 hours old
        obs = make_obs(DataSource.WITHINGS, 80.0)
        assert scorer.factors(obs, [obs]).data_freshness == 18.0

    def test_naive_observed_at_treated_as_utc(self, scorer: ConfidenceScorer) -> None:
        obs = make_obs(DataSource.WITHINGS, 80.0)
        naive = dataclasses.replace(obs, observed_at=datetime(2026, 2, 23, 11, 30))
        assert scorer.factors(naive, [naive]).data_freshness == 20.0

    def test_future_reading_counts_as_fresh(self, scorer: ConfidenceScorer) -> None:
        obs = make_obs(DataSource.WITHINGS, 80.0, hours_ago=-3)
        assert scorer.factors(obs, [obs]).data_freshness == 20.0

    def test_explicit_now_overrides_clock(self, scorer: ConfidenceScorer) -> None:
        obs = make_obs(DataSource.WITHINGS, 80.0, hours_ago=0)
        later = NOW + timedelta(days=10)
        assert scorer.factors(obs, [obs], now=later).data_freshness == 5.0

    def test_unranked_source_gets_default_reliability(self, scorer: ConfidenceScorer) -> None:
        obs = make_obs(DataSource.OURA, 80.0, "weight", hours_ago=1)
        assert scorer.factors(obs, [obs]).source_reliability == 20.0


class TestFrequencyFactor:
    """Same-source readings within the trailing 30-day window."""

    def test_daily_readings_score_max(self, scorer: ConfidenceScorer) -> None:
        history = [
            make_obs(DataSource.WHOOP, 50.0 + i, "hrv", TEST_DATE - timedelta(days=i))
            for i in range(28)
        ]
        assert scorer.factors(history[0], history).measurement_frequency == 20.0

    def test_window_excludes_day_thirty(self, scorer: ConfidenceScorer) -> None:
        today = make_obs(DataSource.WHOOP, 50.0, "hrv")
        old = make_obs(DataSource.WHOOP, 51.0, "hrv", TEST_DATE - timedelta(days=30))
        edge = make_obs(DataSource.WHOOP, 52.0, "hrv", TEST_DATE - timedelta(days=29))
        # today + edge = 2 readings -> sparse
        assert scorer.factors(today, [today, old, edge]).measurement_frequency == 5.0

    def test_later_readings_not_counted(self, scorer: ConfidenceScorer) -> None:
        first = make_obs(DataSource.WHOOP, 50.0, "hrv", TEST_DATE - timedelta(days=10))
        later = [
            make_obs(DataSource.WHOOP, 50.0, "hrv", TEST_DATE - timedelta(days=i))
            for i in range(10)
        ]
        assert scorer.factors(first, [first, *later]).measurement_frequency == 5.0

    def test_other_sources_and_metrics_ignored(self, scorer: ConfidenceScorer) -> None:
        target = make_obs(DataSource.WHOOP, 50.0, "hrv")
        noise = [
            make_obs(DataSource.OURA, 50.0, "hrv", TEST_DATE - timedelta(days=i))
            for i in range(1, 10)
        ] + [
            make_obs(DataSource.WHOOP, 7.0, "sleep_duration", TEST_DATE - timedelta(days=i))
            for i in range(1, 10)
        ]
        assert scorer.factors(target, [target, *noise]).measurement_frequency == 5.0

    def test_weekly_cadence(self, scorer: ConfidenceScorer) -> None:
        history = [
            make_obs(DataSource.INBODY, 80.0, "weight", TEST_DATE - timedelta(days=7 * i))
            for i in range(4)
        ]
        assert scorer.factors(history[0], history).measurement_frequency == 10.0


class TestCrossValidationFactor:
    """Agreement with other sources reporting the same metric the same day."""

    def test_no_other_source_is_neutral(self, scorer: ConfidenceScorer) -> None:
        obs = make_obs(DataSource.INBODY, 80.0)
        same_source = make_obs(DataSource.INBODY, 95.0)
        other_day = make_obs(DataSource.WITHINGS, 60.0, day=TEST_DATE - timedelta(days=1))
        factors = scorer.factors(obs, [obs, same_source, other_day])
        assert factors.cross_validation == CROSS_VALIDATION_NEUTRAL

    def test_close_agreement(self, scorer: ConfidenceScorer) -> None:
        a = make_obs(DataSource.INBODY, 70.0)
        b = make_obs(DataSource.WITHINGS, 70.4)
        assert scorer.factors(a, [a, b]).cross_validation == 20.0

    def test_moderate_disagreement(self, scorer: ConfidenceScorer) -> None:
        # mean 105, average deviation 5 -> 4.76%
        a = make_obs(DataSource.INBODY, 100.0)
        b = make_obs(DataSource.WITHINGS, 110.0)
        assert scorer.factors(a, [a, b]).cross_validation == 15.0

    def test_wild_disagreement(self, scorer: ConfidenceScorer) -> None:
        a = make_obs(DataSource.INBODY, 50.0)
        b = make_obs(DataSource.WITHINGS, 100.0)
        assert scorer.factors(a, [a, b]).cross_validation == 0.0

    def test_other_metric_ignored(self, scorer: ConfidenceScorer) -> None:
        a = make_obs(DataSource.INBODY, 80.0, "weight")
        b = make_obs(DataSource.WITHINGS, 25.0, "body_fat_pct")
        assert scorer.factors(a, [a, b]).cross_validation == CROSS_VALIDATION_NEUTRAL


class TestCalculateBatch:
    """Batch scoring over a mixed set of readings."""

    def test_preserves_order_and_identity(
        self, scorer: ConfidenceScorer, day_of_readings: list
    ) -> None:
        scored = scorer.calculate_batch(day_of_readings)
        assert [s.observation for s in scored] == day_of_readings
        for s, obs in zip(scored, day_of_readings):
            assert s.observation is obs

    def test_all_within_bands(self, scorer: ConfidenceScorer, day_of_readings: list) -> None:
        for s in scorer.calculate_batch(day_of_readings):
            assert 0.0 <= s.factors.source_reliability <= 40.0
            assert 0.0 <= s.factors.data_freshness <= 20.0
            assert 0.0 <= s.factors.measurement_frequency <= 20.0
            assert 0.0 <= s.factors.cross_validation <= 20.0
            assert 0.0 <= s.confidence <= 100.0

    def test_cross_validation_within_metric_only(
        self, scorer: ConfidenceScorer, day_of_readings: list
    ) -> None:
        scored = scorer.calculate_batch(day_of_readings)
        sleep = next(s for s in scored if s.metric_name == "sleep_duration")
        assert sleep.factors.cross_validation == CROSS_VALIDATION_NEUTRAL

    def test_batch_matches_individual_scoring(
        self, scorer: ConfidenceScorer, day_of_readings: list
    ) -> None:
        scored = scorer.calculate_batch(day_of_readings)
        weights = [o for o in day_of_readings if o.metric_name == "weight"]
        assert scored[0] == scorer.score(day_of_readings[0], weights)

    def test_empty_batch(self, scorer: ConfidenceScorer) -> None:
        assert scorer.calculate_batch([]) == []

    def test_deterministic(self, scorer: ConfidenceScorer, day_of_readings: list) -> None:
        assert scorer.calculate_batch(day_of_readings) == scorer.calculate_batch(day_of_readings)
