"""Tests for retention-time predictors."""

import logging

import pytest

from pyxcorrsearch.retention import (
    HYDROPHOBICITY_COEFFICIENTS,
    HydrophobicityRetentionPredictor,
    NullRetentionPredictor,
    RetentionPredictor,
    create_retention_predictor,
)


class FixedPredictor(RetentionPredictor):
    def __init__(self, times):
        self.times = times

    def predict(self, match):
        return self.times[match.sequence]


class TestCalcMaxDiff:
    """Tests for the largest signed difference of predicted times."""

    def test_fewer_than_two_matches(self, make_match):
        predictor = NullRetentionPredictor()
        assert predictor.calc_max_diff([]) == 0.0
        assert predictor.calc_max_diff([make_match()]) == 0.0

    def test_signed_largest_difference(self, make_match):
        predictor = FixedPredictor({'AAAK': 10.0, 'CCCK': 4.0, 'DDDK': 12.0})
        matches = [make_match(seq) for seq in ('AAAK', 'CCCK', 'DDDK')]
        # CCCK -> DDDK is the largest gap, positive in list order
        assert predictor.calc_max_diff(matches) == pytest.approx(8.0)
        assert predictor.calc_max_diff(matches[::-1]) == pytest.approx(-8.0)


class TestPredictors:
    """Tests for the concrete predictors and the factory."""

    def test_null_predicts_zero(self, make_match):
        assert NullRetentionPredictor().predict(make_match()) == 0.0

    def test_hydrophobicity_sum(self, make_match):
        predicted = HydrophobicityRetentionPredictor().predict(make_match('WFK'))
        expected = sum(HYDROPHOBICITY_COEFFICIENTS[aa] for aa in 'WFK')
        assert predicted == pytest.approx(expected)

    def test_factory(self):
        assert isinstance(create_retention_predictor('hydrophobicity'), HydrophobicityRetentionPredictor)
        assert isinstance(create_retention_predictor('none'), NullRetentionPredictor)

    def test_invalid_name_falls_back_to_null(self, caplog):
        with caplog.at_level(logging.WARNING):
            predictor = create_retention_predictor('krokhin-v9')
        assert isinstance(predictor, NullRetentionPredictor)
        assert 'Invalid retention time predictor' in caplog.text
