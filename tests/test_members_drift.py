import numpy as np
import pytest
from river import drift

from conftest import ScriptedDetector, WrongLearner, make_member
from eocd.drift import DriftLevel, RiverChangeDetector
from eocd.members import (Example, LearnerKind, RiverLearner, StreamSchema, default_archetypes,
                          draw_excluded_attributes, to_feature_dict)


def test_example_weight_defaults_to_one():
    assert Example(np.zeros(2), 1).weight == 1.0


def test_schema_validation():
    with pytest.raises(ValueError):
        StreamSchema(0, 2)
    with pytest.raises(ValueError):
        StreamSchema(3, 1)


def test_feature_dict_projection():
    assert to_feature_dict(np.array([1.0, 2.0, 3.0]), kept=(0, 2)) == {'f0': 1.0, 'f2': 3.0}


def test_excluded_attributes_never_cover_everything():
    rng = np.random.RandomState(0)
    for _ in range(200):
        excluded = draw_excluded_attributes(4, rng)
        assert len(excluded) < 4
        assert excluded <= {0, 1, 2, 3}


def test_member_counts_mistakes_before_training():
    member = make_member(WrongLearner(), active=True)
    member.train(Example(np.array([1.0, 0.0, 0.0]), 1))
    member.train(Example(np.array([0.0, 0.0, 0.0]), 0))
    assert member.trained == 2
    assert member.missed == 2
    assert member.accuracy() == 0.0


def test_default_archetypes_cover_every_kind():
    archetypes = default_archetypes(n_classes=3)
    kinds = [a.kind for a in archetypes]
    assert kinds.count(LearnerKind.DECISION_TREE) == 3
    assert kinds.count(LearnerKind.BAYESIAN) == 3
    assert kinds.count(LearnerKind.LINEAR) == 3


def test_river_learner_votes_and_resets():
    learner = default_archetypes(n_classes=2)[3].instantiate()
    assert isinstance(learner, RiverLearner)
    np.testing.assert_array_equal(learner.vote_distribution({'f0': 0.0}), [0.0, 0.0])

    rng = np.random.RandomState(0)
    for _ in range(50):
        y = int(rng.randint(2))
        learner.train({'f0': y * 5.0 + rng.randn() * 0.1}, y)
    votes = learner.vote_distribution({'f0': 5.0})
    assert votes.shape == (2,)
    assert np.argmax(votes) == 1

    learner.reset_learning()
    np.testing.assert_array_equal(learner.vote_distribution({'f0': 5.0}), [0.0, 0.0])


class WeightedModel:
    def __init__(self):
        self.seen = []

    def clone(self):
        return type(self)()

    def learn_one(self, x, y, w=1.0):
        self.seen.append((y, w))

    def predict_proba_one(self, x):
        return {}


class UnweightedModel(WeightedModel):
    def learn_one(self, x, y):
        self.seen.append((y, None))


def test_river_learner_passes_instance_weight():
    learner = RiverLearner(WeightedModel())
    learner.train({'f0': 1.0}, 1, weight=2.5)
    assert learner.model.seen == [(1, 2.5)]

    member = make_member(RiverLearner(WeightedModel()), active=True)
    member.train(Example(np.array([1.0, 0.0, 0.0]), 1, weight=0.25))
    assert member.learner.model.seen == [(1, 0.25)]


def test_river_learner_without_weight_support():
    learner = RiverLearner(UnweightedModel())
    learner.train({'f0': 1.0}, 0, weight=2.5)
    assert learner.model.seen == [(0, None)]


def test_clone_does_not_share_state():
    learner = default_archetypes(n_classes=2)[3].instantiate()
    learner.train({'f0': 1.0}, 1)
    clone = learner.clone()
    np.testing.assert_array_equal(clone.vote_distribution({'f0': 1.0}), [0.0, 0.0])


# =====================================================================
# DRIFT
# =====================================================================

def test_scripted_levels():
    detector = ScriptedDetector(change_at={2}, warning_at={1})
    detector.input(1.0)
    assert detector.level() is DriftLevel.WARNING
    detector.input(1.0)
    assert detector.level() is DriftLevel.OUT_OF_CONTROL
    detector.input(0.0)
    assert detector.level() is DriftLevel.IN_CONTROL


def test_river_detector_signals_error_rate_jump():
    detector = RiverChangeDetector()
    for _ in range(500):
        detector.input(0.0)
    assert detector.level() is DriftLevel.IN_CONTROL

    levels = []
    for _ in range(200):
        detector.input(1.0)
        levels.append(detector.level())
    assert DriftLevel.OUT_OF_CONTROL in levels


def test_river_detector_reset():
    detector = RiverChangeDetector(drift.ADWIN())
    for _ in range(100):
        detector.input(1.0)
    detector.reset_learning()
    assert not detector.has_changed()
    assert not detector.in_warning_zone()
    assert "ADWIN" in repr(detector)
