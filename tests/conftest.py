import numpy as np
import pytest

from eocd.drift import ChangeDetector
from eocd.members import Archetype, EnsembleMember, Example, LearnerKind, StreamSchema, TrainableClassifier


# =====================================================================
# FAKE LEARNERS
# =====================================================================
# Streams built by make_examples carry the label in feature f0, so the
# learners below can be right or wrong on purpose without training.

class OracleLearner(TrainableClassifier):
    def __init__(self, n_classes=2):
        self.n_classes = n_classes
        self.seen = 0

    def train(self, x, y, weight=1.0):
        self.seen += 1

    def vote_distribution(self, x):
        votes = np.zeros(self.n_classes)
        votes[int(x['f0'])] = 1.0
        return votes

    def clone(self):
        return type(self)(self.n_classes)

    def reset_learning(self):
        self.seen = 0


class WrongLearner(OracleLearner):
    def vote_distribution(self, x):
        votes = np.zeros(self.n_classes)
        votes[(int(x['f0']) + 1) % self.n_classes] = 1.0
        return votes


class ConstantLearner(OracleLearner):
    def __init__(self, n_classes=2, label=0):
        super().__init__(n_classes)
        self.label = label

    def vote_distribution(self, x):
        votes = np.zeros(self.n_classes)
        votes[self.label] = 1.0
        return votes

    def clone(self):
        return ConstantLearner(self.n_classes, self.label)


class BrokenLearner(OracleLearner):
    def vote_distribution(self, x):
        raise ValueError("cannot vote")


# =====================================================================
# FAKE DETECTORS
# =====================================================================

class ScriptedDetector(ChangeDetector):
    """Reports a change on the listed input counts (1-based)."""

    def __init__(self, change_at=(), warning_at=()):
        self.change_at = set(change_at)
        self.warning_at = set(warning_at)
        self.count = 0

    def input(self, signal):
        self.count += 1

    def has_changed(self):
        return self.count in self.change_at

    def in_warning_zone(self):
        return self.count in self.warning_at

    def reset_learning(self):
        self.count = 0


# =====================================================================
# FIXTURES
# =====================================================================

def make_examples(n, n_classes=2, n_features=3, seed=0):
    rng = np.random.RandomState(seed)
    examples = []
    for _ in range(n):
        y = int(rng.randint(n_classes))
        x = np.concatenate([[y], rng.randn(n_features - 1)])
        examples.append(Example(x, y))
    return examples


def make_member(learner, kind=LearnerKind.DECISION_TREE, index=0, n_features=3,
                active=False, hidden=False, weight=1.0, excluded=frozenset()):
    archetype = Archetype(kind, learner, name=type(learner).__name__)
    member = EnsembleMember(archetype.instantiate(), archetype, index, n_features, excluded)
    member.active = active
    member.hidden = hidden
    member.weight = weight
    return member


@pytest.fixture
def schema():
    return StreamSchema(n_features=3, n_classes=2)


@pytest.fixture
def examples():
    return make_examples(10)


@pytest.fixture
def oracle_archetypes():
    return [Archetype(LearnerKind.DECISION_TREE, OracleLearner(), name="oracle"),
            Archetype(LearnerKind.BAYESIAN, WrongLearner(), name="wrong")]
