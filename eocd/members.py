"""
Ensemble members and the base-learner templates they are cloned from.

A member wraps one online classifier behind a small capability
(train / vote distribution / clone / reset) and adds the ensemble
bookkeeping: voting weight, active / hidden flags, the archetype it was
cloned from and the attributes it never sees.

Base learners are river models. Features reach them as {'f0': .., 'f1': ..}
dicts, with the member's excluded attributes projected away.
"""

import inspect
from abc import ABC, abstractmethod
from collections import namedtuple
from enum import Enum

import numpy as np
from river import linear_model, naive_bayes, optim, tree

DEFAULT_WEIGHT = 1.0


Example = namedtuple("Example", ["x", "y", "weight"], defaults=(1.0,))
Example.__doc__ = "One labeled stream example: feature vector x, class index y, sample weight."


class StreamSchema:
    """Fixed attribute schema of a stream: number of features and classes."""

    def __init__(self, n_features, n_classes):
        if n_features < 1:
            raise ValueError("a stream needs at least one feature")
        if n_classes < 2:
            raise ValueError("a stream needs at least two classes")
        self.n_features = n_features
        self.n_classes = n_classes

    def __repr__(self):
        return f"StreamSchema(n_features={self.n_features}, n_classes={self.n_classes})"


def to_feature_dict(x, kept=None):
    """Project a feature vector onto river's dict format."""
    if kept is None:
        kept = range(len(x))
    return {f'f{j}': float(x[j]) for j in kept}


# =====================================================================
# TRAINABLE CLASSIFIER CAPABILITY
# =====================================================================

class TrainableClassifier(ABC):
    """What the ensemble needs from a base learner."""

    @abstractmethod
    def train(self, x, y, weight=1.0):
        """Learn from one example (x is a feature dict)."""

    @abstractmethod
    def vote_distribution(self, x):
        """Unnormalized class scores, one entry per class index."""

    @abstractmethod
    def clone(self):
        """Fresh copy of the same learner configuration."""

    @abstractmethod
    def reset_learning(self):
        """Forget everything learned so far."""


class RiverLearner(TrainableClassifier):
    """TrainableClassifier over any river classifier with predict_proba_one."""

    def __init__(self, model, n_classes=2):
        self.template = model
        self.model = model.clone()
        self.n_classes = n_classes
        # not every river classifier takes an instance weight
        self.weighted = "w" in inspect.signature(self.model.learn_one).parameters

    def train(self, x, y, weight=1.0):
        if self.weighted:
            self.model.learn_one(x, int(y), w=weight)
        else:
            self.model.learn_one(x, int(y))

    def vote_distribution(self, x):
        votes = np.zeros(self.n_classes, dtype=np.float64)
        proba = self.model.predict_proba_one(x)
        if not proba:
            return votes
        for label, p in proba.items():
            if 0 <= int(label) < self.n_classes:
                votes[int(label)] = p
        return votes

    def clone(self):
        return RiverLearner(self.template, self.n_classes)

    def reset_learning(self):
        self.model = self.template.clone()

    def __repr__(self):
        return f"RiverLearner({self.template.__class__.__name__})"


# =====================================================================
# ARCHETYPES
# =====================================================================

class LearnerKind(Enum):
    """Closed set of base-learner families."""
    DECISION_TREE = "T"
    BAYESIAN = "B"
    LINEAR = "L"


class Archetype:
    """
    A base-learner template tagged with its family.

    Members are created by cloning the template and resetting the clone.
    """

    def __init__(self, kind, template, name=None):
        self.kind = kind
        self.template = template
        self.name = name or kind.name.lower()

    def instantiate(self):
        learner = self.template.clone()
        learner.reset_learning()
        return learner

    def __repr__(self):
        return f"Archetype({self.kind.name}, {self.name})"


def default_archetypes(n_classes=2):
    """Three trees, three naive Bayes, three linear models at decreasing learning rates."""
    archetypes = []
    for leaf in ("mc", "nb", "nba"):
        model = tree.HoeffdingTreeClassifier(grace_period=200, leaf_prediction=leaf)
        archetypes.append(Archetype(LearnerKind.DECISION_TREE, RiverLearner(model, n_classes),
                                    name=f"hoeffding-{leaf}"))
    for i in range(3):
        archetypes.append(Archetype(LearnerKind.BAYESIAN, RiverLearner(naive_bayes.GaussianNB(), n_classes),
                                    name=f"gaussian-nb-{i}"))
    for lr in (0.1, 0.01, 0.001):
        model = linear_model.SoftmaxRegression(optimizer=optim.SGD(lr))
        archetypes.append(Archetype(LearnerKind.LINEAR, RiverLearner(model, n_classes),
                                    name=f"softmax-sgd-{lr}"))
    return archetypes


# =====================================================================
# ENSEMBLE MEMBER
# =====================================================================

def draw_excluded_attributes(n_features, rng):
    """
    Random subset of attribute indices to hide from a member.

    A single exclusion probability is drawn first, then every attribute is
    excluded with that probability. At least one attribute is always kept.
    """
    percent = rng.rand()
    excluded = {j for j in range(n_features) if rng.rand() < percent}
    if len(excluded) == n_features:
        excluded.discard(int(rng.randint(n_features)))
    return frozenset(excluded)


class EnsembleMember:
    """One ensemble slot: a learner plus weight, flags and attribute filter."""

    def __init__(self, learner, archetype, archetype_index, n_features, excluded_attributes=frozenset()):
        self.learner = learner
        self.archetype = archetype
        self.archetype_index = archetype_index
        self.excluded_attributes = frozenset(excluded_attributes)
        self.kept_attributes = tuple(j for j in range(n_features) if j not in self.excluded_attributes)

        self.weight = DEFAULT_WEIGHT
        self.active = False
        self.hidden = False

        self.trained = 0
        self.missed = 0

    @property
    def kind(self):
        return self.archetype.kind

    def _features(self, example):
        return to_feature_dict(example.x, self.kept_attributes)

    def vote_distribution(self, example):
        return np.asarray(self.learner.vote_distribution(self._features(example)), dtype=np.float64)

    def predict(self, example):
        return int(np.argmax(self.vote_distribution(example)))

    def correctly_classifies(self, example):
        return self.predict(example) == int(example.y)

    def train(self, example):
        self.trained += 1
        if not self.correctly_classifies(example):
            self.missed += 1
        self.learner.train(self._features(example), int(example.y), example.weight)

    def accuracy(self):
        if self.trained == 0:
            return 1.0
        return (self.trained - self.missed) / self.trained

    def punish(self, beta, sample_weight=1.0):
        """Multiplicative weight decay after a mistake."""
        self.weight = self.weight * beta * sample_weight
        return self.weight

    def __repr__(self):
        return (f"({self.kind.value},{self.archetype_index},"
                f"{sorted(self.excluded_attributes)},{self.weight:.6f})")
