"""
Heterogeneous Dynamic Weighted Majority (HDWM) baseline.

Dynamic Weighted Majority (Kolter & Maloof) drawing every new expert from
the same heterogeneous archetype pool as the optimized ensemble, so both
can be compared on equal base learners.
"""

import logging

import numpy as np

from .members import default_archetypes, to_feature_dict

logger = logging.getLogger(__name__)


class HeterogeneousDynamicWeightedMajority:
    """
    Parameters:
    -----------
    archetypes : list of Archetype, optional
    period : int, default=50
        Instances between weight decay, pruning and expert creation.
    beta : float, default=0.5
        Factor wrong experts are punished by at the period boundary.
    theta : float, default=0.01
        Experts whose scaled weight falls below theta are removed.
    max_experts : int, optional
        Pool size cap; the weakest expert makes room for a new one.
    """

    def __init__(self, archetypes=None, period=50, beta=0.5, theta=0.01, max_experts=None, seed=None):
        if period < 1:
            raise ValueError("period must be at least 1")
        if not 0.0 <= beta <= 1.0 or not 0.0 <= theta <= 1.0:
            raise ValueError("beta and theta must lie in [0, 1]")
        if max_experts is not None and max_experts < 2:
            raise ValueError("max_experts must be at least 2")

        self.archetype_templates = list(archetypes) if archetypes is not None else None
        self.period = period
        self.beta = beta
        self.theta = theta
        self.max_experts = max_experts
        self.rng = np.random.RandomState(seed)

        self.schema = None
        self.archetypes = None
        self.experts = []
        self.weights = []
        self.epochs = 0

    def set_model_context(self, schema):
        self.schema = schema
        if self.archetype_templates is not None:
            self.archetypes = self.archetype_templates
        else:
            self.archetypes = default_archetypes(schema.n_classes)
        self.reset_learning()

    def create_expert(self):
        return self.archetypes[self.rng.randint(len(self.archetypes))].instantiate()

    def reset_learning(self):
        self.experts = [self.create_expert()]
        self.weights = [1.0]
        self.epochs = 0

    def _expert_predictions(self, features):
        return [int(np.argmax(expert.vote_distribution(features))) for expert in self.experts]

    def predict_proba_one(self, x):
        features = to_feature_dict(x)
        votes = np.zeros(self.schema.n_classes, dtype=np.float64)
        for y_hat, w in zip(self._expert_predictions(features), self.weights):
            votes[y_hat] += w
        total = votes.sum()
        return votes / total if total > 0.0 else votes

    def predict_one(self, x):
        return int(np.argmax(self.predict_proba_one(x)))

    def learn_one(self, x, y, weight=1.0):
        self.epochs += 1
        y = int(y)
        features = to_feature_dict(x)
        boundary = self.epochs % self.period == 0

        votes = np.zeros(self.schema.n_classes, dtype=np.float64)
        for i, y_hat in enumerate(self._expert_predictions(features)):
            if y_hat != y and boundary:
                self.weights[i] *= self.beta
            votes[y_hat] += self.weights[i]
        y_hat = int(np.argmax(votes))

        if boundary:
            max_weight = max(self.weights)
            if max_weight > 0.0:
                self.weights = [w / max_weight for w in self.weights]
            kept = [i for i, w in enumerate(self.weights) if w >= self.theta]
            self.experts = [self.experts[i] for i in kept]
            self.weights = [self.weights[i] for i in kept]

            if y_hat != y:
                if self.max_experts is not None and len(self.experts) >= self.max_experts:
                    weakest = int(np.argmin(self.weights))
                    del self.experts[weakest]
                    del self.weights[weakest]
                self.experts.append(self.create_expert())
                self.weights.append(1.0)

        for expert in self.experts:
            expert.train(features, y, weight)

    def partial_fit(self, X, y, sample_weight=None):
        X = np.atleast_2d(X)
        y = np.atleast_1d(y)
        if sample_weight is None:
            sample_weight = np.ones(len(y))
        for x_i, y_i, w_i in zip(X, y, sample_weight):
            self.learn_one(x_i, y_i, w_i)
        return self

    def predict(self, X):
        return np.array([self.predict_one(x) for x in np.atleast_2d(X)], dtype=int)

    def model_measurements(self):
        return {"members size": len(self.weights)}
