"""
Genotype encoding of an ensemble configuration.

One real value in [0, 1] per member slot. A slot above the activation
threshold means "member active, with that value as its voting weight";
anything else means "member inactive, weight 0".
"""

import numpy as np

ACTIVATION_THRESHOLD = 0.5
WORST_COST = 1.0


class Genotype:
    """Real-valued chromosome plus its cached objective values."""

    def __init__(self, size_encode, num_objectives=1):
        self.encode = np.zeros(size_encode, dtype=np.float64)
        self.objectives = np.full(num_objectives, WORST_COST, dtype=np.float64)
        self.evaluated = False

    def __len__(self):
        return len(self.encode)

    # ------------ decoding ------------

    def is_active(self, slot):
        return self.encode[slot] > ACTIVATION_THRESHOLD

    def weight(self, slot):
        return self.encode[slot] if self.is_active(slot) else 0.0

    def set_weight(self, slot, weight):
        self.encode[slot] = weight

    def active_mask(self):
        return self.encode > ACTIVATION_THRESHOLD

    def weights(self):
        """Decoded weight per slot, zero for inactive slots."""
        return np.where(self.active_mask(), self.encode, 0.0)

    def repair(self):
        """Force every inactive slot to exactly 0."""
        self.encode[~self.active_mask()] = 0.0

    # ------------ objectives ------------

    @property
    def cost(self):
        return self.objectives[0]

    @cost.setter
    def cost(self, value):
        self.objectives[0] = value

    def mark_evaluated(self, evaluated=True):
        self.evaluated = evaluated
        if not evaluated:
            self.objectives.fill(WORST_COST)

    def sort_key(self):
        # evaluated genotypes always rank ahead of unevaluated ones
        return (not self.evaluated, tuple(self.objectives))

    def better_than(self, other):
        return self.sort_key() < other.sort_key()

    def dominates(self, other):
        all_not_worse = np.all(self.objectives <= other.objectives)
        one_better = np.any(self.objectives < other.objectives)
        return bool(all_not_worse and one_better)

    def equals_encode(self, other):
        return bool(np.array_equal(self.encode, other.encode))

    # ------------ copies ------------

    def copy(self):
        new = Genotype(len(self.encode), len(self.objectives))
        new.encode = self.encode.copy()
        new.objectives = self.objectives.copy()
        new.evaluated = self.evaluated
        return new

    def __repr__(self):
        active = np.flatnonzero(self.active_mask()).tolist()
        state = f"{self.cost:.4f}" if self.evaluated else "unevaluated"
        return f"Genotype(cost={state}, active={active})"
