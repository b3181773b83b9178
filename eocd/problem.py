"""
Optimization problem: score a genotype against a buffer of recent examples.

At construction the problem takes a snapshot of every participating member
(active or hidden) and of their vote distributions over the buffer. Scoring a
genotype is then a pure array computation, compiled with Numba, that never
touches the live members. That lets the optimizer run on a background worker
while the stream keeps training those same members.
"""

import logging
from collections import Counter

import numpy as np
from numba import jit

from .genotype import Genotype, WORST_COST
from .members import LearnerKind

logger = logging.getLogger(__name__)


# =====================================================================
# NUMBA-ACCELERATED CORE FUNCTIONS
# =====================================================================

@jit(nopython=True, cache=True)
def numba_weighted_vote_error(votes, weights, y):
    """
    Misclassification rate of the weighted vote over the whole buffer.

    Args:
        votes: (n_samples, n_members, n_classes) normalized vote distributions
        weights: (n_members,) decoded weights, 0 for inactive members
        y: (n_samples,) true class indices

    Returns:
        error rate in [0, 1]
    """
    n_samples = votes.shape[0]
    n_members = votes.shape[1]
    n_classes = votes.shape[2]

    errors = 0
    for s in range(n_samples):
        max_score = 0.0
        max_class = 0

        for c in range(n_classes):
            score = 0.0
            for m in range(n_members):
                w = weights[m]
                if w > 0.0:
                    score += w * votes[s, m, c]
            # first maximum wins ties
            if score > max_score:
                max_score = score
                max_class = c

        if max_class != y[s]:
            errors += 1

    return errors / n_samples


# =====================================================================
# PROBLEM
# =====================================================================

def _normalized(vote):
    total = vote.sum()
    if total > 0.0:
        return vote / total
    return np.zeros_like(vote)


class Problem:
    """
    Ensemble configuration search space for one optimization run.

    Slot i of a genotype maps to member index ``slot_to_index[i]``; only
    members that are active or hidden when the problem is built take part.
    """

    def __init__(self, members, buffer, n_classes, configurations=(), num_objectives=1):
        self.members = list(members)
        self.slot_to_index = np.array(
            [i for i, member in enumerate(self.members) if member.active or member.hidden],
            dtype=np.int64,
        )
        self.size_encode = len(self.slot_to_index)
        if self.size_encode == 0:
            raise ValueError("no active or hidden member to optimize")

        self.num_objectives = num_objectives
        self.n_classes = n_classes
        self.configurations = list(configurations)
        self.participants = [self.members[i] for i in self.slot_to_index]

        self._index_to_slot = {int(index): slot for slot, index in enumerate(self.slot_to_index)}
        self._snapshot(list(buffer))

    def _snapshot(self, buffer):
        """Capture every participant's normalized votes over the buffer."""
        n_samples = len(buffer)
        self.votes = np.zeros((n_samples, self.size_encode, self.n_classes), dtype=np.float64)
        self.labels = np.zeros(n_samples, dtype=np.int64)
        # members whose votes could not be computed poison any genotype using them
        self.failed_slots = np.zeros(self.size_encode, dtype=np.bool_)

        for s, example in enumerate(buffer):
            self.labels[s] = int(example.y)
            for slot, member in enumerate(self.participants):
                if self.failed_slots[slot]:
                    continue
                try:
                    vote = member.vote_distribution(example)
                    self.votes[s, slot, :] = _normalized(vote[:self.n_classes])
                except (ValueError, TypeError, KeyError, IndexError, ZeroDivisionError):
                    logger.warning("member %s failed to vote on buffered example %d", member, s, exc_info=True)
                    self.failed_slots[slot] = True

    @property
    def buffer_size(self):
        return len(self.labels)

    def create_empty_genotype(self):
        return Genotype(self.size_encode, self.num_objectives)

    def evaluate(self, genotype):
        """Set genotype.cost to the ensemble error on the buffer (worst cost on any fault)."""
        try:
            weights = genotype.weights()
            if len(weights) != self.size_encode:
                raise ValueError(f"genotype has {len(weights)} slots, expected {self.size_encode}")
            if not np.all(np.isfinite(weights)):
                raise ValueError("genotype holds non-finite values")
            if self.buffer_size == 0:
                raise ValueError("evaluation buffer is empty")
            if np.any(self.failed_slots & (weights > 0.0)):
                raise ValueError("genotype activates a member that failed to vote")
            error = numba_weighted_vote_error(self.votes, weights, self.labels)
        except (ValueError, TypeError, IndexError, ZeroDivisionError) as e:
            logger.warning("evaluation failed for %r: %s", genotype, e)
            error = WORST_COST
        genotype.cost = error
        return error

    # ------------ encode / decode ------------

    def get_weights(self, genotype):
        """Per-member weights (length = all members), 0 for inactive or non-participating."""
        weights = np.zeros(len(self.members), dtype=np.float64)
        weights[self.slot_to_index] = genotype.weights()
        return weights

    def encode_weights(self, weights):
        """Inverse of get_weights over the participating members."""
        genotype = self.create_empty_genotype()
        genotype.encode[:] = np.asarray(weights, dtype=np.float64)[self.slot_to_index]
        return genotype

    def slot_of(self, member_index):
        return self._index_to_slot.get(int(member_index))

    def set_weight(self, genotype, member_index, weight):
        slot = self.slot_of(member_index)
        if slot is None:
            raise KeyError(f"member {member_index} does not take part in this problem")
        genotype.set_weight(slot, weight)

    def describe(self, genotype):
        """(cost, active member count per learner kind) for logging."""
        counts = Counter(self.participants[slot].kind for slot in np.flatnonzero(genotype.active_mask()))
        per_kind = [counts.get(kind, 0) for kind in LearnerKind]
        return f"({genotype.cost:.4f}, {per_kind})"
