"""
Memory of previously deployed ensemble configurations.

Snapshots are used to seed part of the GA's initial population with
configurations that already worked once. A snapshot is not replayed
exactly: each stored member is matched to the current member of the same
learner kind whose excluded-attribute set overlaps it the most.
"""

import logging
from collections import deque, namedtuple

import numpy as np

from .genotype import ACTIVATION_THRESHOLD

logger = logging.getLogger(__name__)

MemberRecord = namedtuple("MemberRecord", ["kind", "archetype_index", "excluded_attributes", "weight"])


class EnsembleMemberConfiguration:
    """Which (kind, archetype, excluded attributes, weight) tuples were active at one moment."""

    def __init__(self, members):
        self.records = sorted(
            (MemberRecord(m.kind, m.archetype_index, frozenset(m.excluded_attributes), m.weight)
             for m in members if m.active),
            key=lambda r: (r.kind.value, r.archetype_index),
        )

    def __len__(self):
        return len(self.records)

    @staticmethod
    def similarity(member, record):
        if member.kind != record.kind:
            return -1
        return len(member.excluded_attributes & record.excluded_attributes)

    def configure(self, genotype, problem):
        """
        Write this configuration into genotype through best-overlap matching.

        Stored weights are rescaled into (0.5, 1] so every matched member
        decodes as active, keeping the relative order of the weights.
        """
        genotype.encode.fill(0.0)
        if not self.records:
            return genotype

        max_weight = max(r.weight for r in self.records)
        used = np.zeros(problem.size_encode, dtype=bool)

        for record in self.records:
            best_slot = -1
            best_sim = -1
            for slot, member in enumerate(problem.participants):
                if used[slot]:
                    continue
                sim = self.similarity(member, record)
                if sim > best_sim:
                    best_sim = sim
                    best_slot = slot

            if best_slot != -1:
                used[best_slot] = True
                if max_weight > 0:
                    value = ACTIVATION_THRESHOLD + (1.0 - ACTIVATION_THRESHOLD) * record.weight / max_weight
                else:
                    value = 1.0
                genotype.set_weight(best_slot, value)

        return genotype

    def __repr__(self):
        return f"EnsembleMemberConfiguration({len(self.records)} members)"


class ConfigurationMemory:
    """Bounded history of configuration snapshots (oldest evicted first)."""

    def __init__(self, max_configurations=30):
        if max_configurations < 1:
            raise ValueError("max_configurations must be at least 1")
        self.configurations = deque(maxlen=max_configurations)

    def __len__(self):
        return len(self.configurations)

    def __iter__(self):
        return iter(self.configurations)

    def snapshot(self, members):
        configuration = EnsembleMemberConfiguration(members)
        if len(configuration) == 0:
            logger.debug("skipping snapshot of an ensemble with no active member")
            return None
        self.configurations.append(configuration)
        return configuration

    def clear(self):
        self.configurations.clear()


def choose_configuration(configurations, rng):
    """Uniform draw from a sequence of snapshots, None when it is empty."""
    if not configurations:
        return None
    return configurations[rng.randint(len(configurations))]
