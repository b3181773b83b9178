"""
Ensemble Optimization for Concept Drift.

Online classifier ensembles whose member activation and voting weights are
re-optimized by a genetic algorithm whenever the stream drifts.
"""

from .baselines import HeterogeneousDynamicWeightedMajority
from .drift import ChangeDetector, DriftLevel, RiverChangeDetector
from .ensemble import ConfigurationError, EnsembleOptimizationClassifier
from .genetic_algorithm import GeneticOptimizer, OptimizationResult, OptimizationStatus, run_optimization
from .genotype import ACTIVATION_THRESHOLD, Genotype
from .members import (Archetype, EnsembleMember, Example, LearnerKind, RiverLearner, StreamSchema,
                      TrainableClassifier, default_archetypes)
from .memory import ConfigurationMemory, EnsembleMemberConfiguration
from .problem import Problem
from .stop_condition import StopCondition

__version__ = "0.1.0"
