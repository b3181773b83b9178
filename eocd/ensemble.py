"""
Ensemble Optimization for Concept Drift (EOCD) online classifier.

A pool of heterogeneous online learners votes by weighted majority. Weights
decay on mistakes; members whose weight collapses are replaced by fresh
hidden candidates that train silently. When the change detector signals a
drift (or a fixed period elapses), the active/weight configuration of the
pool is re-optimized with a genetic algorithm over a buffer of recent
examples, either inline or on a single background worker, and installed in
one step once the search completes.
"""

import logging
from collections import Counter, deque
from concurrent.futures import ThreadPoolExecutor, wait

import numpy as np

from .drift import DriftLevel, RiverChangeDetector
from .genetic_algorithm import GeneticOptimizer, run_optimization
from .members import (EnsembleMember, Example, LearnerKind, default_archetypes,
                      draw_excluded_attributes)
from .memory import ConfigurationMemory
from .problem import Problem
from .stop_condition import StopCondition

logger = logging.getLogger(__name__)

WEIGHT_FLOOR = 0.001


class ConfigurationError(RuntimeError):
    """The classifier was used before it had a model context."""


class EnsembleOptimizationClassifier:
    """
    Drift-adaptive weighted ensemble tuned by a genetic algorithm.

    Parameters:
    -----------
    archetypes : list of Archetype, optional
        Base-learner templates. Defaults to default_archetypes() built for
        the schema's class count.
    drift_detector : ChangeDetector, optional
        Defaults to river's DDM.
    beta : float, default=0.95
        Factor a member's weight is multiplied by after each mistake.
    initial_ensemble_size, hidden_member_size, max_members_size : int
        Active members at start, hidden-candidate budget, total slots.
    use_optimization : bool, default=True
        Re-optimize on drift.
    use_optimization_frequency, optimization_frequency : bool, int
        Also re-optimize every ``optimization_frequency`` instances.
    epochs : int, default=100
        Generation budget and allowed generations without improvement.
    max_evaluations, max_seconds : int
        Evaluation and wall-clock budgets of one optimization.
    buffer_limit : int, default=1000
        Capacity of the sliding evaluation buffer.
    use_attribute_selection : bool, default=False
        Give every new member a random subset of excluded attributes.
    sample_configuration_before_optimization, sample_configuration_after_optimization : bool
        Snapshot the ensemble into the configuration memory around a run.
    reset_buffer_on_optimization : bool, default=False
        Clear the buffer once an optimization has captured it.
    use_thread : bool, default=False
        Run optimizations on a background worker instead of blocking.
    """

    def __init__(self,
                 archetypes=None,
                 drift_detector=None,
                 beta=0.95,
                 initial_ensemble_size=10,
                 hidden_member_size=10,
                 max_members_size=50,
                 use_optimization=True,
                 use_optimization_frequency=False,
                 optimization_frequency=1000,
                 epochs=100,
                 max_evaluations=2000,
                 max_seconds=120,
                 population_size=30,
                 num_elitism=3,
                 buffer_limit=1000,
                 use_attribute_selection=False,
                 sample_configuration_before_optimization=False,
                 sample_configuration_after_optimization=False,
                 max_configurations=30,
                 reset_buffer_on_optimization=False,
                 use_thread=False,
                 seed=None):

        if not 0.0 < beta < 1.0:
            raise ValueError("beta must lie in (0, 1)")
        if initial_ensemble_size < 1:
            raise ValueError("initial_ensemble_size must be at least 1")
        if hidden_member_size < 0:
            raise ValueError("hidden_member_size must be non-negative")
        if max_members_size < initial_ensemble_size:
            raise ValueError("max_members_size must be at least initial_ensemble_size")
        if optimization_frequency < 1 or epochs < 1 or buffer_limit < 1:
            raise ValueError("optimization_frequency, epochs and buffer_limit must be positive")
        if archetypes is not None and len(archetypes) == 0:
            raise ValueError("at least one archetype is required")

        self.archetype_templates = list(archetypes) if archetypes is not None else None
        self.drift_detector = drift_detector if drift_detector is not None else RiverChangeDetector()
        self.beta = beta
        self.initial_ensemble_size = initial_ensemble_size
        self.hidden_member_size = hidden_member_size
        self.max_members_size = max_members_size
        self.use_optimization = use_optimization
        self.use_optimization_frequency = use_optimization_frequency
        self.optimization_frequency = optimization_frequency
        self.epochs = epochs
        self.max_evaluations = max_evaluations
        self.max_seconds = max_seconds
        self.population_size = population_size
        self.num_elitism = num_elitism
        self.buffer_limit = buffer_limit
        self.use_attribute_selection = use_attribute_selection
        self.sample_configuration_before_optimization = sample_configuration_before_optimization
        self.sample_configuration_after_optimization = sample_configuration_after_optimization
        self.reset_buffer_on_optimization = reset_buffer_on_optimization
        self.use_thread = use_thread

        self.rng = np.random.RandomState(seed)
        self.memory = ConfigurationMemory(max_configurations)

        self.schema = None
        self.archetypes = None
        self.members = []
        self.buffer = deque(maxlen=buffer_limit)
        self.drift_state = DriftLevel.IN_CONTROL
        self.count_instances = 0

        self._executor = None
        self._future = None
        self._snapshot_members = None
        self.last_result = None

        # statistics
        self.optimizations_started = 0
        self.optimizations_installed = 0
        self.optimizations_dropped = 0
        self.drifts_detected = 0

    # ------------ setup ------------

    def set_model_context(self, schema):
        """Bind the stream schema and build the member pool."""
        self.schema = schema
        if self.archetype_templates is not None:
            self.archetypes = self.archetype_templates
        else:
            self.archetypes = default_archetypes(schema.n_classes)
        self.members = [self.create_member() for _ in range(self.max_members_size)]
        self._init_members()
        self.buffer = deque(maxlen=self.buffer_limit)

    def _init_members(self):
        for i, member in enumerate(self.members):
            member.weight = 1.0
            member.active = i < self.initial_ensemble_size
            member.hidden = (not member.active
                             and i - self.initial_ensemble_size < self.hidden_member_size)

    def create_member(self):
        """Clone and reset a uniformly drawn archetype."""
        index = int(self.rng.randint(len(self.archetypes)))
        archetype = self.archetypes[index]
        if self.use_attribute_selection:
            excluded = draw_excluded_attributes(self.schema.n_features, self.rng)
        else:
            excluded = frozenset()
        return EnsembleMember(archetype.instantiate(), archetype, index,
                              self.schema.n_features, excluded)

    def _create_hidden_member(self):
        member = self.create_member()
        member.hidden = True
        return member

    def _require_context(self):
        if self.schema is None:
            raise ConfigurationError("no model context: call set_model_context(schema) before streaming")

    def reset_learning(self):
        """Forget the stream; an in-flight optimization is abandoned, not installed."""
        self.drift_detector.reset_learning()
        self.drift_state = DriftLevel.IN_CONTROL
        self.count_instances = 0
        if self._future is not None:
            self._future.cancel()
        self._future = None
        self._snapshot_members = None
        if self.schema is not None:
            self.members = [self.create_member() for _ in range(self.max_members_size)]
            self._init_members()
        self.buffer = deque(maxlen=self.buffer_limit)

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ------------ voting ------------

    def _as_example(self, x, y=0, weight=1.0):
        return Example(np.asarray(x, dtype=np.float64), int(y), float(weight))

    def _member_votes(self, example):
        """Normalized vote of every active member that has an opinion."""
        votes = {}
        for i, member in enumerate(self.members):
            if member.active:
                vote = member.vote_distribution(example)
                total = vote.sum()
                votes[i] = vote / total if total > 0.0 else None
        return votes

    def _combine(self, member_votes):
        combined = np.zeros(self.schema.n_classes, dtype=np.float64)
        for i, vote in member_votes.items():
            if vote is not None:
                combined += self.members[i].weight * vote[:self.schema.n_classes]
        return combined

    def get_votes_for_instance(self, x):
        self._require_context()
        return self._combine(self._member_votes(self._as_example(x)))

    def predict_proba_one(self, x):
        votes = self.get_votes_for_instance(x)
        total = votes.sum()
        if total > 0.0:
            return votes / total
        return votes

    def predict_one(self, x):
        return int(np.argmax(self.get_votes_for_instance(x)))

    def predict(self, X):
        return np.array([self.predict_one(x) for x in np.atleast_2d(X)], dtype=int)

    # ------------ learning ------------

    def learn_one(self, x, y, weight=1.0):
        self._require_context()
        self._collect_optimization()

        self.count_instances += 1
        if self.use_optimization_frequency and self.count_instances % self.optimization_frequency == 0:
            self.drift_detected()

        example = self._as_example(x, y, weight)
        member_votes = self._member_votes(example)
        prediction = int(np.argmax(self._combine(member_votes)))
        self.drift_observer(prediction, example.y)

        # a synchronous optimization may have reshuffled the pool
        if self._members_changed(member_votes):
            member_votes = self._member_votes(example)

        self._update_weights(example, member_votes)

        for member in self.members:
            if member.active or member.hidden:
                member.train(example)

        self.buffer.append(example)

    def _members_changed(self, member_votes):
        return set(member_votes) != {i for i, m in enumerate(self.members) if m.active}

    def _update_weights(self, example, member_votes):
        decayed = False
        for i, vote in member_votes.items():
            member = self.members[i]
            predicted = int(np.argmax(vote)) if vote is not None else 0
            if predicted != example.y:
                member.punish(self.beta, example.weight)
                decayed = True
                if member.weight < WEIGHT_FLOOR:
                    logger.debug("member %d fell below the weight floor, replaced by a hidden candidate", i)
                    self.members[i] = self._create_hidden_member()

        if decayed:
            total = sum(m.weight for m in self.members if m.active)
            if total > 0.0:
                for member in self.members:
                    if member.active:
                        member.weight = member.weight / total

    def partial_fit(self, X, y, sample_weight=None):
        X = np.atleast_2d(X)
        y = np.atleast_1d(y)
        if sample_weight is None:
            sample_weight = np.ones(len(y))
        for x_i, y_i, w_i in zip(X, y, sample_weight):
            self.learn_one(x_i, y_i, w_i)
        return self

    # ------------ drift handling ------------

    def drift_observer(self, prediction, truth):
        self.drift_detector.input(0.0 if prediction == truth else 1.0)
        new_level = self.drift_detector.level()
        if new_level != self.drift_state:
            if new_level is DriftLevel.OUT_OF_CONTROL:
                self.drifts_detected += 1
                logger.info("drift detected at instance %d", self.count_instances)
                self.drift_detected()
            elif new_level is DriftLevel.WARNING:
                self.drift_warning()
            self.drift_state = new_level

    def drift_warning(self):
        """Hook called on entering the warning zone."""

    def is_running_optimization(self):
        return self._future is not None

    def drift_detected(self):
        """Launch a re-optimization unless one is already in flight."""
        if not self.use_optimization:
            return
        if self.is_running_optimization():
            self.optimizations_dropped += 1
            logger.debug("optimization already running, trigger at instance %d dropped", self.count_instances)
            return

        if self.sample_configuration_before_optimization:
            self.memory.snapshot(self.members)

        try:
            optimizer = self._make_optimizer()
        except ValueError as e:
            logger.error("cannot build optimizer: %s", e)
            return

        if self.reset_buffer_on_optimization:
            self.buffer.clear()

        self.optimizations_started += 1
        snapshot_members = list(self.members)
        logger.info("optimization %d started over %d buffered examples, active before: %s",
                    self.optimizations_started, optimizer.problem.buffer_size, self.active_members())

        if self.use_thread:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="eocd-optimizer")
            self._snapshot_members = snapshot_members
            self._future = self._executor.submit(run_optimization, optimizer)
        else:
            self._install(run_optimization(optimizer), snapshot_members)

    def _make_optimizer(self):
        problem = Problem(self.members, self.buffer, self.schema.n_classes,
                          configurations=list(self.memory))
        stop_condition = StopCondition(min_evaluations=0, max_evaluations=self.max_evaluations,
                                       min_generations=0, max_generations=self.epochs,
                                       max_no_improvement=self.epochs,
                                       min_seconds=0, max_seconds=self.max_seconds)
        return GeneticOptimizer(problem, stop_condition,
                                seed=int(self.rng.randint(2 ** 31 - 1)),
                                population_size=self.population_size,
                                num_elitism=self.num_elitism)

    def _collect_optimization(self):
        if self._future is None or not self._future.done():
            return False
        future = self._future
        snapshot_members = self._snapshot_members
        self._future = None
        self._snapshot_members = None
        return self._install(future.result(), snapshot_members)

    def wait_for_optimization(self, timeout=None):
        """Block until the background run finishes and install it. True when nothing is pending."""
        if self._future is None:
            return True
        wait([self._future], timeout=timeout)
        self._collect_optimization()
        return self._future is None

    def _install(self, result, snapshot_members):
        self.last_result = result
        if not result.installable:
            logger.warning("optimization not installed: %r", result)
            return False

        weights = result.weights
        members = list(self.members)
        replaced = [member is not snapshot_members[i] for i, member in enumerate(members)]
        # members replaced by the stream while the search ran stay hidden and use up the budget
        num_hidden = sum(1 for i, member in enumerate(members) if replaced[i] and member.hidden)
        for i, member in enumerate(members):
            if replaced[i]:
                continue
            member.weight = float(weights[i])
            member.active = bool(weights[i] > 0.0)
            member.hidden = False
            if not member.active and num_hidden < self.hidden_member_size:
                members[i] = self._create_hidden_member()
                num_hidden += 1
        self.members = members

        if self.sample_configuration_after_optimization:
            self.memory.snapshot(self.members)

        self.optimizations_installed += 1
        active = self.active_members()
        logger.info("optimization installed %r, active after: %s", result, active)
        if not active:
            logger.warning("installed configuration has no active member")
        return True

    # ------------ reporting ------------

    def active_members(self):
        return [i for i, m in enumerate(self.members) if m.active]

    def model_measurements(self):
        return {f"member weight {i + 1}": m.weight for i, m in enumerate(self.members)}

    def summary(self):
        active = [m for m in self.members if m.active]
        counts = Counter(m.kind for m in active)
        per_kind = [counts.get(kind, 0) for kind in LearnerKind]
        return f"{len(active)} {per_kind} " + ", ".join(repr(m) for m in active)

    def __repr__(self):
        return (f"EnsembleOptimizationClassifier(members={len(self.members)}, "
                f"active={len(self.active_members())}, optimizations={self.optimizations_installed})")
