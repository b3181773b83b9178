"""
Genetic algorithm over ensemble configurations.

Generational loop:
    1. binary tournament selection
    2. per-locus uniform crossover
    3. Poisson-count Gaussian mutation, wrapped modulo 1 when a locus leaves [0, 1]
    4. repair + evaluation of every offspring
    5. elitist join of population and offspring

Up to half of the initial population is seeded from the configuration
memory, the rest is uniform random. The run is bounded by a StopCondition
polled once per generation.
"""

import logging
import math
import time
from enum import Enum

import numpy as np

from .memory import choose_configuration

logger = logging.getLogger(__name__)


class OptimizationStatus(Enum):
    COMPLETED = "completed"
    NO_SOLUTION = "no-solution"
    FAILED = "failed"


class OptimizationResult:
    """Outcome of one optimizer run, decided on by the controller."""

    def __init__(self, status, best=None, weights=None, problem=None,
                 generations=0, evaluations=0, elapsed=0.0, error=None):
        self.status = status
        self.best = best
        self.weights = weights
        self.problem = problem
        self.generations = generations
        self.evaluations = evaluations
        self.elapsed = elapsed
        self.error = error

    @property
    def installable(self):
        return self.status is OptimizationStatus.COMPLETED and self.weights is not None

    def __repr__(self):
        cost = f"{self.best.cost:.4f}" if self.best is not None else "-"
        return (f"OptimizationResult({self.status.value}, cost={cost}, "
                f"generations={self.generations}, evaluations={self.evaluations}, "
                f"elapsed={self.elapsed:.2f}s)")


def poisson_number(lam, rng):
    """Knuth's method: count uniform draws until their product falls below e^-lambda."""
    threshold = math.exp(-lam)
    events = 0
    acc = 1.0
    while True:
        events += 1
        acc *= rng.rand()
        if acc <= threshold:
            break
    return events - 1


class GeneticOptimizer:
    """
    Single-objective GA minimizing Problem cost.

    Not re-entrant: build a new optimizer for every optimization event.
    """

    def __init__(self, problem, stop_condition, seed=None,
                 population_size=30,
                 num_elitism=3,
                 rate_locus=0.5,
                 rate_crossover=0.9,
                 num_rounds=2,
                 mutation_lambda=1.0,
                 seeded_fraction=0.5):

        if population_size < 2:
            raise ValueError("population_size must be at least 2")
        if not 0 <= num_elitism <= population_size:
            raise ValueError("num_elitism must lie in [0, population_size]")
        if num_rounds < 1:
            raise ValueError("num_rounds must be at least 1")
        for name, rate in (("rate_locus", rate_locus), ("rate_crossover", rate_crossover),
                           ("seeded_fraction", seeded_fraction)):
            if not 0.0 <= rate <= 1.0:
                raise ValueError(f"{name} must lie in [0, 1]")
        if problem.size_encode == 0:
            raise ValueError("problem has no slot to optimize")

        self.problem = problem
        self.stop_condition = stop_condition
        self.population_size = population_size
        self.num_elitism = num_elitism
        self.rate_locus = rate_locus
        self.rate_crossover = rate_crossover
        self.num_rounds = num_rounds
        self.mutation_lambda = mutation_lambda
        self.seeded_fraction = seeded_fraction

        self.rng = np.random.RandomState(seed)

        self.population = []
        self._best = None
        self._executed = False

    # ------------ run ------------

    def execute(self):
        if self._executed:
            raise RuntimeError("GeneticOptimizer.execute() can only run once")
        self._executed = True

        self.stop_condition.start()
        try:
            self._run()
        finally:
            self.stop_condition.stop()

    def _run(self):
        self.population = self.new_population(self.population_size)
        for genotype in self.population:
            self.evaluate(genotype)
            self.record_best(genotype)

        logger.debug("initial best %s", self.describe_best())

        while self.stop_condition.is_running():
            offspring = self.breed(self.population)
            for genotype in offspring:
                self.evaluate(genotype)
                self.record_best(genotype)

            self.population = self.join(self.population, offspring, self.population_size)
            self.stop_condition.iteration()

        logger.debug("finished with best %s, %s", self.describe_best(), self.stop_condition)

    def evaluate(self, genotype):
        if self.stop_condition.is_running():
            genotype.repair()
            self.problem.evaluate(genotype)
            genotype.mark_evaluated(True)
            self.stop_condition.evaluation()
        else:
            genotype.mark_evaluated(False)

    def record_best(self, genotype):
        if not genotype.evaluated:
            return
        # strict comparison keeps the first-seen genotype on ties
        if self._best is None or genotype.better_than(self._best):
            self._best = genotype
            self.stop_condition.record_improvement()

    def best_solve(self):
        return self._best

    def describe_best(self):
        if self._best is None:
            return "none"
        return self.problem.describe(self._best)

    # ------------ initialization ------------

    def new_population(self, size):
        population = []
        configurations = self.problem.configurations
        if configurations:
            for _ in range(int(size * self.seeded_fraction)):
                configuration = choose_configuration(configurations, self.rng)
                genotype = self.problem.create_empty_genotype()
                configuration.configure(genotype, self.problem)
                population.append(genotype)

        while len(population) < size:
            genotype = self.problem.create_empty_genotype()
            genotype.encode[:] = self.rng.rand(self.problem.size_encode)
            population.append(genotype)

        return population

    # ------------ operators ------------

    def select(self, population, size):
        """Tournament of num_rounds uniform draws, lowest cost wins."""
        parents = []
        for _ in range(size):
            best = population[self.rng.randint(len(population))]
            for _ in range(1, self.num_rounds):
                challenger = population[self.rng.randint(len(population))]
                if challenger.better_than(best):
                    best = challenger
            parents.append(best)
        return parents

    def crossover(self, parent_a, parent_b):
        """Uniform crossover: each locus kept with rate_locus, swapped otherwise."""
        if self.rng.rand() < self.rate_crossover:
            offspring_a = self.problem.create_empty_genotype()
            offspring_b = self.problem.create_empty_genotype()
            keep = self.rng.rand(self.problem.size_encode) < self.rate_locus
            offspring_a.encode[:] = np.where(keep, parent_a.encode, parent_b.encode)
            offspring_b.encode[:] = np.where(keep, parent_b.encode, parent_a.encode)
        else:
            offspring_a = parent_a.copy()
            offspring_b = parent_b.copy()
        return offspring_a, offspring_b

    def mutation(self, genotype):
        n_mutations = poisson_number(self.mutation_lambda, self.rng)
        for _ in range(n_mutations):
            locus = self.rng.randint(self.problem.size_encode)
            value = genotype.encode[locus] + self.rng.randn()
            # wrap around instead of clamping
            if value < 0.0 or value > 1.0:
                value = value % 1.0
            genotype.encode[locus] = value
        if n_mutations:
            genotype.mark_evaluated(False)

    def breed(self, population):
        offspring = []
        parents = self.select(population, self.population_size)
        for i in range(0, len(parents) - 1, 2):
            for child in self.crossover(parents[i], parents[i + 1]):
                self.mutation(child)
                offspring.append(child)
        return offspring

    def join(self, population, offspring, size):
        """Elites survive only while strictly better than the best offspring."""
        offspring = sorted(offspring, key=lambda g: g.sort_key())
        survivors = []

        if self.num_elitism > 0 and offspring:
            elites = sorted(population, key=lambda g: g.sort_key())[:self.num_elitism]
            for elite in elites:
                if elite.better_than(offspring[0]):
                    survivors.append(elite)
        elif self.num_elitism > 0:
            survivors.extend(sorted(population, key=lambda g: g.sort_key())[:self.num_elitism])

        for child in offspring:
            if len(survivors) >= size:
                break
            survivors.append(child)

        return survivors


# =====================================================================
# WORKER BOUNDARY
# =====================================================================

def run_optimization(optimizer):
    """
    Execute optimizer and package the outcome.

    Any exception raised during the run is logged and reported as a FAILED
    result carrying whatever best genotype had been recorded.
    """
    t0 = time.time()
    try:
        optimizer.execute()
    except Exception as e:
        logger.exception("optimization run failed")
        best = optimizer.best_solve()
        return OptimizationResult(
            OptimizationStatus.FAILED,
            best=best,
            problem=optimizer.problem,
            generations=optimizer.stop_condition.performed_iterations(),
            evaluations=optimizer.stop_condition.performed_evaluations(),
            elapsed=time.time() - t0,
            error=e,
        )

    best = optimizer.best_solve()
    status = OptimizationStatus.COMPLETED if best is not None else OptimizationStatus.NO_SOLUTION
    return OptimizationResult(
        status,
        best=best,
        weights=optimizer.problem.get_weights(best) if best is not None else None,
        problem=optimizer.problem,
        generations=optimizer.stop_condition.performed_iterations(),
        evaluations=optimizer.stop_condition.performed_evaluations(),
        elapsed=time.time() - t0,
    )
