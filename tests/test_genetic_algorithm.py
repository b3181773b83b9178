import numpy as np
import pytest

from conftest import ConstantLearner, OracleLearner, WrongLearner, make_examples, make_member
from eocd.genetic_algorithm import GeneticOptimizer, OptimizationStatus, poisson_number, run_optimization
from eocd.members import LearnerKind
from eocd.memory import EnsembleMemberConfiguration
from eocd.problem import Problem
from eocd.stop_condition import StopCondition


def oracle_and_wrong(configurations=()):
    members = [
        make_member(OracleLearner(), kind=LearnerKind.DECISION_TREE, active=True),
        make_member(WrongLearner(), kind=LearnerKind.BAYESIAN, active=True),
    ]
    return Problem(members, make_examples(10), n_classes=2, configurations=configurations)


def oracle_only_configuration():
    snapshot = [
        make_member(OracleLearner(), kind=LearnerKind.DECISION_TREE, active=True),
        make_member(WrongLearner(), kind=LearnerKind.BAYESIAN, active=False),
    ]
    return EnsembleMemberConfiguration(snapshot)


def test_seeded_search_activates_correct_member_only():
    problem = oracle_and_wrong(configurations=[oracle_only_configuration()])
    optimizer = GeneticOptimizer(problem, StopCondition(max_generations=1), seed=3,
                                 population_size=4, num_elitism=1)
    optimizer.execute()

    best = optimizer.best_solve()
    assert best.cost == 0.0
    assert best.is_active(0)
    assert best.weight(0) > 0.0
    assert not best.is_active(1)
    assert best.encode[1] == 0.0


def test_random_search_finds_zero_cost():
    problem = oracle_and_wrong()
    optimizer = GeneticOptimizer(problem, StopCondition(max_generations=30), seed=1,
                                 population_size=10, num_elitism=1)
    optimizer.execute()

    best = optimizer.best_solve()
    assert best.cost == 0.0
    assert best.weight(0) > best.weight(1)


class RecordingOptimizer(GeneticOptimizer):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.history = []

    def join(self, population, offspring, size):
        survivors = super().join(population, offspring, size)
        before = min(g.sort_key() for g in population)
        after = min(g.sort_key() for g in survivors)
        self.history.append((before, after))
        return survivors


def noisy_problem():
    members = [make_member(OracleLearner(), active=True),
               make_member(WrongLearner(), active=True),
               make_member(WrongLearner(), active=True),
               make_member(ConstantLearner(label=1), hidden=True),
               make_member(ConstantLearner(label=0), hidden=True)]
    return Problem(members, make_examples(40, seed=7), n_classes=2)


@pytest.mark.parametrize("num_elitism", [1, 3])
def test_elitist_join_never_loses_the_best(num_elitism):
    optimizer = RecordingOptimizer(noisy_problem(), StopCondition(max_generations=15), seed=5,
                                   population_size=8, num_elitism=num_elitism)
    optimizer.execute()
    assert optimizer.history
    for before, after in optimizer.history:
        assert after <= before


def test_population_size_is_kept():
    optimizer = GeneticOptimizer(noisy_problem(), StopCondition(max_generations=5), seed=0,
                                 population_size=6, num_elitism=2)
    optimizer.execute()
    assert len(optimizer.population) == 6


def test_evaluation_budget_is_respected():
    condition = StopCondition(max_evaluations=25)
    optimizer = GeneticOptimizer(noisy_problem(), condition, seed=0, population_size=10, num_elitism=1)
    optimizer.execute()
    assert condition.performed_evaluations() == 25
    assert not condition.is_running()


def test_execute_is_not_reentrant():
    optimizer = GeneticOptimizer(noisy_problem(), StopCondition(max_generations=1), seed=0, population_size=4)
    optimizer.execute()
    with pytest.raises(RuntimeError):
        optimizer.execute()


@pytest.mark.parametrize("kwargs", [
    dict(population_size=1),
    dict(num_elitism=-1),
    dict(population_size=4, num_elitism=5),
    dict(rate_crossover=1.5),
    dict(num_rounds=0),
])
def test_invalid_parameters_rejected(kwargs):
    with pytest.raises(ValueError):
        GeneticOptimizer(noisy_problem(), StopCondition(max_generations=1), **kwargs)


def test_seeded_population_uses_memory():
    problem = oracle_and_wrong(configurations=[oracle_only_configuration()])
    optimizer = GeneticOptimizer(problem, StopCondition(), seed=0, population_size=6, seeded_fraction=0.5)
    population = optimizer.new_population(6)
    seeded = [g for g in population if list(g.encode) == [1.0, 0.0]]
    assert len(seeded) == 3


def test_crossover_without_rate_copies_parents():
    problem = noisy_problem()
    optimizer = GeneticOptimizer(problem, StopCondition(), seed=0, rate_crossover=0.0)
    a = problem.create_empty_genotype()
    b = problem.create_empty_genotype()
    a.encode[:] = 0.9
    b.encode[:] = 0.1
    child_a, child_b = optimizer.crossover(a, b)
    np.testing.assert_array_equal(child_a.encode, a.encode)
    np.testing.assert_array_equal(child_b.encode, b.encode)
    assert child_a is not a


def test_mutation_keeps_every_locus_in_unit_interval():
    problem = noisy_problem()
    optimizer = GeneticOptimizer(problem, StopCondition(), seed=0, mutation_lambda=4.0)
    values = []
    for start in (0.0, 0.5, 1.0):
        for _ in range(500):
            genotype = problem.create_empty_genotype()
            genotype.encode[:] = start
            optimizer.mutation(genotype)
            values.extend(genotype.encode)
    values = np.array(values)
    assert values.min() >= 0.0
    assert values.max() <= 1.0
    # loci actually moved
    assert np.any((values > 0.0) & (values < 1.0))


def test_poisson_number_mean():
    rng = np.random.RandomState(0)
    draws = [poisson_number(1.0, rng) for _ in range(4000)]
    assert min(draws) >= 0
    assert np.mean(draws) == pytest.approx(1.0, abs=0.1)


# =====================================================================
# WORKER BOUNDARY
# =====================================================================

def test_run_optimization_completed_result():
    problem = noisy_problem()
    result = run_optimization(GeneticOptimizer(problem, StopCondition(max_generations=3), seed=0))
    assert result.status is OptimizationStatus.COMPLETED
    assert result.installable
    assert len(result.weights) == len(problem.members)
    assert result.generations == 3


class ExplodingOptimizer(GeneticOptimizer):
    def breed(self, population):
        raise RuntimeError("boom")


def test_run_optimization_reports_failure():
    optimizer = ExplodingOptimizer(noisy_problem(), StopCondition(max_generations=3), seed=0)
    result = run_optimization(optimizer)
    assert result.status is OptimizationStatus.FAILED
    assert not result.installable
    assert isinstance(result.error, RuntimeError)
    # initial population was scored before the failure
    assert result.best is not None
    assert not optimizer.stop_condition.is_running()


def test_run_optimization_without_any_evaluation():
    optimizer = GeneticOptimizer(noisy_problem(), StopCondition(max_evaluations=0), seed=0)
    result = run_optimization(optimizer)
    assert result.status is OptimizationStatus.NO_SOLUTION
    assert not result.installable
