"""
EOCD vs STREAMING ENSEMBLE BASELINES: Multi-Run Evaluation with Statistical Tests
==================================================================================
Features:
1. EOCD (drift-triggered GA re-optimization) and its ablations (no optimization,
   periodic trigger, detached worker, configuration memory)
2. Baselines: HDWM on the same learner pool, Hoeffding Tree, ARF, Leveraging
   Bagging, ADWIN Bagging, Online Bagging
3. Synthetic drift streams (gradual drift with class arrival, recurring drift,
   sudden recurring drift)
4. Prequential test-then-train over batches, several seeds per experiment
5. Mean ± std for BA, F1, MinF1 and t-tests / Wilcoxon + Cliff's delta vs EOCD
"""
import logging
import time
import warnings

import numpy as np
from river import ensemble, forest, metrics, tree
from river.drift import ADWIN
from scipy import stats as scipy_stats
from sklearn.metrics import balanced_accuracy_score, f1_score

from eocd import (EnsembleOptimizationClassifier, HeterogeneousDynamicWeightedMajority,
                  RiverChangeDetector, StreamSchema)

warnings.filterwarnings('ignore')

logger = logging.getLogger(__name__)

REFERENCE_MODEL = 'EOCD'


# ==============================================================================
# MODEL FACTORIES
# ==============================================================================

def make_eocd(generator, exp_name, seed=42, **overrides):
    base_kwargs = dict(
        beta=0.95,
        initial_ensemble_size=10,
        hidden_member_size=10,
        max_members_size=50,
        epochs=100,
        max_evaluations=2000,
        max_seconds=120,
        buffer_limit=1000,
        seed=seed,
    )

    if "Recurring" in exp_name:
        base_kwargs.update(dict(
            buffer_limit=500,
            sample_configuration_before_optimization=True,
            sample_configuration_after_optimization=True,
        ))
    elif "Sudden" in exp_name:
        base_kwargs.update(dict(
            beta=0.9,
            buffer_limit=300,
            max_seconds=60,
        ))
    elif "Severe" in exp_name:
        base_kwargs.update(dict(
            use_attribute_selection=True,
        ))

    base_kwargs.update(overrides)
    model = EnsembleOptimizationClassifier(**base_kwargs)
    model.set_model_context(StreamSchema(generator.n_features, generator.n_types))
    return model


def make_hdwm(generator, seed=42):
    model = HeterogeneousDynamicWeightedMajority(period=50, beta=0.5, theta=0.01, seed=seed)
    model.set_model_context(StreamSchema(generator.n_features, generator.n_types))
    return model


# ==============================================================================
# DRIFT STREAMS
# ==============================================================================

class SevereDriftStream:
    """
    Gradual centroid drift with sequential class arrival.

    Classes 0-2 exist from the start, class 3 arrives at batch 2 and class 4
    at batch 4. Every centroid moves a little each batch.
    """

    def __init__(self, n_features=10, n_types=5, samples_per_batch=250, seed=43):
        self.n_features = n_features
        self.n_types = n_types
        self.samples_per_batch = samples_per_batch
        self.rng = np.random.RandomState(seed)

        # circular placement keeps class separation consistent
        self.centroids = {}
        for i in range(n_types):
            angle = (2 * np.pi * i) / n_types
            c = np.zeros(n_features)
            c[0] = 10 * np.cos(angle)
            c[1] = 10 * np.sin(angle)
            c[2:] = self.rng.randn(n_features - 2) * 0.5
            self.centroids[i] = c

        self.drift_dirs = {}
        for i in range(n_types):
            d = np.zeros(n_features)
            d[0] = self.rng.randn() * 0.15
            d[1] = self.rng.randn() * 0.15
            d[2:] = self.rng.randn(n_features - 2) * 0.05
            self.drift_dirs[i] = d

        self.current_types = list(range(min(3, n_types)))
        self.batch_count = 0

    def get_batch(self):
        self.batch_count += 1

        if self.batch_count == 2 and self.n_types > 3:
            self.current_types.append(3)
        elif self.batch_count == 4 and self.n_types > 4:
            self.current_types.append(4)

        for t in self.current_types:
            self.centroids[t] += self.drift_dirs[t]

        X, y = [], []
        n_per = self.samples_per_batch // len(self.current_types)
        for t in self.current_types:
            for _ in range(n_per):
                X.append(self.centroids[t] + self.rng.randn(self.n_features) * 2.2)
                y.append(t)

        X, y = np.array(X), np.array(y)
        idx = self.rng.permutation(len(X))
        return X[idx], y[idx]


class RecurringDriftStream:
    """
    Alternates between two distributions A and B every 5 batches.

    B has the structure of A shifted by 20 units, so a configuration that
    worked on A is worth remembering for A's return. 85:15 imbalance.
    """

    def __init__(self, n_features=10, n_types=5, samples_per_batch=100, seed=43, phase_length=5):
        self.n_features = n_features
        self.n_types = n_types
        self.samples_per_batch = samples_per_batch
        self.phase_length = phase_length
        self.rng = np.random.RandomState(seed)

        self.centroids_A = self._ring(0.0)
        self.centroids_B = self._ring(20.0)
        self.batch_count = 0

    def _ring(self, shift):
        centroids = {}
        for i in range(self.n_types):
            angle = (2 * np.pi * i) / self.n_types
            c = np.zeros(self.n_features)
            c[0] = 10 * np.cos(angle) + shift
            c[1] = 10 * np.sin(angle) + shift
            c[2:] = self.rng.randn(self.n_features - 2) * 0.3
            centroids[i] = c
        return centroids

    def current_distribution(self):
        return 'A' if (self.batch_count // self.phase_length) % 2 == 0 else 'B'

    def get_batch(self):
        centroids = self.centroids_A if self.current_distribution() == 'A' else self.centroids_B
        self.batch_count += 1

        X, y = [], []

        # 85% majority class
        n_major = int(self.samples_per_batch * 0.85)
        for _ in range(n_major):
            X.append(centroids[0] + self.rng.randn(self.n_features) * 1.5)
            y.append(0)

        n_minor = self.samples_per_batch - n_major
        minor_per = max(1, n_minor // (self.n_types - 1))
        for t in range(1, self.n_types):
            for _ in range(minor_per):
                X.append(centroids[t] + self.rng.randn(self.n_features) * 1.5)
                y.append(t)

        X, y = np.array(X), np.array(y)
        idx = self.rng.permutation(len(X))
        return X[idx], y[idx]


class SuddenRecurringDriftStream(RecurringDriftStream):
    """
    Abrupt label permutation every 4 batches on a fixed feature geometry.

    The centroids never move; instead the class assigned to each centroid is
    rotated, so every switch invalidates what the learners know at once.
    """

    def __init__(self, n_features=10, n_types=4, samples_per_batch=100, seed=44, phase_length=4):
        super().__init__(n_features=n_features, n_types=n_types, samples_per_batch=samples_per_batch,
                         seed=seed, phase_length=phase_length)

    def get_batch(self):
        shift = self.batch_count // self.phase_length
        self.batch_count += 1

        X, y = [], []
        n_per = self.samples_per_batch // self.n_types
        for t in range(self.n_types):
            for _ in range(n_per):
                X.append(self.centroids_A[t] + self.rng.randn(self.n_features) * 1.5)
                y.append((t + shift) % self.n_types)

        X, y = np.array(X), np.array(y)
        idx = self.rng.permutation(len(X))
        return X[idx], y[idx]


# ==============================================================================
# MODEL WRAPPERS
# ==============================================================================

class RiverStreamWrapper:
    """Batch partial_fit / predict over a river classifier."""

    def __init__(self, model):
        self.model = model

    def partial_fit(self, X, y):
        for i in range(len(X)):
            x_dict = {f'f{j}': float(X[i, j]) for j in range(X.shape[1])}
            self.model.learn_one(x_dict, int(y[i]))

    def predict(self, X):
        predictions = []
        for i in range(len(X)):
            x_dict = {f'f{j}': float(X[i, j]) for j in range(X.shape[1])}
            pred = self.model.predict_one(x_dict)
            predictions.append(pred if pred is not None else 0)
        return np.array(predictions)


def make_river_baselines(seed=42):
    def hoeffding():
        return tree.HoeffdingTreeClassifier(grace_period=200, leaf_prediction='mc', delta=0.01, tau=0.05)

    return {
        'Hoeffding Tree': RiverStreamWrapper(hoeffding()),
        'ARF': RiverStreamWrapper(forest.ARFClassifier(
            n_models=10, seed=seed, grace_period=200, delta=0.01, metric=metrics.BalancedAccuracy())),
        'Leveraging Bagging': RiverStreamWrapper(
            ensemble.LeveragingBaggingClassifier(model=hoeffding(), n_models=5, seed=seed)),
        'ADWIN Bagging': RiverStreamWrapper(
            ensemble.ADWINBaggingClassifier(model=hoeffding(), n_models=5, seed=seed)),
        'Online Bagging': RiverStreamWrapper(
            ensemble.BaggingClassifier(model=hoeffding(), n_models=5, seed=seed)),
    }


# ==============================================================================
# SINGLE RUN EXPERIMENT
# ==============================================================================

def build_models(generator, name, seed=42):
    models = {}

    models[REFERENCE_MODEL] = make_eocd(generator, name, seed=seed)
    models['EOCD-noopt'] = make_eocd(generator, name, seed=seed, use_optimization=False)
    models['EOCD-periodic'] = make_eocd(generator, name, seed=seed,
                                        use_optimization_frequency=True, optimization_frequency=500)
    models['EOCD-thread'] = make_eocd(generator, name, seed=seed, use_thread=True)
    models['EOCD-adwin'] = make_eocd(generator, name, seed=seed,
                                     drift_detector=RiverChangeDetector(ADWIN()))
    models['HDWM'] = make_hdwm(generator, seed=seed)
    models.update(make_river_baselines(seed=seed))
    return models


def run_single_experiment(generator, name, n_batches=20, seed=42, run_number=1, total_runs=5):
    """Run one complete prequential experiment with the given seed"""

    models = build_models(generator, name, seed=seed)
    results = {n: {'ba': [], 'f1': [], 'min_f1': [], 'time': []} for n in models}

    for batch in range(n_batches):
        X_batch, y_batch = generator.get_batch()

        for model_idx, (model_name, model) in enumerate(models.items()):
            # Test
            if batch == 0:
                y_pred = np.zeros(len(y_batch), dtype=int)
            else:
                y_pred = model.predict(X_batch)

            ba = balanced_accuracy_score(y_batch, y_pred)
            f1_macro = f1_score(y_batch, y_pred, average='macro', zero_division=0)

            minority_mask = y_batch != 0
            if np.sum(minority_mask) > 0:
                min_f1 = f1_score(y_batch[minority_mask], y_pred[minority_mask], average='macro', zero_division=0)
            else:
                min_f1 = 0.0

            # Train
            t0 = time.time()
            model.partial_fit(X_batch, y_batch)
            train_time = time.time() - t0

            results[model_name]['ba'].append(ba)
            results[model_name]['f1'].append(f1_macro)
            results[model_name]['min_f1'].append(min_f1)
            results[model_name]['time'].append(train_time)

            print(f"  Trial {run_number}/{total_runs} (seed={seed}): B{batch+1}/{n_batches} "
                  f"[{model_idx+1}/{len(models)}] {model_name:<22} BA:{ba:.3f} MinF1:{min_f1:.3f} "
                  f"time:{train_time:.3f}")

    for model_name, model in models.items():
        if isinstance(model, EnsembleOptimizationClassifier):
            model.wait_for_optimization(timeout=model.max_seconds)
            model.close()
            logger.info("%s: %d drifts, %d optimizations installed, %d dropped; %s",
                        model_name, model.drifts_detected, model.optimizations_installed,
                        model.optimizations_dropped, model.summary())

    return results


# ==============================================================================
# MULTI-RUN EXPERIMENT
# ==============================================================================

def run_multirun_experiment(generator_class, generator_args, exp_name, n_runs=5, n_batches=20):
    """
    Run experiment multiple times with different seeds

    Returns:
        all_runs: List of results dicts (one per run)
        aggregated: Dict with mean/std for each model
    """

    print(f"\n{'='*80}")
    print(f"{exp_name.upper()}")
    print(f"{'='*80}")
    print(f"Running {n_runs} independent trials ({n_batches} batches each)...")

    all_runs = []
    trial_times = []

    for run in range(n_runs):
        seed = 42 + run * 10

        print(f"\n  === Trial {run+1}/{n_runs} (seed={seed}) ===")
        trial_start = time.time()

        generator = generator_class(**{**generator_args, 'seed': seed})
        results = run_single_experiment(generator, exp_name, n_batches=n_batches, seed=seed,
                                        run_number=run+1, total_runs=n_runs)
        all_runs.append(results)

        trial_time = time.time() - trial_start
        trial_times.append(trial_time)
        print(f"  Trial {run+1} completed in {trial_time:.1f}s")

    print(f"\nAll trials complete! Average: {np.mean(trial_times):.1f}s per trial")

    return all_runs, aggregate_runs(all_runs)


def aggregate_runs(all_runs, final_window=5):
    """Aggregate multiple runs into mean ± std"""

    model_names = list(all_runs[0].keys())
    aggregated = {}

    for model_name in model_names:
        ba_all = np.array([run[model_name]['ba'] for run in all_runs])  # (n_runs, n_batches)
        f1_all = np.array([run[model_name]['f1'] for run in all_runs])
        minf1_all = np.array([run[model_name]['min_f1'] for run in all_runs])
        time_all = np.array([run[model_name]['time'] for run in all_runs])

        avg_ba_per_run = np.mean(ba_all, axis=1)
        final_ba_per_run = np.mean(ba_all[:, -final_window:], axis=1)
        final_f1_per_run = np.mean(f1_all[:, -final_window:], axis=1)
        final_minf1_per_run = np.mean(minf1_all[:, -final_window:], axis=1)

        aggregated[model_name] = {
            'ba_per_batch_mean': np.mean(ba_all, axis=0),
            'ba_per_batch_std': np.std(ba_all, axis=0),

            'avg_ba': np.mean(avg_ba_per_run),
            'avg_ba_std': np.std(avg_ba_per_run),
            'final_ba': np.mean(final_ba_per_run),
            'final_ba_std': np.std(final_ba_per_run),

            'avg_f1': np.mean(f1_all),
            'avg_f1_std': np.std(np.mean(f1_all, axis=1)),
            'final_f1': np.mean(final_f1_per_run),
            'final_f1_std': np.std(final_f1_per_run),

            'avg_minf1': np.mean(minf1_all),
            'avg_minf1_std': np.std(np.mean(minf1_all, axis=1)),
            'final_minf1': np.mean(final_minf1_per_run),
            'final_minf1_std': np.std(final_minf1_per_run),

            'time_mean': np.mean(time_all),
            'time_std': np.std(time_all),

            # Raw per-run values for significance tests
            'final_ba_values': final_ba_per_run,
            'final_f1_values': final_f1_per_run,
            'final_minf1_values': final_minf1_per_run,
            'final_avg_ba_values': avg_ba_per_run,
        }

    return aggregated


# ==============================================================================
# REPORTING FUNCTIONS
# ==============================================================================

def print_aggregate_results(aggregated, exp_name):
    """Print aggregated results with mean ± std, ranked by average BA"""

    print(f"\n{'='*140}")
    print(f"{exp_name} - AGGREGATED RESULTS (Mean ± Std over runs)")
    print(f"{'='*140}")
    print(f"{'Model':<25} {'Avg BA':<18} {'Avg MinF1':<18} {'Final BA':<18} {'Final F1':<18} "
          f"{'Final MinF1':<18} {'Time/batch (s)':<18}")
    print(f"{'-'*140}")

    rankings = sorted(aggregated.items(), key=lambda x: x[1]['avg_ba'], reverse=True)

    for rank, (model_name, data) in enumerate(rankings, 1):
        avg_ba_str = f"{data['avg_ba']:.4f}±{data['avg_ba_std']:.4f}"
        avg_minf1_str = f"{data['avg_minf1']:.4f}±{data['avg_minf1_std']:.4f}"
        final_ba_str = f"{data['final_ba']:.4f}±{data['final_ba_std']:.4f}"
        final_f1_str = f"{data['final_f1']:.4f}±{data['final_f1_std']:.4f}"
        final_minf1_str = f"{data['final_minf1']:.4f}±{data['final_minf1_std']:.4f}"
        time_str = f"{data['time_mean']:.4f}±{data['time_std']:.4f}"
        print(f"{rank}. {model_name:<22} {avg_ba_str:<18} {avg_minf1_str:<18} {final_ba_str:<18} "
              f"{final_f1_str:<18} {final_minf1_str:<18} {time_str:<18}")

    print(f"{'-'*140}")


def _cliffs_delta(x, y):
    """
    Cliff's delta effect size: P(x>y) - P(x<y)
    Returns value in [-1, 1]. Positive => x tends to be larger.
    """
    x = np.asarray(x)
    y = np.asarray(y)
    gt = 0
    lt = 0
    for xi in x:
        gt += np.sum(xi > y)
        lt += np.sum(xi < y)
    return (gt - lt) / (len(x) * len(y))


def _significance(p_value):
    if p_value < 0.001:
        return "*** (p<0.001)"
    if p_value < 0.01:
        return "** (p<0.01)"
    if p_value < 0.05:
        return "* (p<0.05)"
    return "n.s."


def print_statistical_tests(aggregated, exp_name, alpha=0.05):
    """t-tests of EOCD against every model, then Wilcoxon + Cliff's delta for EOCD ablations."""

    print(f"\n{'='*120}")
    print(f"{exp_name} - STATISTICAL SIGNIFICANCE TESTS (t-tests)")
    print(f"{'='*120}")
    print(f"{'Comparison':<50} {'Metric':<12} {'p-value':<15} {'Significant?':<20}")
    print(f"{'-'*120}")

    reference = aggregated[REFERENCE_MODEL]
    for model_name, data in aggregated.items():
        if model_name == REFERENCE_MODEL:
            continue

        for metric in ['ba', 'f1', 'minf1', 'avg_ba']:
            ref_values = reference[f'final_{metric}_values']
            other_values = data[f'final_{metric}_values']
            if len(ref_values) < 2 or len(other_values) < 2:
                continue

            _, p_value = scipy_stats.ttest_ind(ref_values, other_values)
            ref_mean = np.mean(ref_values)
            other_mean = np.mean(other_values)
            direction = ">" if ref_mean > other_mean else "<"

            comparison = f"{REFERENCE_MODEL} ({ref_mean:.4f}) {direction} {model_name} ({other_mean:.4f})"
            metric_name = metric.upper() if metric != 'minf1' else 'MinF1'
            print(f"{comparison:<50} {metric_name:<12} {p_value:<15.6f} {_significance(p_value):<20}")

    print(f"\nSignificance levels: *** p<0.001, ** p<0.01, * p<0.05, n.s. = not significant")

    print("\nAblations: Wilcoxon signed-rank + Cliff's delta (paired per-run average BA)")
    x = np.asarray(reference['final_avg_ba_values'])
    for model_name in aggregated:
        if not model_name.startswith(REFERENCE_MODEL + '-'):
            continue
        y = np.asarray(aggregated[model_name]['final_avg_ba_values'])
        if len(x) != len(y) or len(x) < 2:
            print(f"  {REFERENCE_MODEL} vs {model_name}: skipped (requires paired per-run vectors)")
            continue
        if np.allclose(x, y):
            print(f"  {REFERENCE_MODEL} vs {model_name}: identical per-run scores")
            continue
        try:
            _, w_p = scipy_stats.wilcoxon(x, y, alternative="two-sided", zero_method="wilcox")
        except ValueError as e:
            print(f"  {REFERENCE_MODEL} vs {model_name}: Wilcoxon failed ({e})")
            continue
        sig = "SIGNIFICANT" if w_p < alpha else "n.s."
        print(f"  {REFERENCE_MODEL} vs {model_name}: Wilcoxon p={w_p:.6g} ({sig}, α={alpha}); "
              f"Cliff's δ={_cliffs_delta(x, y):.3f}")
    print("=" * 120)


def warmup_numba():
    """Compile the fitness kernel once so the first optimization is not charged for it."""
    generator = SevereDriftStream(n_features=5, n_types=3, samples_per_batch=60, seed=999)
    model = make_eocd(generator, "warmup", seed=999, initial_ensemble_size=3, hidden_member_size=2,
                      max_members_size=5, epochs=2, use_optimization_frequency=True,
                      optimization_frequency=50)
    X, y = generator.get_batch()
    t0 = time.time()
    model.partial_fit(X, y)
    print(f"Warmup complete in {time.time() - t0:.2f}s")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(name)s %(levelname)s %(message)s')

    print("\n" + "=" * 80)
    print("EOCD + STREAMING BASELINES: Multi-Run Evaluation")
    print("=" * 80)

    warmup_numba()

    experiments = [
        {
            'name': 'Severe Drift',
            'generator': SevereDriftStream,
            'args': {'n_features': 10, 'n_types': 5, 'samples_per_batch': 250}
        },
        {
            'name': 'Recurring Drift (5-batch phases)',
            'generator': RecurringDriftStream,
            'args': {'n_features': 10, 'n_types': 5, 'samples_per_batch': 200}
        },
        {
            'name': 'Sudden Drift (label rotation)',
            'generator': SuddenRecurringDriftStream,
            'args': {'n_features': 10, 'n_types': 4, 'samples_per_batch': 200}
        },
    ]

    all_experiment_results = {}
    for exp_idx, exp in enumerate(experiments, 1):
        print(f"\n{'#'*80}")
        print(f"EXPERIMENT {exp_idx}/{len(experiments)}: {exp['name']}")
        print(f"{'#'*80}")

        all_runs, aggregated = run_multirun_experiment(exp['generator'], exp['args'], exp['name'], n_runs=5)
        all_experiment_results[exp['name']] = aggregated

        print_aggregate_results(aggregated, exp['name'])
        print_statistical_tests(aggregated, exp['name'])

    print("\n" + "=" * 100)
    print(f"FINAL SUMMARY: {REFERENCE_MODEL} average BA across experiments")
    print("=" * 100)
    print(f"{'Experiment':<35} {REFERENCE_MODEL + ' avg BA':<20} {'Best Baseline':<20} {'Best avg BA':<15}")
    print("-" * 100)
    for exp_name, agg in all_experiment_results.items():
        best_name, best = max(((n, d) for n, d in agg.items() if n != REFERENCE_MODEL),
                              key=lambda item: item[1]['avg_ba'])
        ref = agg[REFERENCE_MODEL]
        print(f"{exp_name:<35} {ref['avg_ba']:.4f}±{ref['avg_ba_std']:.4f}{'':<6} "
              f"{best_name:<20} {best['avg_ba']:.4f}")
    print("=" * 100)
