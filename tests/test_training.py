import numpy as np
import pytest
from scipy.special import logsumexp

from chaincrf.cliquetree import CRFWeights
from chaincrf.exceptions import DataShapeError
from chaincrf.index import Index
from chaincrf.models import CRFClassifier
from chaincrf.optimization import QNMinimizer, SurpriseConvergence
from chaincrf.training import (
    CRFLogConditionalObjectiveFunction, drop_features_below_threshold, generate_model_id,
    run_kfold_cv
)

from conftest import TOY_CORPUS, brute_force_scores, make_toy_documents, random_model, toy_config


def make_objective(n=4, num_classes=3, window=2, seed=0, sigma=1.0):
    data, weights, label_indices = random_model(n, num_classes, window, seed=seed)
    labels = [np.array([(j * 2 + 1) % num_classes for j in range(n)], dtype=np.int64)]
    objective = CRFLogConditionalObjectiveFunction(
        [data], labels, label_indices, weights.feature_order, num_classes, sigma=sigma
    )
    return objective, data, labels, label_indices


class TestObjective:

    def test_value_at_zero_is_uniform(self):
        objective, _, _, _ = make_objective(n=4, num_classes=3)
        x = np.zeros(objective.domain_dimension())
        assert objective.value_at(x) == pytest.approx(4 * np.log(3))

    def test_value_matches_brute_force(self):
        objective, data, labels, label_indices = make_objective(sigma=2.0)
        x = np.random.default_rng(1).normal(scale=0.5, size=objective.domain_dimension())
        weights = objective.to_weights(x)
        scores = brute_force_scores(data, weights, label_indices, 3)
        gold = tuple(int(c) for c in labels[0])
        expected = -(scores[gold] - logsumexp(list(scores.values()))) + float(x @ x) / 8.0
        assert objective.value_at(x) == pytest.approx(expected)

    @pytest.mark.parametrize("window", [1, 2, 3])
    def test_gradient_matches_finite_differences(self, window):
        objective, _, _, _ = make_objective(n=3, num_classes=2, window=window, seed=4)
        rng = np.random.default_rng(2)
        x = rng.normal(scale=0.3, size=objective.domain_dimension())
        grad = objective.derivative_at(x).copy()
        eps = 1e-6
        for i in range(0, len(x), max(1, len(x) // 10)):
            step = np.zeros_like(x)
            step[i] = eps
            numeric = (objective.value_at(x + step) - objective.value_at(x - step)) / (2 * eps)
            assert grad[i] == pytest.approx(numeric, rel=1e-4, abs=1e-6)

    def test_last_evaluation_is_cached(self):
        objective, _, _, _ = make_objective()
        x = np.full(objective.domain_dimension(), 0.1)
        assert objective(x) is objective(x.copy())

    def test_calibration_failure_is_surprise_convergence(self):
        objective, _, _, _ = make_objective()
        with pytest.raises(SurpriseConvergence):
            objective(np.full(objective.domain_dimension(), np.nan))

    def test_calibration_failure_mid_run_keeps_best_point(self):
        objective, _, _, _ = make_objective(sigma=2.0)
        calls = []

        def fn(x):
            calls.append(1)
            if len(calls) > 4:
                x = np.full_like(x, np.nan)
            return objective(x)

        minimizer = QNMinimizer(m=5)
        x0 = np.zeros(objective.domain_dimension())
        best = minimizer.minimize(fn, 1e-12, x0)
        assert len(calls) == 5
        assert np.all(np.isfinite(best))
        assert objective.value_at(best) == pytest.approx(min(minimizer.values))
        assert objective.value_at(best) <= objective.value_at(x0)

    def test_unknown_gold_labels(self):
        data, weights, label_indices = random_model(2, 2, 2)
        with pytest.raises(DataShapeError):
            CRFLogConditionalObjectiveFunction(
                [data], [np.array([0, -1])], label_indices, weights.feature_order, 2
            )

    def test_empirical_counts(self):
        data, weights, label_indices = random_model(2, 2, 1, density=1.0, features_per_order=1)
        objective = CRFLogConditionalObjectiveFunction(
            [data], [np.array([1, 1])], label_indices, weights.feature_order, 2
        )
        # the single feature fires at both positions with label 1
        assert list(objective.empirical) == [0.0, 2.0]


class TestFeaturePruning:

    def test_drop_keeps_strictly_varying_rows(self):
        index = Index(["a|C", "b|C", "c|CpC"])
        weights = CRFWeights([0, 0, 1], [2, 4], np.array([1.0, 1.0, 0.0, 0.5, 0, 0, 0, 0.25]))
        new_index, order, new_weights = drop_features_below_threshold(index, [0, 0, 1], weights, 0.25)
        assert new_index.to_list() == ["b|C"]
        assert list(order) == [0]
        assert list(new_weights.flat) == [0.0, 0.5]

    def test_constant_row_does_not_change_decoding(self):
        clf = CRFClassifier(toy_config())
        clf.train(make_toy_documents())
        f = clf.feature_index.index_of("John-WORD|C")
        flat = clf.weights.flat.copy()
        flat[clf.weights.offsets[f]:clf.weights.offsets[f + 1]] = 0.5
        clf.weights = CRFWeights(clf.builder.feature_order, clf.weights.label_sizes, flat)

        before = [[t.answer for t in clf.classify(doc)] for doc in make_toy_documents()]
        assert clf.drop_features_below_threshold(0.0) == 1
        assert "John-WORD|C" not in clf.feature_index
        after = [[t.answer for t in clf.classify(doc)] for doc in make_toy_documents()]
        assert after == before

    def test_pruning_rounds(self):
        clf = CRFClassifier(toy_config(num_times_prune_features=1, feature_diff_thresh=0.05))
        history = clf.train(make_toy_documents())
        assert [r["round"] for r in history["rounds"]] == [1, 2]
        assert history["num_features"][1] <= history["num_features"][0]
        assert history["num_weights"][1] == clf.weights.size
        assert history["final_value"] == history["rounds"][-1]["final_value"]


class TestTrainCRF:

    def test_fits_training_data(self, trained_classifier):
        for words, answers in TOY_CORPUS:
            doc = trained_classifier.classify_words(words)
            assert [t.answer for t in doc] == answers

    def test_model_is_frozen(self, trained_classifier):
        assert trained_classifier.feature_index.is_locked
        assert not trained_classifier.weights.flat.flags.writeable

    def test_history(self):
        clf = CRFClassifier(toy_config(max_iterations=5))
        history = clf.train(make_toy_documents())
        assert len(history["rounds"]) == 1
        assert history["rounds"][0]["iterations"] <= 5
        values = history["rounds"][0]["values"]
        assert values[-1] < values[0]

    def test_interim_serialization(self, tmp_path):
        target = str(tmp_path / "model.ser")
        clf = CRFClassifier(toy_config(max_iterations=4, interim_output_freq=2, serialize_to=target))
        clf.train(make_toy_documents())
        assert (tmp_path / "model.ser").exists()
        assert (tmp_path / "model.ser.iter2").exists()

    def test_initial_weights(self, tmp_path, trained_classifier):
        path = tmp_path / "init.npy"
        np.save(path, np.array(trained_classifier.weights.flat))
        clf = CRFClassifier(toy_config(initial_weights=str(path), max_iterations=3))
        history = clf.train(make_toy_documents())
        uniform = sum(len(words) for words, _ in TOY_CORPUS) * np.log(3)
        assert history["rounds"][0]["values"][0] < 0.5 * uniform

    def test_no_documents(self):
        with pytest.raises(DataShapeError):
            CRFClassifier(toy_config()).train([])


class TestModelIds:

    def test_deterministic(self):
        a = generate_model_id(max_left=1, sigma=1.0)
        assert a == generate_model_id(sigma=1.0, max_left=1)
        assert a != generate_model_id(max_left=2, sigma=1.0)
        assert len(a) == 16


class TestCrossValidation:

    def test_folds(self, capsys):
        folds = run_kfold_cv(CRFClassifier, {"config": toy_config()}, make_toy_documents(),
                             n_folds=2, random_state=0, verbose=True)
        assert [f["fold"] for f in folds] == [1, 2]
        assert sum(f["val_size"] for f in folds) == 4
        for fold in folds:
            assert 0.0 <= fold["results"]["micro"]["f1"] <= 1.0
            assert fold["results"]["n_documents"] == fold["val_size"]
        assert "CV Summary" in capsys.readouterr().out
