"""
Training utilities for linear-chain CRF classifiers.

Includes:
- The regularized log-conditional-likelihood objective
- The training loop with iterative feature pruning
- Model identifiers
- K-fold cross-validation
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.model_selection import KFold

from .cliquetree import CliqueTree, CRFWeights, label_tuple_arrays
from .dataset import EncodedDocument
from .evaluation import evaluate_documents
from .exceptions import CalibrationError, DataShapeError
from .index import Index
from .optimization import QNMinimizer, SurpriseConvergence
from .preprocessing import copy_document

logger = logging.getLogger(__name__)


# ==============================================================================
# Objective
# ==============================================================================

class CRFLogConditionalObjectiveFunction:
    """
    Negative conditional log-likelihood of the gold label sequences plus a
    Gaussian prior on the weights.

    The point ``x`` is the flat weight vector of ``CRFWeights``. Calling the
    object returns ``(value, gradient)``; the last evaluation is cached.

    Args:
        data: Encoded documents, ``data[d][j][k]`` feature ids
        labels: Gold label ids per document
        label_indices: Label tuple Index per clique order
        feature_order: Clique order of each feature
        num_classes: Number of labels
        sigma: Standard deviation of the Gaussian prior
        background: Id of the background label
    """

    def __init__(
        self,
        data: Sequence[EncodedDocument],
        labels: Sequence[np.ndarray],
        label_indices: Sequence[Index],
        feature_order: np.ndarray,
        num_classes: int,
        sigma: float = 1.0,
        background: int = 0
    ):
        self.data = data
        self.labels = labels
        self.label_indices = label_indices
        self.feature_order = np.asarray(feature_order, dtype=np.int64)
        self.num_classes = num_classes
        self.sigma = sigma
        self.background = background
        self.window_size = len(label_indices)
        self.label_sizes = [len(index) for index in label_indices]
        self.tuple_arrays = label_tuple_arrays(label_indices)
        self.template = CRFWeights(self.feature_order, self.label_sizes)
        self.empirical = self._empirical_counts()
        self._cache_x: Optional[np.ndarray] = None
        self._cache: Optional[Tuple[float, np.ndarray]] = None

    def domain_dimension(self) -> int:
        return self.template.size

    def to_weights(self, x: np.ndarray) -> CRFWeights:
        return CRFWeights(self.feature_order, self.label_sizes, np.array(x, dtype=np.float64))

    def _empirical_counts(self) -> np.ndarray:
        counts = np.zeros(self.template.size)
        offsets = self.template.offsets
        W = self.window_size
        for d, (doc, gold) in enumerate(zip(self.data, self.labels)):
            if np.any(gold < 0):
                raise DataShapeError(f"document {d}: gold labels must be known for training")
            for j, row in enumerate(doc):
                for k in range(W):
                    window = tuple(
                        int(gold[i]) if i >= 0 else self.background
                        for i in range(j - k, j + 1)
                    )
                    t = self.label_indices[k].index_of(window)
                    if t < 0 or len(row[k]) == 0:
                        continue
                    np.add.at(counts, offsets[row[k]] + t, 1.0)
        return counts

    def __call__(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        if self._cache_x is not None and np.array_equal(x, self._cache_x):
            return self._cache
        weights = self.to_weights(x)
        offsets = weights.offsets
        expected = np.zeros_like(x, dtype=np.float64)
        log_z_total = 0.0
        try:
            for doc in self.data:
                tree = CliqueTree.calibrate(
                    doc, weights, self.label_indices, self.num_classes,
                    self.background, self.tuple_arrays
                )
                log_z_total += tree.log_z
                for j, row in enumerate(doc):
                    for k, ids in enumerate(row):
                        tuples = self.tuple_arrays[k]
                        if len(ids) == 0 or len(tuples) == 0:
                            continue
                        probs = tree.order_marginals(j, tuples)
                        idx = offsets[ids][:, None] + np.arange(len(tuples))
                        np.add.at(expected, idx, np.broadcast_to(probs, idx.shape))
        except CalibrationError as e:
            raise SurpriseConvergence(str(e))

        sigma_sq = self.sigma ** 2
        value = -(float(self.empirical @ x) - log_z_total) + float(x @ x) / (2 * sigma_sq)
        gradient = expected - self.empirical + x / sigma_sq
        self._cache_x = np.array(x, copy=True)
        self._cache = (value, gradient)
        return self._cache

    def value_at(self, x: np.ndarray) -> float:
        return self(x)[0]

    def derivative_at(self, x: np.ndarray) -> np.ndarray:
        return self(x)[1]


# ==============================================================================
# Training Functions
# ==============================================================================

def train_crf(
    classifier,
    documents: Sequence[Sequence],
    initial_weights: Optional[np.ndarray] = None,
    verbose: bool = False
) -> Dict[str, Any]:
    """
    Fit a classifier's weights on prepared documents.

    Runs ``num_times_prune_features + 1`` rounds of encoding and
    minimization; between rounds, features whose weight range does not
    exceed ``feature_diff_thresh`` are dropped.

    Args:
        classifier: CRFClassifier whose builder and weights are filled in
        documents: Prepared, labeled documents
        initial_weights: Flat starting point for the first round
        verbose: Print progress

    Returns:
        Training history dict
    """
    cfg = classifier.config
    builder = classifier.builder
    builder.make_answer_arrays_and_tag_index(documents)

    history = {
        "rounds": [],
        "num_features": [],
        "num_weights": [],
        "final_value": None,
    }
    rounds = cfg.num_times_prune_features + 1
    x0 = initial_weights

    for round_idx in range(rounds):
        data, labels = builder.documents_to_data_and_labels(documents)
        objective = CRFLogConditionalObjectiveFunction(
            data, labels, builder.label_indices, builder.feature_order,
            builder.num_classes, cfg.sigma, background=0
        )
        if x0 is None or len(x0) != objective.domain_dimension():
            if x0 is not None:
                logger.warning(
                    "Initial weights have %d entries, model needs %d; starting from zero",
                    len(x0), objective.domain_dimension()
                )
            x0 = np.zeros(objective.domain_dimension())

        if verbose:
            print(f"\n{'=' * 60}")
            print(f"Training round {round_idx + 1}/{rounds}: "
                  f"{len(builder.feature_index)} features, {objective.domain_dimension()} weights")
            print(f"{'=' * 60}")

        def monitor(iteration, x, value, objective=objective):
            if cfg.interim_output_freq > 0 and iteration % cfg.interim_output_freq == 0:
                classifier.weights = objective.to_weights(x)
                if cfg.serialize_to:
                    classifier.serialize(f"{cfg.serialize_to}.iter{iteration}")
                logger.info("Interim value at iteration %d: %.6f", iteration, value)

        minimizer = QNMinimizer(
            cfg.qn_size if round_idx == 0 else cfg.qn_size2,
            max_iterations=cfg.max_iterations,
            monitor=monitor,
            verbose=verbose
        )
        x = minimizer.minimize(objective, cfg.tolerance, x0)
        classifier.weights = objective.to_weights(x)
        value = objective.value_at(x)

        history["rounds"].append({
            "round": round_idx + 1,
            "iterations": minimizer.iterations,
            "values": list(minimizer.values),
            "final_value": value,
        })
        history["num_features"].append(len(builder.feature_index))
        history["num_weights"].append(objective.domain_dimension())
        history["final_value"] = value

        if round_idx < rounds - 1:
            removed = classifier.drop_features_below_threshold(cfg.feature_diff_thresh)
            if verbose:
                print(f"  pruned {removed} features")
            x0 = classifier.weights.flat.copy()

    builder.lock()
    classifier.weights.freeze()
    return history


def drop_features_below_threshold(
    feature_index: Index,
    feature_order: np.ndarray,
    weights: CRFWeights,
    threshold: float
) -> Tuple[Index, np.ndarray, CRFWeights]:
    """
    Keep only features whose weight range (max - min) is strictly greater
    than ``threshold``.

    Returns:
        (new feature Index, new order map, new weights)
    """
    keep = []
    for f, row in enumerate(weights.to_rows()):
        if len(row) and float(row.max() - row.min()) > threshold:
            keep.append(f)

    new_index = Index(feature_index.get(f) for f in keep)
    new_order = np.asarray(feature_order, dtype=np.int64)[keep]
    new_weights = CRFWeights.from_rows(
        [np.array(weights.row(f)) for f in keep], new_order, weights.label_sizes
    )
    logger.info("Kept %d of %d features (threshold %g)", len(keep), len(feature_index), threshold)
    return new_index, new_order, new_weights


# ==============================================================================
# Model Identifiers
# ==============================================================================

def generate_model_id(**params) -> str:
    """Generate unique model ID from hyperparameters."""
    param_str = json.dumps(params, sort_keys=True, default=str)
    return hashlib.md5(param_str.encode()).hexdigest()[:16]


# ==============================================================================
# Cross-Validation
# ==============================================================================

def run_kfold_cv(
    model_class,
    model_kwargs: Dict,
    documents: List[List],
    n_folds: int = 5,
    random_state: int = 42,
    verbose: bool = True
) -> List[Dict]:
    """
    Run k-fold cross-validation over documents.

    Args:
        model_class: Classifier class to instantiate
        model_kwargs: Keyword arguments for the classifier
        documents: Labeled documents
        n_folds: Number of CV folds
        random_state: Random seed
        verbose: Print progress

    Returns:
        List of fold result dicts
    """
    kfold = KFold(n_splits=n_folds, shuffle=True, random_state=random_state)
    indices = np.arange(len(documents))

    fold_results = []
    for fold_idx, (train_idx, val_idx) in enumerate(kfold.split(indices), 1):
        if verbose:
            print(f"\n--- Fold {fold_idx}/{n_folds} ---")

        train_docs = [copy_document(documents[i]) for i in train_idx]
        val_docs = [copy_document(documents[i]) for i in val_idx]
        for doc in val_docs:
            for token in doc:
                if token.gold_answer is None:
                    token.gold_answer = token.answer

        model = model_class(**model_kwargs)
        history = model.train(train_docs, verbose=verbose)
        predicted = model.classify_documents(val_docs)
        results = evaluate_documents(predicted, model.config.background_symbol)

        fold_results.append({
            "fold": fold_idx,
            "train_size": len(train_idx),
            "val_size": len(val_idx),
            "final_value": history["final_value"],
            "results": results,
            "history": history
        })

    if verbose:
        f1s = [r["results"]["micro"]["f1"] for r in fold_results]
        print(f"\n{'=' * 60}")
        print(f"CV Summary")
        print(f"{'=' * 60}")
        print(f"Mean F1: {np.mean(f1s):.4f} ± {np.std(f1s):.4f}")
        print(f"{'=' * 60}")

    return fold_results
