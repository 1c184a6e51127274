"""
Factor tables and log-space forward-backward for a linear-chain CRF.

Each position ``j`` of a sequence owns a table over the labels of the
window ``y[j-W+1 .. j]`` (``W`` = window size), axis 0 being the oldest
position. Tables hold log potentials; after calibration each holds the
unnormalised log marginal of its window, so ``table - log_z`` is the log
probability of the window.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.special import logsumexp

from .exceptions import CalibrationError, DataShapeError
from .index import Index
from .inference import SequenceListener, SequenceModel

logger = logging.getLogger(__name__)

NEG_INF = float("-inf")
HOLE = -1


# ==============================================================================
# Weights
# ==============================================================================

class CRFWeights:
    """
    Ragged weight matrix: feature ``f`` has one weight per label tuple of
    its clique order. Stored as one flat vector plus per-feature offsets.

    Args:
        feature_order: Clique order of each feature
        label_sizes: Number of label tuples per order
        flat: Initial flat weight vector (default: zeros)
    """

    def __init__(
        self,
        feature_order: Sequence[int],
        label_sizes: Sequence[int],
        flat: Optional[np.ndarray] = None
    ):
        self.feature_order = np.asarray(feature_order, dtype=np.int64)
        self.label_sizes = np.asarray(label_sizes, dtype=np.int64)
        sizes = self.label_sizes[self.feature_order] if len(self.feature_order) else np.zeros(0, dtype=np.int64)
        self.offsets = np.concatenate([[0], np.cumsum(sizes)]).astype(np.int64)
        if flat is None:
            flat = np.zeros(int(self.offsets[-1]))
        flat = np.asarray(flat, dtype=np.float64)
        if flat.shape != (int(self.offsets[-1]),):
            raise DataShapeError(
                f"weight vector has shape {flat.shape}, expected ({int(self.offsets[-1])},)"
            )
        self.flat = flat

    @classmethod
    def from_rows(cls, rows: Sequence[np.ndarray], feature_order: Sequence[int],
                  label_sizes: Sequence[int]) -> "CRFWeights":
        flat = np.concatenate([np.asarray(r, dtype=np.float64) for r in rows]) if len(rows) else np.zeros(0)
        return cls(feature_order, label_sizes, flat)

    @property
    def num_features(self) -> int:
        return len(self.feature_order)

    @property
    def size(self) -> int:
        return int(self.offsets[-1])

    def row(self, f: int) -> np.ndarray:
        return self.flat[self.offsets[f]:self.offsets[f + 1]]

    def to_rows(self) -> List[np.ndarray]:
        """Per-feature views into the flat vector."""
        return [self.row(f) for f in range(self.num_features)]

    def freeze(self) -> "CRFWeights":
        self.flat.setflags(write=False)
        return self

    def summed(self, feature_ids: np.ndarray, num_tuples: int) -> np.ndarray:
        """Sum of the weight rows of ``feature_ids`` (all of one order)."""
        if len(feature_ids) == 0:
            return np.zeros(num_tuples)
        idx = self.offsets[feature_ids][:, None] + np.arange(num_tuples)
        return self.flat[idx].sum(axis=0)

    def __len__(self) -> int:
        return self.num_features

    def __repr__(self) -> str:
        return f"CRFWeights(features={self.num_features}, size={self.size})"


def label_tuple_arrays(label_indices: Sequence[Index]) -> List[np.ndarray]:
    """
    Label tuples of each order as an int array of shape (len(index), order + 1).

    Row ``t`` is the tuple with id ``t``; a removed id keeps its row, filled
    with -1, so rows stay aligned with weight columns.
    """
    arrays = []
    for k, index in enumerate(label_indices):
        rows = [t if t is not None else (HOLE,) * (k + 1) for t in index.to_list()]
        arrays.append(np.asarray(rows, dtype=np.int64).reshape(len(rows), k + 1))
    return arrays


def _present(tuples: np.ndarray) -> np.ndarray:
    return np.all(tuples != HOLE, axis=1)


# ==============================================================================
# Clique Tree
# ==============================================================================

class CliqueTree(SequenceModel, SequenceListener):
    """
    Calibrated factor tables of one sequence.

    Also serves as the (unpadded) ``SequenceModel`` used by the Gibbs
    sampler: ``scores_of`` gives the log full conditional of one position,
    up to a constant.
    """

    def __init__(
        self,
        tables: List[np.ndarray],
        potentials: List[np.ndarray],
        log_z: float,
        num_classes: int,
        window_size: int,
        background: int
    ):
        self.tables = tables
        self.potentials = potentials
        self.log_z = log_z
        self.num_classes = num_classes
        self.window_size = window_size
        self.background = background
        self._cond: List[Optional[np.ndarray]] = [None] * len(tables)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def calibrate(
        cls,
        data: Sequence[Sequence[np.ndarray]],
        weights: CRFWeights,
        label_indices: Sequence[Index],
        num_classes: int,
        background: int = 0,
        tuple_arrays: Optional[List[np.ndarray]] = None
    ) -> "CliqueTree":
        """
        Build the factor tables of an encoded sequence and run forward-backward.

        Args:
            data: data[j][k] feature ids at position j for clique order k
            weights: Model weights
            label_indices: Label tuple index per order
            num_classes: Number of labels
            background: Id of the background label
            tuple_arrays: Precomputed ``label_tuple_arrays(label_indices)``

        Returns:
            Calibrated CliqueTree

        Raises:
            CalibrationError: if the partition function is not finite
        """
        W = len(label_indices)
        C = num_classes
        if tuple_arrays is None:
            tuple_arrays = label_tuple_arrays(label_indices)
        non_background = np.array([c for c in range(C) if c != background], dtype=np.int64)

        potentials = []
        for j, row in enumerate(data):
            if len(row) != W:
                raise DataShapeError(f"position {j}: {len(row)} clique orders, expected {W}")
            table = np.zeros((C,) * W)
            for k in range(W):
                tuples = tuple_arrays[k]
                if len(row[k]) == 0 or len(tuples) == 0:
                    continue
                order_table = np.zeros((C,) * (k + 1))
                present = _present(tuples)
                summed = weights.summed(row[k], len(tuples))
                order_table[tuple(tuples[present].T)] = summed[present]
                table += order_table.reshape((1,) * (W - k - 1) + (C,) * (k + 1))
            # window positions before the start of the sequence are background
            for d in range(max(0, W - 1 - j)):
                sl = [slice(None)] * W
                sl[d] = non_background
                table[tuple(sl)] = NEG_INF
            potentials.append(table)

        n = len(potentials)
        tables = [p.copy() for p in potentials]
        messages = [None] * n
        for i in range(1, n):
            m = logsumexp(tables[i - 1], axis=0)
            messages[i] = m
            tables[i] += m[..., None]

        log_z = float(logsumexp(tables[-1])) if n else 0.0
        if not np.isfinite(log_z):
            raise CalibrationError(f"non-finite partition function: {log_z}")

        for i in range(n - 2, -1, -1):
            s = logsumexp(tables[i + 1], axis=-1)
            m = messages[i + 1]
            with np.errstate(invalid="ignore"):
                delta = np.where(np.isneginf(m), NEG_INF, s - m)
            tables[i] += delta[None, ...]

        return cls(tables, potentials, log_z, C, W, background)

    # ------------------------------------------------------------------
    # Marginals
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.tables)

    def window_log_marginal(self, pos: int, length: int) -> np.ndarray:
        """Log joint marginal of y[pos-length+1 .. pos], shape (C,) * length."""
        W = self.window_size
        if not 1 <= length <= W:
            raise ValueError(f"length must be in [1, {W}], got {length}")
        table = self.tables[pos]
        if length < W:
            table = logsumexp(table, axis=tuple(range(W - length)))
        return table - self.log_z

    def log_prob(self, pos: int, labels: Union[int, Sequence[int]]) -> float:
        """Log marginal of ``labels`` ending at ``pos`` (a single label or a tuple)."""
        if isinstance(labels, (int, np.integer)):
            labels = (int(labels),)
        labels = tuple(labels)
        return float(self.window_log_marginal(pos, len(labels))[labels])

    def prob(self, pos: int, labels: Union[int, Sequence[int]]) -> float:
        return float(np.exp(self.log_prob(pos, labels)))

    def marginals(self, pos: int) -> np.ndarray:
        """Distribution over the label at ``pos``."""
        return np.exp(self.window_log_marginal(pos, 1))

    def order_marginals(self, pos: int, tuples: np.ndarray) -> np.ndarray:
        """Marginal probability of each label tuple in ``tuples`` (all of one order)."""
        if len(tuples) == 0:
            return np.zeros(0)
        marg = np.exp(self.window_log_marginal(pos, tuples.shape[1]))
        present = _present(tuples)
        out = np.zeros(len(tuples))
        out[present] = marg[tuple(tuples[present].T)]
        return out

    def cond_log_prob_given_previous(self, pos: int, label: int, previous: Sequence[int]) -> float:
        """
        log P(y[pos] = label | y[pos-W+1 .. pos-1] = previous).

        Returns -inf when the conditioning window itself has probability zero.
        """
        cond = self._cond[pos]
        if cond is None:
            table = self.tables[pos]
            norm = logsumexp(table, axis=-1, keepdims=True)
            with np.errstate(invalid="ignore"):
                cond = np.where(np.isneginf(norm), NEG_INF, table - norm)
            self._cond[pos] = cond
        return float(cond[tuple(previous) + (label,)])

    # ------------------------------------------------------------------
    # Sequence scores
    # ------------------------------------------------------------------

    def _window(self, sequence: Sequence[int], q: int) -> Tuple[int, ...]:
        W = self.window_size
        return tuple(
            sequence[i] if i >= 0 else self.background
            for i in range(q - W + 1, q + 1)
        )

    def unnormalized_score(self, sequence: Sequence[int]) -> float:
        """Sum of log potentials along ``sequence``."""
        return float(sum(self.potentials[q][self._window(sequence, q)] for q in range(len(self))))

    def log_prob_sequence(self, sequence: Sequence[int]) -> float:
        return self.unnormalized_score(sequence) - self.log_z

    # SequenceModel, unpadded

    def length(self) -> int:
        return len(self.tables)

    def left_window(self) -> int:
        return self.window_size - 1

    def right_window(self) -> int:
        return self.window_size - 1

    def possible_labels(self, pos: int) -> List[int]:
        return list(range(self.num_classes))

    def scores_of(self, tags: Sequence[int], pos: int) -> np.ndarray:
        """Log potentials touching ``pos`` for every label at ``pos``, other labels fixed."""
        W = self.window_size
        scores = np.zeros(self.num_classes)
        for q in range(pos, min(len(self), pos + W)):
            window = list(self._window(tags, q))
            window[W - 1 - (q - pos)] = slice(None)
            scores += self.potentials[q][tuple(window)]
        return scores

    def score_of(self, tags: Sequence[int], pos: int) -> float:
        return float(self.scores_of(tags, pos)[tags[pos]])

    def score_of_sequence(self, tags: Sequence[int]) -> float:
        return self.log_prob_sequence(tags)

    # SequenceListener: potentials do not depend on the current labels

    def set_initial_sequence(self, sequence: Sequence[int]):
        pass

    def update_sequence_element(self, sequence: Sequence[int], pos: int, old_value: int):
        pass


class CliqueTreeSequenceModel(SequenceModel):
    """
    Calibrated tree as seen by the best-sequence finders. In padded
    coordinates the ``W - 1`` leading positions are fixed to the background
    label and position ``p`` scores the conditional log probability of
    real position ``p - W + 1`` given the previous ``W - 1`` labels.
    """

    def __init__(self, tree: CliqueTree):
        self.tree = tree
        self.window = tree.window_size
        self._all = list(range(tree.num_classes))
        self._background = [tree.background]

    def length(self) -> int:
        return len(self.tree)

    def left_window(self) -> int:
        return self.window - 1

    def right_window(self) -> int:
        return 0

    def possible_labels(self, pos: int) -> List[int]:
        if pos < self.window - 1:
            return self._background
        return self._all

    def score_of(self, tags: Sequence[int], pos: int) -> float:
        real = pos - self.window + 1
        return self.tree.cond_log_prob_given_previous(real, tags[pos], tags[real:pos])

    def scores_of(self, tags: Sequence[int], pos: int) -> np.ndarray:
        real = pos - self.window + 1
        previous = tags[real:pos]
        return np.array([
            self.tree.cond_log_prob_given_previous(real, label, previous)
            for label in self._all
        ])

    def score_of_sequence(self, tags: Sequence[int]) -> float:
        return float(sum(self.score_of(tags, pos) for pos in range(self.window - 1, self.window - 1 + len(self.tree))))

    def unpad(self, tags: Sequence[int]) -> List[int]:
        return list(tags[self.window - 1:self.window - 1 + len(self.tree)])
