import itertools

import numpy as np
import pytest

from chaincrf.cliquetree import CRFWeights
from chaincrf.config import CRFConfig
from chaincrf.dataset import all_labels
from chaincrf.models import CRFClassifier
from chaincrf.preprocessing import make_document


TOY_CORPUS = [
    (["John", "lives", "in", "Paris"], ["PER", "O", "O", "LOC"]),
    (["Mary", "visited", "London"], ["PER", "O", "LOC"]),
    (["Paris", "is", "big"], ["LOC", "O", "O"]),
    (["John", "met", "Mary", "in", "London"], ["PER", "O", "PER", "O", "LOC"]),
]

TOY_FLAGS = dict(
    max_left=1,
    use_prev=True,
    use_next=True,
    use_prev_sequences=True,
    sigma=10.0,
    tolerance=1e-6,
    max_iterations=300,
)


def make_toy_documents():
    return [make_document(words, answers) for words, answers in TOY_CORPUS]


def toy_config(**overrides):
    flags = dict(TOY_FLAGS)
    flags.update(overrides)
    return CRFConfig(**flags)


def random_model(n, num_classes, window, seed=0, density=0.7, features_per_order=2):
    """
    Random encoded sequence and weights over the full label-tuple indices.

    Returns:
        (data, weights, label_indices)
    """
    rng = np.random.default_rng(seed)
    label_indices = [all_labels(k + 1, num_classes) for k in range(window)]
    label_sizes = [len(index) for index in label_indices]
    feature_order = np.repeat(np.arange(window), features_per_order)
    size = CRFWeights(feature_order, label_sizes).size
    weights = CRFWeights(feature_order, label_sizes, rng.normal(size=size))

    data = []
    for _ in range(n):
        row = []
        for k in range(window):
            ids = np.where(feature_order == k)[0]
            row.append(np.array([f for f in ids if rng.random() < density], dtype=np.int64))
        data.append(row)
    return data, weights, label_indices


def brute_force_scores(data, weights, label_indices, num_classes, background=0):
    """Unnormalized log score of every label sequence."""
    W = len(label_indices)
    scores = {}
    for seq in itertools.product(range(num_classes), repeat=len(data)):
        total = 0.0
        for j, row in enumerate(data):
            for k in range(W):
                window = tuple(seq[i] if i >= 0 else background for i in range(j - k, j + 1))
                t = label_indices[k].index_of(window)
                for f in row[k]:
                    total += weights.row(f)[t]
        scores[seq] = total
    return scores


@pytest.fixture
def toy_documents():
    return make_toy_documents()


@pytest.fixture(scope="module")
def trained_classifier():
    clf = CRFClassifier(toy_config())
    clf.train(make_toy_documents())
    return clf
