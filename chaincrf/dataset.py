"""
Encoding of labeled documents into integer feature and label arrays.

For a document of length n the encoding is

    data[j][k]  sorted int array of feature ids at position j whose
                features are conjoined with the labels y[j-k .. j]
    labels[j]   gold label id at position j (-1 when unknown)

for 0 <= j < n and 0 <= k < window_size.
"""

import itertools
import logging
from typing import Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from .config import CRFConfig
from .exceptions import DataShapeError
from .features import FeatureFactory, window_cliques
from .index import Index
from .preprocessing import PaddedView, Token

logger = logging.getLogger(__name__)

EncodedDocument = List[List[np.ndarray]]


def all_labels(window: int, num_classes: int) -> Index:
    """
    Index of every label tuple of length ``window``, first element varying
    fastest: ``(0,0), (1,0), (2,0), (0,1), ...``.
    """
    index = Index()
    for t in itertools.product(range(num_classes), repeat=window):
        index.add(t[::-1])
    return index


class CRFDatasetBuilder:
    """
    Owns the class, feature and label-window vocabularies and turns
    documents into encoded arrays.

    Args:
        config: Feature and model flags
        feature_factory: Template engine producing clique features
    """

    def __init__(self, config: CRFConfig, feature_factory: FeatureFactory):
        self.config = config
        self.feature_factory = feature_factory
        self.window_size = config.window_size
        self.class_index = Index()
        self.feature_index = Index()
        self.label_indices: List[Index] = [Index() for _ in range(self.window_size)]
        self.feature_order = np.zeros(0, dtype=np.int64)

    @property
    def background(self) -> str:
        return self.config.background_symbol

    @property
    def num_classes(self) -> int:
        return len(self.class_index)

    def oriented(self, doc: Sequence[Token]) -> Sequence[Token]:
        return list(reversed(doc)) if self.config.use_reverse else doc

    # ------------------------------------------------------------------
    # Datums
    # ------------------------------------------------------------------

    def make_datum(self, view: PaddedView, loc: int) -> Tuple[List[Set[str]], Tuple[int, ...]]:
        """
        Features and gold label window at one position.

        Args:
            view: Padded (and already oriented) document
            loc: Position

        Returns:
            (features per clique order, label ids of positions loc-W+1 .. loc)
        """
        features = []
        for order in range(self.window_size):
            order_features: Set[str] = set()
            for clique in window_cliques(order):
                order_features |= self.feature_factory.get_clique_features(view, loc, clique)
            features.append(order_features)

        label = tuple(
            self.class_index.index_of(view.answer(loc + i - self.window_size + 1))
            for i in range(self.window_size)
        )
        return features, label

    # ------------------------------------------------------------------
    # Vocabulary construction
    # ------------------------------------------------------------------

    def make_answer_arrays_and_tag_index(self, documents: Iterable[Sequence[Token]]):
        """
        Build the class, feature and label-window vocabularies from training
        documents.

        The class index starts with the background symbol; the feature
        index holds all order-0 features, then all order-1 features and so
        on, each block sorted. With ``remove_background_singleton_features``
        a feature of order 0 or 1 seen exactly once, only with background
        labels, is left out.
        """
        W = self.window_size
        cfg = self.config
        feature_sets: List[Set[str]] = [set() for _ in range(W)]
        seen_background: List[Set[str]] = [set(), set()]
        observed = Index()

        self.class_index = Index([self.background])
        n_docs = 0
        for doc in documents:
            n_docs += 1
            doc = self.oriented(doc)
            for token in doc:
                self.class_index.add(token.answer)
            view = PaddedView(doc, self.background)

            for j in range(len(doc)):
                features, label = self.make_datum(view, j)
                observed.add(label)
                for k, clique_features in enumerate(features):
                    if k < 2 and cfg.remove_background_singleton_features:
                        background = doc[j].answer == self.background
                        if k == 1 and j > 0 and background:
                            background = doc[j - 1].answer == self.background
                        if background:
                            for f in clique_features:
                                if f in feature_sets[k]:
                                    continue
                                if f in seen_background[k]:
                                    seen_background[k].discard(f)
                                    feature_sets[k].add(f)
                                else:
                                    seen_background[k].add(f)
                        else:
                            seen_background[k] -= clique_features
                            feature_sets[k] |= clique_features
                    else:
                        feature_sets[k] |= clique_features

        self.feature_index = Index()
        orders = []
        for k, fs in enumerate(feature_sets):
            for f in sorted(fs):
                if self.feature_index.add(f):
                    orders.append(k)
        self.feature_order = np.asarray(orders, dtype=np.int64)

        if cfg.use_observed_sequences_only:
            self.label_indices = [Index() for _ in range(W)]
            self.label_indices[W - 1] = observed
            for label in observed:
                for j in range(W - 2, -1, -1):
                    label = label[1:]
                    self.label_indices[j].add(label)
        else:
            self.label_indices = [all_labels(k + 1, self.num_classes) for k in range(W)]

        logger.info(
            "Built vocabularies from %d documents: %d classes, %d features",
            n_docs, self.num_classes, len(self.feature_index)
        )

    def lock(self):
        self.class_index.lock()
        self.feature_index.lock()
        for index in self.label_indices:
            index.lock()

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def document_to_data_and_labels(self, doc: Sequence[Token]) -> Tuple[EncodedDocument, np.ndarray]:
        """
        Encode one document. Features missing from the feature index are
        dropped.

        Returns:
            (data, labels) with data[j][k] a sorted int64 array
        """
        doc = self.oriented(doc)
        view = PaddedView(doc, self.background)
        data: EncodedDocument = []
        labels = np.empty(len(doc), dtype=np.int64)
        for j in range(len(doc)):
            features, _ = self.make_datum(view, j)
            row = []
            for clique_features in features:
                ids = [self.feature_index.index_of(f) for f in clique_features]
                row.append(np.array(sorted(i for i in ids if i >= 0), dtype=np.int64))
            data.append(row)
            answer = doc[j].answer
            labels[j] = self.class_index.index_of(answer) if answer is not None else -1
        return data, labels

    def documents_to_data_and_labels(
        self, documents: Iterable[Sequence[Token]]
    ) -> Tuple[List[EncodedDocument], List[np.ndarray]]:
        all_data, all_labels_ = [], []
        n_datums = 0
        for doc in documents:
            data, labels = self.document_to_data_and_labels(doc)
            all_data.append(data)
            all_labels_.append(labels)
            n_datums += len(labels)
        logger.info(
            "numClasses: %d, numDocuments: %d, numDatums: %d, numFeatures: %d",
            self.num_classes, len(all_data), n_datums, len(self.feature_index)
        )
        check_encoded(all_data, all_labels_, self.window_size)
        return all_data, all_labels_


def check_encoded(
    data: Sequence[EncodedDocument],
    labels: Optional[Sequence[np.ndarray]],
    window_size: int
):
    """
    Verify that encoded documents are consistent with each other and the
    window size.

    Raises:
        DataShapeError: naming the document, position and order at fault
    """
    if labels is not None and len(data) != len(labels):
        raise DataShapeError(f"{len(data)} encoded documents but {len(labels)} label arrays")
    for d, doc in enumerate(data):
        if labels is not None and len(doc) != len(labels[d]):
            raise DataShapeError(
                f"document {d}: {len(doc)} positions but {len(labels[d])} labels"
            )
        for j, row in enumerate(doc):
            if len(row) != window_size:
                raise DataShapeError(
                    f"document {d}, position {j}: {len(row)} clique orders, expected {window_size}"
                )
            for k, ids in enumerate(row):
                if np.ndim(ids) != 1:
                    raise DataShapeError(
                        f"document {d}, position {j}, order {k}: feature ids must be 1-D"
                    )
