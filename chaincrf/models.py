"""
Linear-chain CRF sequence classifier.

``CRFClassifier`` ties together the feature factory, the dataset builder,
the trained weights and the decoders:

    clf = CRFClassifier(CRFConfig(max_left=1, use_n_grams=True))
    clf.train(documents)
    clf.classify(document)          # sets token.answer
    clf.serialize("ner.ser.gz")
    clf = CRFClassifier.load("ner.ser.gz")
"""

import gzip
import logging
import pickle
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from .cliquetree import CliqueTree, CliqueTreeSequenceModel, CRFWeights, label_tuple_arrays
from .config import CRFConfig
from .dataset import CRFDatasetBuilder
from .exceptions import ConfigurationError, DataShapeError
from .features import feature_order as clique_order_of
from .features import make_feature_factory
from .index import Index
from .inference import (
    CoolingSchedule, FactoredSequenceListener, FactoredSequenceModel,
    KBestSequenceFinder, SequenceGibbsSampler, SequenceSampler,
    make_best_sequence_finder, make_prior
)
from .preprocessing import Token, collect_known_lc_words, make_document, prepare_documents, process_document
from .training import drop_features_below_threshold, train_crf

logger = logging.getLogger(__name__)


class CRFClassifier:
    """
    Conditional random field sequence classifier.

    Args:
        config: Flags (default: ``CRFConfig()``)
        **overrides: Individual flags overriding ``config``
    """

    def __init__(self, config: Optional[CRFConfig] = None, **overrides):
        config = config or CRFConfig()
        if overrides:
            config = config.replace(**overrides)
        self.config = config.validate()
        self.feature_factory = make_feature_factory(self.config)
        self.builder = CRFDatasetBuilder(self.config, self.feature_factory)
        self.weights: Optional[CRFWeights] = None
        self.known_lc_words: Set[str] = set()
        self._tuple_arrays: Optional[List[np.ndarray]] = None

    # ------------------------------------------------------------------
    # Vocabularies
    # ------------------------------------------------------------------

    @property
    def class_index(self) -> Index:
        return self.builder.class_index

    @property
    def feature_index(self) -> Index:
        return self.builder.feature_index

    @property
    def label_indices(self) -> List[Index]:
        return self.builder.label_indices

    @property
    def window_size(self) -> int:
        return self.builder.window_size

    def labels(self) -> List[str]:
        return list(self.class_index)

    def tuple_arrays(self) -> List[np.ndarray]:
        if self._tuple_arrays is None:
            self._tuple_arrays = label_tuple_arrays(self.label_indices)
        return self._tuple_arrays

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(self, documents: Sequence[List[Token]], verbose: bool = False) -> Dict[str, Any]:
        """
        Train on labeled documents (prepared in place).

        Args:
            documents: Documents whose tokens carry gold answers
            verbose: Print progress

        Returns:
            Training history dict
        """
        cfg = self.config
        self.known_lc_words = collect_known_lc_words(documents)
        docs = prepare_documents(documents, cfg, self.known_lc_words)
        if not docs:
            raise DataShapeError("No training documents")

        initial = None
        if cfg.initial_weights:
            initial = np.load(cfg.initial_weights)
            logger.info("Loaded %d initial weights from %s", len(initial), cfg.initial_weights)

        self._tuple_arrays = None
        history = train_crf(self, docs, initial_weights=initial, verbose=verbose)
        self._tuple_arrays = None

        if cfg.serialize_to:
            self.serialize(cfg.serialize_to)
        return history

    def drop_features_below_threshold(self, threshold: float) -> int:
        """
        Remove features whose weight range is not above ``threshold``.

        Returns:
            Number of features removed
        """
        assert self.weights is not None, "Call train() first"
        before = len(self.feature_index)
        index, order, weights = drop_features_below_threshold(
            self.feature_index, self.builder.feature_order, self.weights, threshold
        )
        self.builder.feature_index = index
        self.builder.feature_order = order
        self.weights = weights
        return before - len(index)

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def clique_tree(self, document: Sequence[Token]) -> CliqueTree:
        """Calibrated tree of a prepared document, in decoding orientation."""
        assert self.weights is not None, "Call train() first"
        data, _ = self.builder.document_to_data_and_labels(document)
        return CliqueTree.calibrate(
            data, self.weights, self.label_indices, len(self.class_index),
            background=0, tuple_arrays=self.tuple_arrays()
        )

    def _prepare(self, document: List[Token]) -> List[Token]:
        # gold answers are taken when documents are read or built, never from predictions
        return process_document(document, self.config, self.known_lc_words, copy_gold=False)

    def sequence_model(self, document: List[Token]) -> CliqueTreeSequenceModel:
        doc = self._prepare(document)
        return CliqueTreeSequenceModel(self.clique_tree(doc))

    def _in_document_order(self, values: List) -> List:
        return values[::-1] if self.config.use_reverse else values

    def _viterbi(self, tree: CliqueTree) -> List[int]:
        finder = make_best_sequence_finder(self.config.inference_type, self.config.beam_size)
        model = CliqueTreeSequenceModel(tree)
        return model.unpad(finder.best_sequence(model))

    def cooling_schedule(self) -> CoolingSchedule:
        cfg = self.config
        kind = (cfg.annealing_type or "").lower()
        if kind == "linear":
            return CoolingSchedule.linear(1.0, cfg.num_samples)
        if kind in ("exp", "exponential"):
            return CoolingSchedule.exponential(1.0, cfg.annealing_rate, cfg.num_samples)
        raise ConfigurationError("No annealing type specified")

    def _gibbs(self, document: Sequence[Token], tree: CliqueTree) -> List[int]:
        cfg = self.config
        model, listener = tree, tree
        if cfg.gibbs_prior:
            prior = make_prior(
                cfg.gibbs_prior, 0, self.class_index,
                self.builder.oriented(document), cfg.prior_penalty
            )
            model = FactoredSequenceModel(tree, prior)
            listener = FactoredSequenceListener(tree, prior)
        sampler = SequenceGibbsSampler(listener, random_state=cfg.random_seed)
        initial = self._viterbi(tree) if cfg.init_viterbi else None
        return sampler.find_best_using_annealing(model, self.cooling_schedule(), initial)

    def classify(self, document: List[Token]) -> List[Token]:
        """
        Label a document in place with the configured decoder.

        Returns:
            The same tokens, ``answer`` set to the predicted label
        """
        doc = self._prepare(document)
        if not doc:
            return doc
        tree = self.clique_tree(doc)
        if self.config.do_gibbs:
            best = self._gibbs(doc, tree)
        else:
            best = self._viterbi(tree)
        for token, label in zip(doc, self._in_document_order(list(best))):
            token.answer = self.class_index.get(int(label))
        return doc

    def classify_documents(self, documents: Sequence[List[Token]], n_jobs: int = 1) -> List[List[Token]]:
        """Classify independent documents, on a thread pool when ``n_jobs > 1``."""
        if n_jobs <= 1:
            return [self.classify(doc) for doc in documents]
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            return list(executor.map(self.classify, documents))

    def classify_words(self, words: Sequence[str], **columns: Sequence[str]) -> List[Token]:
        """Label a plain list of words (extra attribute columns optional)."""
        return self.classify(make_document(words, **columns))

    def test_k_best(self, document: List[Token], k: int) -> Counter:
        """
        The ``k`` most probable labelings of a document.

        Returns:
            Counter mapping a tuple of labels to its probability
        """
        doc = self._prepare(document)
        model = CliqueTreeSequenceModel(self.clique_tree(doc))
        k_best = KBestSequenceFinder().k_best_sequences(model, k)
        result = Counter()
        for padded, score in k_best.items():
            labels = self._in_document_order(model.unpad(padded))
            result[tuple(self.class_index.get(int(l)) for l in labels)] = float(np.exp(score))
        return result

    def probs_document(self, document: List[Token]) -> List[Dict[str, float]]:
        """Marginal distribution over labels at each position."""
        doc = self._prepare(document)
        tree = self.clique_tree(doc)
        labels = self.labels()
        probs = []
        for j in range(len(tree)):
            marginals = tree.marginals(j)
            probs.append({label: float(marginals[c]) for c, label in enumerate(labels)})
        return self._in_document_order(probs)

    def first_order_probs_document(self, document: List[Token]) -> List[Dict[Tuple[str, str], float]]:
        """
        Joint marginal of each (previous, current) label pair, the previous
        position being the one before in decoding order (the background
        label before the first position).
        """
        doc = self._prepare(document)
        tree = self.clique_tree(doc)
        labels = self.labels()
        probs = []
        for j in range(len(tree)):
            if self.window_size >= 2:
                joint = np.exp(tree.window_log_marginal(j, 2))
            else:
                prev = tree.marginals(j - 1) if j > 0 else np.eye(len(labels))[0]
                joint = np.outer(prev, tree.marginals(j))
            probs.append({
                (p_label, c_label): float(joint[p, c])
                for p, p_label in enumerate(labels)
                for c, c_label in enumerate(labels)
            })
        return self._in_document_order(probs)

    def sampler(self, document: List[Token]) -> List[str]:
        """One labeling drawn from the posterior distribution."""
        model = self.sequence_model(document)
        padded = SequenceSampler(random_state=self.config.random_seed).best_sequence(model)
        return [self.class_index.get(int(l)) for l in self._in_document_order(model.unpad(padded))]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self, path: str):
        """
        Write the model as a pickle stream (gzip-compressed when ``path``
        ends in ``.gz``).
        """
        assert self.weights is not None, "Call train() first"
        opener = gzip.open if path.endswith(".gz") else open
        with opener(path, "wb") as f:
            for record in (
                self.label_indices,
                self.class_index,
                self.feature_index,
                self.config.to_dict(),
                self.config.feature_factory,
                self.window_size,
                [np.array(row) for row in self.weights.to_rows()],
                self.known_lc_words,
            ):
                pickle.dump(record, f, protocol=pickle.HIGHEST_PROTOCOL)
        logger.info("Serialized classifier to %s", path)

    @classmethod
    def load(cls, path: str, overrides: Optional[Dict[str, Any]] = None) -> "CRFClassifier":
        """
        Read a serialized model.

        Args:
            path: File written by ``serialize``
            overrides: Config flags to change, typically decoder settings

        Returns:
            CRFClassifier ready to classify
        """
        opener = gzip.open if path.endswith(".gz") else open
        with opener(path, "rb") as f:
            label_indices = pickle.load(f)
            class_index = pickle.load(f)
            feature_index = pickle.load(f)
            config_dict = pickle.load(f)
            factory_name = pickle.load(f)
            window_size = pickle.load(f)
            rows = pickle.load(f)
            known_lc_words = pickle.load(f)

        config = CRFConfig.from_dict(config_dict)
        if overrides:
            config = config.replace(**overrides)
        if config.feature_factory != factory_name:
            raise ConfigurationError(
                f"Model was trained with feature factory {factory_name!r}, "
                f"config asks for {config.feature_factory!r}"
            )
        if window_size != config.window_size or window_size != len(label_indices):
            raise DataShapeError(
                f"Serialized window size {window_size} does not match the model configuration"
            )

        clf = cls(config)
        clf.builder.label_indices = label_indices
        clf.builder.class_index = class_index
        clf.builder.feature_index = feature_index
        clf.builder.feature_order = np.asarray(
            [clique_order_of(f) for f in feature_index.to_list()], dtype=np.int64
        )
        clf.builder.lock()
        clf.weights = CRFWeights.from_rows(
            rows, clf.builder.feature_order, [len(index) for index in label_indices]
        ).freeze()
        clf.known_lc_words = known_lc_words
        logger.info(
            "Loaded classifier from %s: %d classes, %d features",
            path, len(class_index), len(feature_index)
        )
        return clf
