import pickle

import numpy as np
import pytest

from chaincrf.exceptions import ConfigurationError, DataShapeError
from chaincrf.models import CRFClassifier
from chaincrf.preprocessing import make_document

from conftest import TOY_CORPUS, make_toy_documents, toy_config


def answers_of(doc):
    return [t.answer for t in doc]


class TestClassification:

    def test_classify_sets_answers_in_place(self, trained_classifier):
        doc = make_document(["Mary", "lives", "in", "London"])
        result = trained_classifier.classify(doc)
        assert result is doc
        assert answers_of(doc) == ["PER", "O", "O", "LOC"]

    def test_empty_document(self, trained_classifier):
        assert trained_classifier.classify([]) == []

    def test_repeated_passes_keep_gold_answers(self, trained_classifier):
        doc = make_document(["Paris", "met", "John"], ["LOC", "O", "PER"])
        trained_classifier.classify(doc)
        trained_classifier.classify(doc)
        trained_classifier.probs_document(doc)
        trained_classifier.test_k_best(doc, 2)
        assert [t.gold_answer for t in doc] == ["LOC", "O", "PER"]

    def test_unlabeled_document_has_no_gold(self, trained_classifier):
        doc = make_document(["Mary", "visited", "Paris"])
        trained_classifier.classify(doc)
        trained_classifier.classify(doc)
        assert [t.gold_answer for t in doc] == [None, None, None]

    def test_labels(self, trained_classifier):
        assert trained_classifier.labels() == ["O", "PER", "LOC"]

    def test_parallel_matches_sequential(self, trained_classifier):
        sequential = trained_classifier.classify_documents(make_toy_documents())
        parallel = trained_classifier.classify_documents(make_toy_documents(), n_jobs=2)
        assert [answers_of(d) for d in parallel] == [answers_of(d) for d in sequential]

    def test_beam_matches_viterbi(self, trained_classifier, tmp_path):
        path = str(tmp_path / "model.ser.gz")
        trained_classifier.serialize(path)
        beam = CRFClassifier.load(path, {"inference_type": "Beam", "beam_size": 3})
        for words, answers in TOY_CORPUS:
            assert answers_of(beam.classify_words(words)) == answers

    def test_reverse_direction(self):
        clf = CRFClassifier(toy_config(use_reverse=True))
        clf.train(make_toy_documents())
        for words, answers in TOY_CORPUS:
            assert answers_of(clf.classify_words(words)) == answers

    def test_second_order_model(self):
        clf = CRFClassifier(toy_config(max_left=2))
        clf.train(make_toy_documents())
        assert clf.window_size == 3
        for words, answers in TOY_CORPUS:
            assert answers_of(clf.classify_words(words)) == answers

    def test_gibbs_matches_viterbi(self, trained_classifier, tmp_path):
        path = str(tmp_path / "model.ser")
        trained_classifier.serialize(path)
        gibbs = CRFClassifier.load(
            path, {"do_gibbs": True, "annealing_type": "linear", "num_samples": 5}
        )
        for words, answers in TOY_CORPUS:
            assert answers_of(gibbs.classify_words(words)) == answers

    def test_gibbs_with_prior(self, trained_classifier, tmp_path):
        path = str(tmp_path / "model.ser")
        trained_classifier.serialize(path)
        gibbs = CRFClassifier.load(path, {
            "do_gibbs": True, "annealing_type": "exp", "annealing_rate": 0.5,
            "num_samples": 5, "gibbs_prior": "entity",
        })
        doc = gibbs.classify_words(["John", "met", "John"])
        assert answers_of(doc)[0] == answers_of(doc)[2]

    def test_gibbs_without_samples(self, trained_classifier, tmp_path):
        path = str(tmp_path / "model.ser")
        trained_classifier.serialize(path)
        with pytest.raises(ConfigurationError, match="num_samples"):
            CRFClassifier.load(path, {"do_gibbs": True, "annealing_type": "linear", "num_samples": 0})

    def test_unknown_inference_type(self, trained_classifier, tmp_path):
        path = str(tmp_path / "model.ser")
        trained_classifier.serialize(path)
        with pytest.raises(ConfigurationError, match="Unknown inference type: Foo"):
            CRFClassifier.load(path, {"inference_type": "Foo"})


class TestProbabilities:

    def test_marginals_sum_to_one(self, trained_classifier):
        probs = trained_classifier.probs_document(make_document(["John", "met", "Mary"]))
        assert len(probs) == 3
        for dist in probs:
            assert set(dist) == {"O", "PER", "LOC"}
            assert sum(dist.values()) == pytest.approx(1.0)
        assert max(probs[0], key=probs[0].get) == "PER"

    def test_first_order_marginals(self, trained_classifier):
        probs = trained_classifier.first_order_probs_document(make_document(["Paris", "is", "big"]))
        assert len(probs) == 3
        for dist in probs:
            assert len(dist) == 9
            assert sum(dist.values()) == pytest.approx(1.0)
        # nothing precedes the first position but the background label
        assert sum(p for (prev, _), p in probs[0].items() if prev != "O") == pytest.approx(0.0)

    def test_first_order_marginals_without_pairs(self):
        clf = CRFClassifier(toy_config(max_left=0, use_prev_sequences=False))
        clf.train(make_toy_documents())
        probs = clf.first_order_probs_document(make_document(["Paris", "is"]))
        assert all(sum(dist.values()) == pytest.approx(1.0) for dist in probs)

    def test_k_best(self, trained_classifier):
        words = ["John", "lives", "in", "Paris"]
        k_best = trained_classifier.test_k_best(make_document(words), 3)
        assert len(k_best) == 3
        best, prob = k_best.most_common(1)[0]
        assert list(best) == answers_of(trained_classifier.classify_words(words))
        assert 0.0 < prob <= 1.0
        assert sum(k_best.values()) <= 1.0 + 1e-9

    def test_sampler(self, trained_classifier):
        labels = trained_classifier.sampler(make_document(["Mary", "visited", "Paris"]))
        assert len(labels) == 3
        assert set(labels) <= {"O", "PER", "LOC"}


class TestPersistence:

    def test_round_trip(self, trained_classifier, tmp_path):
        path = str(tmp_path / "model.ser.gz")
        trained_classifier.serialize(path)
        loaded = CRFClassifier.load(path)
        assert loaded.labels() == trained_classifier.labels()
        assert loaded.feature_index.to_list() == trained_classifier.feature_index.to_list()
        assert np.array_equal(loaded.builder.feature_order, trained_classifier.builder.feature_order)
        assert np.array_equal(loaded.weights.flat, trained_classifier.weights.flat)
        assert loaded.known_lc_words == trained_classifier.known_lc_words
        for words, _ in TOY_CORPUS:
            assert (answers_of(loaded.classify_words(words))
                    == answers_of(trained_classifier.classify_words(words)))

    def test_factory_mismatch(self, trained_classifier, tmp_path):
        path = str(tmp_path / "model.ser")
        trained_classifier.serialize(path)
        with open(path, "rb") as f:
            records = [pickle.load(f) for _ in range(8)]
        records[4] = "other"
        with open(path, "wb") as f:
            for record in records:
                pickle.dump(record, f)
        with pytest.raises(ConfigurationError):
            CRFClassifier.load(path)

    def test_window_mismatch(self, trained_classifier, tmp_path):
        path = str(tmp_path / "model.ser")
        trained_classifier.serialize(path)
        with pytest.raises(DataShapeError):
            CRFClassifier.load(path, {"max_left": 2})

    def test_untrained_model(self, tmp_path):
        with pytest.raises(AssertionError):
            CRFClassifier(toy_config()).serialize(str(tmp_path / "x.ser"))
