import pytest

from chaincrf.evaluation import (
    compute_cv_summary, compute_prf, entity_spans, evaluate_documents, evaluate_predictions,
    print_cv_summary, print_evaluation_summary
)
from chaincrf.preprocessing import Token


class TestEntitySpans:

    def test_plain_labels(self):
        assert entity_spans(["PER", "PER", "O", "LOC"]) == {(0, 2, "PER"), (3, 4, "LOC")}

    def test_begin_prefix_splits_adjacent_entities(self):
        spans = entity_spans(["B-PER", "I-PER", "O", "B-LOC", "B-LOC"])
        assert spans == {(0, 2, "PER"), (3, 4, "LOC"), (4, 5, "LOC")}

    def test_end_and_single_prefixes(self):
        assert entity_spans(["I-PER", "E-PER", "I-PER"]) == {(0, 2, "PER"), (2, 3, "PER")}
        assert entity_spans(["S-PER", "S-PER"]) == {(0, 1, "PER"), (1, 2, "PER")}

    def test_missing_labels_are_background(self):
        assert entity_spans([None, "PER", None]) == {(1, 2, "PER")}
        assert entity_spans([]) == set()


class TestPRF:

    def test_counts(self):
        m = compute_prf(2, 1, 1)
        assert m["precision"] == pytest.approx(2 / 3)
        assert m["recall"] == pytest.approx(2 / 3)
        assert m["f1"] == pytest.approx(2 / 3)

    def test_empty_is_perfect(self):
        m = compute_prf(0, 0, 0)
        assert (m["precision"], m["recall"], m["f1"]) == (1.0, 1.0, 1.0)

    def test_only_false_positives(self):
        m = compute_prf(0, 2, 0)
        assert (m["precision"], m["recall"], m["f1"]) == (0.0, 0.0, 0.0)


class TestEvaluatePredictions:

    def test_metrics(self):
        results = evaluate_predictions([["PER", "O", "LOC"]], [["PER", "O", "O"]])
        assert results["n_documents"] == 1
        assert results["n_tokens"] == 3
        assert results["token_accuracy"] == pytest.approx(2 / 3)
        assert results["per_label"]["PER"]["f1"] == 1.0
        assert results["per_label"]["LOC"]["fn"] == 1
        assert results["micro"]["f1"] == pytest.approx(2 / 3)
        assert results["macro_f1"] == pytest.approx(0.5)

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            evaluate_predictions([["O", "O"]], [["O"]])

    def test_evaluate_documents(self):
        doc = [Token("John", "PER", "PER"), Token("ran", "PER", "O")]
        results = evaluate_documents([doc])
        assert results["per_label"]["PER"]["fp"] == 1
        assert results["token_accuracy"] == pytest.approx(0.5)

    def test_print_summary(self, capsys):
        print_evaluation_summary(evaluate_predictions([["PER"]], [["PER"]]), name="toy")
        out = capsys.readouterr().out
        assert "Evaluation Results: toy" in out
        assert "Totals" in out


class TestCrossValidationSummary:

    def test_summary(self):
        folds = [
            {"results": {"token_accuracy": 0.8, "macro_f1": 0.5, "micro": {"f1": 0.6}}},
            {"token_accuracy": 1.0, "macro_f1": 0.7, "micro": {"f1": 0.8}},
        ]
        summary = compute_cv_summary(folds)
        assert summary["token_accuracy_mean"] == pytest.approx(0.9)
        assert summary["micro_f1_mean"] == pytest.approx(0.7)
        assert summary["micro_f1_std"] == pytest.approx(0.1)

    def test_print(self, capsys):
        print_cv_summary([{"token_accuracy": 1.0, "micro": {"f1": 1.0}}], name="toy")
        out = capsys.readouterr().out
        assert "Fold 1: Acc=1.0000, F1=1.0000" in out
