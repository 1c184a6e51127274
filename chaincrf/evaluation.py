"""
Evaluation utilities for sequence labeling.

Metrics:
- Entity-level precision, recall, F1 (per label and micro-averaged)
- Token accuracy
"""

from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from .preprocessing import Token

Span = Tuple[int, int, str]


# ==============================================================================
# Entity Spans
# ==============================================================================

def _split_label(label: str) -> Tuple[str, str]:
    if len(label) > 2 and label[1] == "-" and label[0] in "BIES":
        return label[0], label[2:]
    return "", label


def entity_spans(labels: Sequence[Optional[str]], background: str = "O") -> Set[Span]:
    """
    Extract entity spans from a label sequence.

    An entity is a maximal run of one entity type. ``B-``/``S-`` prefixes
    start a new entity and ``E-``/``S-`` prefixes end one, so adjacent
    entities of the same type stay apart in prefixed encodings.

    Args:
        labels: Label per token
        background: Label of tokens outside any entity

    Returns:
        Set of (start, end, type), end exclusive
    """
    spans = set()
    start, current, prev_prefix = None, None, ""
    for i, label in enumerate(labels):
        if label is None or label == background:
            if current is not None:
                spans.add((start, i, current))
            start, current, prev_prefix = None, None, ""
            continue
        prefix, kind = _split_label(label)
        boundary = (
            current is None
            or kind != current
            or prefix in ("B", "S")
            or prev_prefix in ("E", "S")
        )
        if boundary:
            if current is not None:
                spans.add((start, i, current))
            start, current = i, kind
        prev_prefix = prefix
    if current is not None:
        spans.add((start, len(labels), current))
    return spans


def compute_prf(tp: int, fp: int, fn: int) -> Dict[str, float]:
    """
    Precision, recall and F1 from counts.

    Empty predictions against empty gold count as perfect.
    """
    if tp + fp == 0:
        precision = 1.0 if tp + fn == 0 else 0.0
    else:
        precision = tp / (tp + fp)

    if tp + fn == 0:
        recall = 1.0 if tp + fp == 0 else 0.0
    else:
        recall = tp / (tp + fn)

    if precision + recall == 0:
        f1 = 1.0 if (tp + fp + fn) == 0 else 0.0
    else:
        f1 = 2 * precision * recall / (precision + recall)

    return {
        "precision": precision,
        "recall": recall,
        "f1": f1,
        "tp": tp,
        "fp": fp,
        "fn": fn
    }


# ==============================================================================
# Full Evaluation
# ==============================================================================

def evaluate_predictions(
    gold_sequences: Sequence[Sequence[str]],
    predicted_sequences: Sequence[Sequence[str]],
    background: str = "O"
) -> Dict[str, Any]:
    """
    Entity-level and token-level evaluation of predicted label sequences.

    Args:
        gold_sequences: Gold labels per document
        predicted_sequences: Predicted labels per document
        background: Background label

    Returns:
        Evaluation results dict
    """
    counts: Dict[str, List[int]] = {}
    n_tokens = 0
    n_correct = 0

    for gold, pred in zip(gold_sequences, predicted_sequences):
        if len(gold) != len(pred):
            raise ValueError(f"gold has {len(gold)} labels but prediction has {len(pred)}")
        n_tokens += len(gold)
        n_correct += sum(1 for g, p in zip(gold, pred) if g == p)

        gold_spans = entity_spans(gold, background)
        pred_spans = entity_spans(pred, background)
        for span in gold_spans | pred_spans:
            c = counts.setdefault(span[2], [0, 0, 0])
            if span in gold_spans and span in pred_spans:
                c[0] += 1
            elif span in pred_spans:
                c[1] += 1
            else:
                c[2] += 1

    per_label = {kind: compute_prf(*c) for kind, c in sorted(counts.items())}
    total = [sum(c[i] for c in counts.values()) for i in range(3)]

    return {
        "n_documents": len(gold_sequences),
        "n_tokens": n_tokens,
        "token_accuracy": n_correct / n_tokens if n_tokens > 0 else 0,
        "per_label": per_label,
        "micro": compute_prf(*total),
        "macro_f1": np.mean([m["f1"] for m in per_label.values()]) if per_label else 0,
    }


def evaluate_documents(documents: Sequence[Sequence[Token]], background: str = "O") -> Dict[str, Any]:
    """Evaluate classified tokens, comparing ``answer`` to ``gold_answer``."""
    gold = [[t.gold_answer for t in doc] for doc in documents]
    pred = [[t.answer for t in doc] for doc in documents]
    return evaluate_predictions(gold, pred, background)


def print_evaluation_summary(results: Dict[str, Any], name: str = "Model"):
    """Print formatted evaluation summary."""
    print(f"\n{'=' * 60}")
    print(f"Evaluation Results: {name}")
    print(f"{'=' * 60}")
    print(f"Documents evaluated: {results['n_documents']} ({results['n_tokens']} tokens)")
    print(f"\nToken Accuracy: {results['token_accuracy']:.4f}")

    print(f"\n{'Entity':<12} {'P':>8} {'R':>8} {'F1':>8} {'TP':>6} {'FP':>6} {'FN':>6}")
    for kind, m in results["per_label"].items():
        print(f"{kind:<12} {m['precision']:>8.4f} {m['recall']:>8.4f} {m['f1']:>8.4f} "
              f"{m['tp']:>6} {m['fp']:>6} {m['fn']:>6}")
    mm = results["micro"]
    print(f"{'Totals':<12} {mm['precision']:>8.4f} {mm['recall']:>8.4f} {mm['f1']:>8.4f} "
          f"{mm['tp']:>6} {mm['fp']:>6} {mm['fn']:>6}")
    print(f"{'=' * 60}\n")


# ==============================================================================
# Cross-Validation Utilities
# ==============================================================================

def _fold_metrics(fold: Dict[str, Any]) -> Dict[str, Any]:
    return fold.get("results", fold)


def compute_cv_summary(fold_results: List[Dict]) -> Dict[str, Any]:
    """
    Compute summary statistics across CV folds.

    Args:
        fold_results: Per-fold result dicts (or fold records holding them under ``"results"``)

    Returns:
        Summary dict with means and stds
    """
    metrics = {}
    results = [_fold_metrics(r) for r in fold_results]

    for key in ["token_accuracy", "macro_f1"]:
        values = [r[key] for r in results if key in r]
        if values:
            metrics[f"{key}_mean"] = np.mean(values)
            metrics[f"{key}_std"] = np.std(values)

    f1s = [r["micro"]["f1"] for r in results if "micro" in r]
    if f1s:
        metrics["micro_f1_mean"] = np.mean(f1s)
        metrics["micro_f1_std"] = np.std(f1s)

    return metrics


def print_cv_summary(fold_results: List[Dict], name: str = "Model"):
    """Print CV summary across folds."""
    print(f"\n{'=' * 60}")
    print(f"Cross-Validation Summary: {name}")
    print(f"{'=' * 60}")

    for i, r in enumerate(fold_results, 1):
        m = _fold_metrics(r)
        acc = m.get("token_accuracy", 0)
        f1 = m.get("micro", {}).get("f1", 0)
        print(f"  Fold {i}: Acc={acc:.4f}, F1={f1:.4f}")

    summary = compute_cv_summary(fold_results)

    print(f"\nMean ± Std over {len(fold_results)} folds:")
    if "token_accuracy_mean" in summary:
        print(f"  Token Accuracy: {summary['token_accuracy_mean']:.4f} ± {summary['token_accuracy_std']:.4f}")
    if "micro_f1_mean" in summary:
        print(f"  Entity F1:      {summary['micro_f1_mean']:.4f} ± {summary['micro_f1_std']:.4f}")

    print(f"{'=' * 60}\n")
