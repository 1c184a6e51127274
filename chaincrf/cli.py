#!/usr/bin/env python3
"""
Command-line interface for training and applying CRF sequence classifiers.

================================================================================
USAGE
================================================================================

    # Train from a column file with a properties file, save the model
    chaincrf train train.tsv --prop ner.prop -o ner.ser.gz

    # Flags can be given (or overridden) as key=value pairs
    chaincrf train train.tsv maxLeft=2 useNGrams=true -o ner.ser.gz

    # Label a file and score it against its gold column
    chaincrf test ner.ser.gz test.tsv

    # Per-token label marginals, k-best labelings
    chaincrf probs ner.ser.gz test.tsv
    chaincrf kbest ner.ser.gz test.tsv -k 5

    # K-fold cross-validation
    chaincrf cv train.tsv --prop ner.prop --folds 5

================================================================================
"""

import argparse
import logging
import os
import sys
from typing import Dict, List, Optional

from .config import CRFConfig, load_config
from .evaluation import evaluate_documents, print_cv_summary, print_evaluation_summary
from .exceptions import ChainCRFError, ConfigurationError
from .models import CRFClassifier
from .readers import make_reader
from .training import generate_model_id, run_kfold_cv


def setup_logging(verbose=False):
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)-8s %(message)s',
        datefmt='%H:%M:%S'
    )


def parse_overrides(pairs: List[str]) -> Dict[str, str]:
    """Turn ``["maxLeft=2", "useNGrams"]`` into ``{"maxLeft": "2", "useNGrams": "true"}``."""
    overrides = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not key:
            raise ConfigurationError(f"Bad override: {pair!r}")
        overrides[key] = value if sep else "true"
    return overrides


def build_config(args) -> CRFConfig:
    overrides = parse_overrides(args.overrides)
    if args.prop:
        config = load_config(args.prop)
    else:
        config = CRFConfig()
    if overrides:
        config = config.replace(**overrides)
    return config.validate()


def _read(path: str, config: CRFConfig):
    if not os.path.exists(path):
        raise ConfigurationError(f"File not found: {path}")
    return make_reader(config).read_file(path)


def _load_model(args) -> CRFClassifier:
    overrides = parse_overrides(args.overrides)
    return CRFClassifier.load(args.model, overrides or None)


# ==============================================================================
# Commands
# ==============================================================================

def cmd_train(args):
    """Train a classifier and serialize it."""
    config = build_config(args)
    documents = _read(args.train_file, config)

    print("=" * 60)
    print("CRF Training")
    print("=" * 60)
    print(f"  Documents:   {len(documents):,}")
    print(f"  Tokens:      {sum(len(d) for d in documents):,}")
    print(f"  Window size: {config.window_size}")
    print()

    clf = CRFClassifier(config)
    history = clf.train(documents, verbose=args.verbose)

    output = args.output or config.serialize_to
    if output is None:
        output = f"crf-{generate_model_id(**config.to_dict())}.ser.gz"
    if output != config.serialize_to:
        clf.serialize(output)

    print("-" * 60)
    print("Training Results:")
    print(f"  Classes:        {len(clf.class_index)}")
    print(f"  Features:       {len(clf.feature_index):,}")
    print(f"  Weights:        {clf.weights.size:,}")
    print(f"  Final value:    {history['final_value']:.6f}")
    print(f"  Model path:     {output}")
    print("-" * 60)

    if args.test_file:
        test_docs = clf.classify_documents(_read(args.test_file, config), n_jobs=args.jobs)
        print_evaluation_summary(
            evaluate_documents(test_docs, config.background_symbol), name=args.test_file
        )
    return 0


def cmd_test(args):
    """Label a file with a trained model, write answers and score them."""
    clf = _load_model(args)
    reader = make_reader(clf.config)
    documents = clf.classify_documents(_read(args.test_file, clf.config), n_jobs=args.jobs)

    out = open(args.output, "w", encoding="utf-8") if args.output else sys.stdout
    try:
        for doc in documents:
            reader.print_answers(doc, out)
    finally:
        if out is not sys.stdout:
            out.close()

    results = evaluate_documents(documents, clf.config.background_symbol)
    print_evaluation_summary(results, name=os.path.basename(args.test_file))
    return 0


def cmd_probs(args):
    """Print the label marginals of every token."""
    clf = _load_model(args)
    for doc in _read(args.test_file, clf.config):
        probs = clf.probs_document(doc)
        for token, dist in zip(doc, probs):
            cells = "\t".join(f"{label}={p:.3f}" for label, p in dist.items())
            print(f"{token.word}\t{cells}")
        print()
    return 0


def cmd_kbest(args):
    """Print the k best labelings of every document."""
    clf = _load_model(args)
    for doc in _read(args.test_file, clf.config):
        words = [t.word for t in doc]
        k_best = clf.test_k_best(doc, args.k)
        for rank, (labels, p) in enumerate(k_best.most_common(), 1):
            pairs = " ".join(f"{w}/{l}" for w, l in zip(words, labels))
            print(f"{rank}\t{p:.6f}\t{pairs}")
        print()
    return 0


def cmd_cv(args):
    """Cross-validate a configuration."""
    config = build_config(args)
    documents = _read(args.train_file, config)
    if len(documents) < args.folds:
        raise ConfigurationError(
            f"{len(documents)} documents cannot be split into {args.folds} folds"
        )
    fold_results = run_kfold_cv(
        CRFClassifier, {"config": config}, documents,
        n_folds=args.folds, random_state=args.seed, verbose=args.verbose
    )
    print_cv_summary(fold_results, name=os.path.basename(args.train_file))
    return 0


# ==============================================================================
# Entry Point
# ==============================================================================

def main(argv: Optional[List[str]] = None):
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Linear-chain CRF sequence labeling: training and testing CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  chaincrf train train.tsv --prop ner.prop -o ner.ser.gz
  chaincrf test ner.ser.gz test.tsv
  chaincrf kbest ner.ser.gz test.tsv -k 5 inferenceType=Viterbi
"""
    )

    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose output')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Train command
    train_parser = subparsers.add_parser('train', help='Train a classifier')
    train_parser.add_argument('train_file', help='Training file')
    train_parser.add_argument('--prop', help='Properties (or .json) config file')
    train_parser.add_argument('-o', '--output', help='Output model path (default: serializeTo or auto)')
    train_parser.add_argument('-t', '--test-file', help='Evaluate on this file after training')
    train_parser.add_argument('-j', '--jobs', type=int, default=1, help='Decoding threads')
    train_parser.add_argument('overrides', nargs='*', help='key=value config overrides')

    # Test command
    test_parser = subparsers.add_parser('test', help='Label and score a file')
    test_parser.add_argument('model', help='Serialized model')
    test_parser.add_argument('test_file', help='File to label')
    test_parser.add_argument('-o', '--output', help='Write answers here (default: stdout)')
    test_parser.add_argument('-j', '--jobs', type=int, default=1, help='Decoding threads')
    test_parser.add_argument('overrides', nargs='*', help='key=value decoder overrides')

    # Probs command
    probs_parser = subparsers.add_parser('probs', help='Print per-token label marginals')
    probs_parser.add_argument('model', help='Serialized model')
    probs_parser.add_argument('test_file', help='File to label')
    probs_parser.add_argument('overrides', nargs='*', help='key=value overrides')

    # K-best command
    kbest_parser = subparsers.add_parser('kbest', help='Print the k best labelings')
    kbest_parser.add_argument('model', help='Serialized model')
    kbest_parser.add_argument('test_file', help='File to label')
    kbest_parser.add_argument('-k', type=int, default=5, help='Number of labelings (default: 5)')
    kbest_parser.add_argument('overrides', nargs='*', help='key=value overrides')

    # CV command
    cv_parser = subparsers.add_parser('cv', help='K-fold cross-validation')
    cv_parser.add_argument('train_file', help='Labeled file')
    cv_parser.add_argument('--prop', help='Properties (or .json) config file')
    cv_parser.add_argument('--folds', type=int, default=5, help='Number of folds (default: 5)')
    cv_parser.add_argument('--seed', type=int, default=42, help='Fold shuffling seed')
    cv_parser.add_argument('overrides', nargs='*', help='key=value config overrides')

    # key=value overrides may follow options; collect them from the leftovers
    args, extras = parser.parse_known_args(argv)
    unknown = [e for e in extras if e.startswith('-')]
    if unknown or (extras and not args.command):
        parser.error(f"unrecognized arguments: {' '.join(unknown or extras)}")
    if extras:
        args.overrides = list(args.overrides) + extras

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    handlers = {
        'train': cmd_train,
        'test': cmd_test,
        'probs': cmd_probs,
        'kbest': cmd_kbest,
        'cv': cmd_cv,
    }
    try:
        return handlers[args.command](args)
    except ChainCRFError as e:
        print(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
