#!/usr/bin/env python
"""
Example: Named-Entity Tagging with a Linear-Chain CRF

Demonstrates basic usage of the chaincrf toolkit.
"""

from chaincrf import (
    CRFConfig,
    CRFClassifier,
    CoolingSchedule,
    SequenceGibbsSampler,
    make_document,
    word_shape
)


def main():
    print("=" * 60)
    print("Linear-Chain CRF Tagging Demo")
    print("=" * 60)

    # Example sentences
    corpus = [
        (["John", "lives", "in", "Paris"], ["PER", "O", "O", "LOC"]),
        (["Mary", "visited", "London"], ["PER", "O", "LOC"]),
        (["Paris", "is", "big"], ["LOC", "O", "O"]),
        (["John", "met", "Mary", "in", "London"], ["PER", "O", "PER", "O", "LOC"]),
    ]

    # Step 1: Word shapes
    print("\n1. Word Shapes")
    print("-" * 40)
    for word in ["Paris", "U.S.", "B52", "Washington"]:
        shapes = {name: word_shape(word, name) for name in ["dan1", "chris1", "chris2", "jenny1"]}
        print(f"  {word:<12} {shapes}")

    # Step 2: Train
    print("\n2. Training")
    print("-" * 40)
    config = CRFConfig(
        max_left=1,
        use_prev=True,
        use_next=True,
        use_prev_sequences=True,
        word_shape="chris2",
        sigma=10.0,
        tolerance=1e-6,
    )
    clf = CRFClassifier(config)
    documents = [make_document(words, answers) for words, answers in corpus]
    history = clf.train(documents)
    print(f"  Classes:  {clf.labels()}")
    print(f"  Features: {len(clf.feature_index):,}")
    print(f"  Weights:  {clf.weights.size:,}")
    print(f"  Final objective: {history['final_value']:.4f}")

    # Step 3: Viterbi decoding
    print("\n3. Viterbi Decoding")
    print("-" * 40)
    words = ["Mary", "lives", "in", "London"]
    doc = clf.classify_words(words)
    print(f"  {' '.join(f'{t.word}/{t.answer}' for t in doc)}")

    # Step 4: Marginals
    print("\n4. Label Marginals")
    print("-" * 40)
    for word, dist in zip(words, clf.probs_document(make_document(words))):
        cells = ", ".join(f"{label}={p:.2f}" for label, p in dist.items())
        print(f"  {word:<8} {cells}")

    # Step 5: K-best labelings
    print("\n5. K-Best Labelings")
    print("-" * 40)
    for labels, p in clf.test_k_best(make_document(words), 3).most_common():
        print(f"  {p:.4f}  {' '.join(labels)}")

    # Step 6: Simulated annealing
    print("\n6. Gibbs Sampling with Annealing")
    print("-" * 40)
    tree = clf.sequence_model(make_document(words)).tree
    sampler = SequenceGibbsSampler(random_state=0)
    best = sampler.find_best_using_annealing(tree, CoolingSchedule.linear(1.0, 50))
    print(f"  Annealed: {[clf.class_index.get(l) for l in best]}")
    print(f"  Log prob: {tree.log_prob_sequence(best):.4f}")

    print("\n" + "=" * 60)
    print("Demo complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
