"""
Sequence models and decoders.

A ``SequenceModel`` scores label sequences position by position. Best-
sequence finders work in padded coordinates: a model of ``length()`` n
with windows ``left_window()`` L and ``right_window()`` R is decoded over
L + n + R positions, the real positions being ``L .. L+n-1``. The Gibbs
sampler works directly on the n real positions.
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.special import logsumexp

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# ==============================================================================
# Sequence Model Contract
# ==============================================================================

class SequenceModel(ABC):
    """Scores label sequences, one position at a time."""

    @abstractmethod
    def length(self) -> int:
        ...

    @abstractmethod
    def left_window(self) -> int:
        ...

    @abstractmethod
    def right_window(self) -> int:
        ...

    @abstractmethod
    def possible_labels(self, pos: int) -> List[int]:
        ...

    @abstractmethod
    def score_of(self, tags: Sequence[int], pos: int) -> float:
        ...

    @abstractmethod
    def scores_of(self, tags: Sequence[int], pos: int) -> np.ndarray:
        """Score of every label at ``pos`` with the other labels of ``tags`` fixed."""

    @abstractmethod
    def score_of_sequence(self, tags: Sequence[int]) -> float:
        ...


class SequenceListener(ABC):
    """Notified whenever a sampler changes one label of the current sequence."""

    @abstractmethod
    def set_initial_sequence(self, sequence: Sequence[int]):
        ...

    @abstractmethod
    def update_sequence_element(self, sequence: Sequence[int], pos: int, old_value: int):
        ...


class BestSequenceFinder(ABC):

    @abstractmethod
    def best_sequence(self, model: SequenceModel) -> List[int]:
        """Highest-scoring padded label sequence."""


# ==============================================================================
# Exact and Beam Decoding
# ==============================================================================

def _padded_setup(model: SequenceModel):
    L, R = model.left_window(), model.right_window()
    n = model.length()
    return L, R, n, L + n + R


def _window_score(model: SequenceModel, tags: np.ndarray, t: int, full: Tuple[int, ...],
                  L: int, R: int, n: int) -> float:
    """Score of the position completed by assigning the label at ``t``."""
    p = t - R
    if L <= p < L + n:
        tags[t - len(full) + 1:t + 1] = full
        return model.score_of(tags, p)
    return 0.0


def _backtrack(back: List[Dict], state, N: int) -> List[int]:
    seq = [0] * N
    for t in range(N - 1, -1, -1):
        prev, label = back[t][state]
        seq[t] = label
        state = prev
    return seq


class ExactBestSequenceFinder(BestSequenceFinder):
    """
    Viterbi decoding over histories of ``left + right`` labels.

    Candidates are enumerated in increasing label-id order; a later
    candidate replaces the incumbent only when its score is strictly
    greater.
    """

    def __init__(self, beam_size: Optional[int] = None):
        self.beam_size = beam_size

    def best_sequence(self, model: SequenceModel) -> List[int]:
        return self.best_sequence_and_score(model)[0]

    def best_sequence_and_score(self, model: SequenceModel) -> Tuple[List[int], float]:
        L, R, n, N = _padded_setup(model)
        h = L + R
        tags = np.zeros(N, dtype=np.int64)
        states: Dict[Tuple[int, ...], float] = {(): 0.0}
        back: List[Dict] = []

        for t in range(N):
            labels = sorted(model.possible_labels(t))
            new_states: Dict[Tuple[int, ...], float] = {}
            pointers: Dict = {}
            for prev in sorted(states):
                base = states[prev]
                for label in labels:
                    full = prev + (label,)
                    score = base + _window_score(model, tags, t, full, L, R, n)
                    state = full[-h:] if h else ()
                    if state not in new_states or score > new_states[state]:
                        new_states[state] = score
                        pointers[state] = (prev, label)
            if self.beam_size is not None and len(new_states) > self.beam_size:
                kept = sorted(new_states, key=lambda s: -new_states[s])[:self.beam_size]
                new_states = {s: new_states[s] for s in kept}
            states = new_states
            back.append(pointers)

        best_state, best_score = None, float("-inf")
        for state in sorted(states):
            score = states[state]
            if best_state is None or score > best_score:
                best_state, best_score = state, score
        return _backtrack(back, best_state, N), best_score


class BeamBestSequenceFinder(ExactBestSequenceFinder):
    """
    Viterbi with at most ``beam_size`` histories kept per position (the
    best hypothesis per history first, then the top ``beam_size``).
    Exact when ``beam_size`` is at least the number of histories.
    """

    def __init__(self, beam_size: int = 30):
        if beam_size < 1:
            raise ConfigurationError(f"beam_size must be positive, got {beam_size}")
        super().__init__(beam_size=beam_size)


class KBestSequenceFinder:
    """Exact k-best list decoding."""

    def k_best_sequences(self, model: SequenceModel, k: int) -> Counter:
        """
        The ``k`` highest-scoring padded sequences.

        Returns:
            Counter mapping padded label tuple to its score
        """
        L, R, n, N = _padded_setup(model)
        h = L + R
        tags = np.zeros(N, dtype=np.int64)
        # state -> list of (score, prev_state, rank in prev_state, label), best first
        states: Dict[Tuple[int, ...], List[tuple]] = {(): [(0.0, None, None, None)]}
        history: List[Dict] = []

        for t in range(N):
            labels = sorted(model.possible_labels(t))
            new_states: Dict[Tuple[int, ...], List[tuple]] = {}
            for prev in sorted(states):
                entries = states[prev]
                for label in labels:
                    full = prev + (label,)
                    term = _window_score(model, tags, t, full, L, R, n)
                    state = full[-h:] if h else ()
                    bucket = new_states.setdefault(state, [])
                    for rank, entry in enumerate(entries):
                        bucket.append((entry[0] + term, prev, rank, label))
            for state, bucket in new_states.items():
                bucket.sort(key=lambda e: -e[0])
                del bucket[k:]
            states = new_states
            history.append(states)

        finals = []
        for state in sorted(states):
            for rank, entry in enumerate(states[state]):
                finals.append((entry[0], state, rank))
        finals.sort(key=lambda e: -e[0])

        result = Counter()
        for score, state, rank in finals[:k]:
            seq = [0] * N
            for t in range(N - 1, -1, -1):
                _, prev, prev_rank, label = history[t][state][rank]
                seq[t] = label
                state, rank = prev, prev_rank
            result[tuple(seq)] = score
        return result

    def best_sequence(self, model: SequenceModel) -> List[int]:
        best = self.k_best_sequences(model, 1)
        return list(next(iter(best)))


# ==============================================================================
# Sampling
# ==============================================================================

class CoolingSchedule:
    """Temperature per annealing iteration."""

    def __init__(self, num_iterations: int, temperature: Callable[[int], float]):
        self.num_iterations = num_iterations
        self._temperature = temperature

    def temperature(self, iteration: int) -> float:
        return self._temperature(iteration)

    @classmethod
    def linear(cls, start: float, num_iterations: int) -> "CoolingSchedule":
        """``num_iterations + 1`` steps from ``start`` down to exactly zero."""
        if num_iterations < 1:
            raise ConfigurationError(f"num_iterations must be positive, got {num_iterations}")
        rate = start / num_iterations
        return cls(num_iterations + 1, lambda i: start - rate * i)

    @classmethod
    def exponential(cls, start: float, rate: float, num_iterations: int) -> "CoolingSchedule":
        if num_iterations < 1:
            raise ConfigurationError(f"num_iterations must be positive, got {num_iterations}")
        if not 0.0 < rate <= 1.0:
            raise ConfigurationError(f"rate must be in (0, 1], got {rate}")
        return cls(num_iterations, lambda i: start * rate ** i)


class SequenceGibbsSampler:
    """
    Gibbs sampler with simulated annealing.

    Args:
        listener: Notified of the initial sequence and every label change
        random_state: Seed or numpy Generator
    """

    def __init__(self, listener: Optional[SequenceListener] = None, random_state=None):
        self.listener = listener
        self.rng = np.random.default_rng(random_state)

    def random_sequence(self, model: SequenceModel) -> List[int]:
        return [int(self.rng.choice(model.possible_labels(pos))) for pos in range(model.length())]

    def sample_position(self, model: SequenceModel, sequence: List[int], pos: int,
                        temperature: float = 1.0) -> int:
        """Resample the label at ``pos`` from its full conditional at ``temperature``."""
        scores = np.asarray(model.scores_of(sequence, pos), dtype=np.float64)
        if temperature == 0:
            new = int(np.argmax(scores))
        else:
            scores = scores / temperature
            probs = np.exp(scores - logsumexp(scores))
            new = int(self.rng.choice(len(probs), p=probs / probs.sum()))
        old = sequence[pos]
        if new != old:
            sequence[pos] = new
            if self.listener is not None:
                self.listener.update_sequence_element(sequence, pos, old)
        return new

    def sample_sequence_forward(self, model: SequenceModel, sequence: List[int],
                                temperature: float = 1.0):
        for pos in range(len(sequence)):
            self.sample_position(model, sequence, pos, temperature)

    def find_best_using_annealing(
        self,
        model: SequenceModel,
        schedule: CoolingSchedule,
        initial: Optional[Sequence[int]] = None
    ) -> List[int]:
        """
        Anneal from ``initial`` (default: a random sequence).

        Every sweep's sequence is scored with ``model.score_of_sequence``.
        The returned sequence is the best-scoring one visited, the initial
        one included, not the sequence of the last sweep: it is never worse
        than either the starting point or the final state.

        Args:
            model: Model (or factored model and prior) to sample from
            schedule: Temperature of each sweep
            initial: Starting sequence in padded coordinates

        Returns:
            Best sequence visited
        """
        sequence = list(initial) if initial is not None else self.random_sequence(model)
        if self.listener is not None:
            self.listener.set_initial_sequence(sequence)
        best = list(sequence)
        best_score = model.score_of_sequence(sequence)
        for i in range(schedule.num_iterations):
            self.sample_sequence_forward(model, sequence, schedule.temperature(i))
            score = model.score_of_sequence(sequence)
            if score > best_score:
                best, best_score = list(sequence), score
        logger.debug("Annealing finished with score %.4f", best_score)
        return best

    def collect_samples(self, model: SequenceModel, num_samples: int,
                        initial: Optional[Sequence[int]] = None) -> List[List[int]]:
        sequence = list(initial) if initial is not None else self.random_sequence(model)
        if self.listener is not None:
            self.listener.set_initial_sequence(sequence)
        samples = []
        for _ in range(num_samples):
            self.sample_sequence_forward(model, sequence)
            samples.append(list(sequence))
        return samples


class SequenceSampler(BestSequenceFinder):
    """Draws one padded sequence by sampling positions left to right from ``scores_of``."""

    def __init__(self, random_state=None):
        self.rng = np.random.default_rng(random_state)

    def best_sequence(self, model: SequenceModel) -> List[int]:
        L, R, n, N = _padded_setup(model)
        tags = np.zeros(N, dtype=np.int64)
        for pos in range(N):
            labels = model.possible_labels(pos)
            if len(labels) == 1 or not L <= pos < L + n:
                tags[pos] = labels[0]
                continue
            scores = np.asarray(model.scores_of(tags, pos), dtype=np.float64)[labels]
            probs = np.exp(scores - logsumexp(scores))
            tags[pos] = labels[int(self.rng.choice(len(labels), p=probs / probs.sum()))]
        return [int(t) for t in tags]


# ==============================================================================
# Priors
# ==============================================================================

class SequencePrior(SequenceModel, SequenceListener):
    """A document-level model combined with the CRF during Gibbs sampling."""

    def __init__(self, background: int, num_classes: int, length: int):
        self.background = background
        self.num_classes = num_classes
        self._length = length

    def length(self) -> int:
        return self._length

    def left_window(self) -> int:
        return self._length

    def right_window(self) -> int:
        return self._length

    def possible_labels(self, pos: int) -> List[int]:
        return list(range(self.num_classes))

    def scores_of(self, tags: Sequence[int], pos: int) -> np.ndarray:
        tags = list(tags)
        scores = np.empty(self.num_classes)
        for label in range(self.num_classes):
            tags[pos] = label
            scores[label] = self.score_of_sequence(tags)
        return scores

    def score_of(self, tags: Sequence[int], pos: int) -> float:
        return self.score_of_sequence(tags)

    def set_initial_sequence(self, sequence: Sequence[int]):
        pass

    def update_sequence_element(self, sequence: Sequence[int], pos: int, old_value: int):
        pass


def find_entities(sequence: Sequence[int], background: int) -> List[Tuple[int, int, int]]:
    """Maximal runs of one non-background label as ``(start, end, label)``, end exclusive."""
    entities = []
    start = 0
    for i in range(1, len(sequence) + 1):
        if i == len(sequence) or sequence[i] != sequence[start]:
            if sequence[start] != background:
                entities.append((start, i, sequence[start]))
            start = i
    return entities


class EntityConsistencyPrior(SequencePrior):
    """
    Penalises inconsistent labelings of repeated word spans: every other
    occurrence of an entity's words that is not wholly labeled with the
    entity's label costs ``penalty``.

    Args:
        background: Background label id
        class_index: Label Index
        document: Tokens of the document being labeled
        penalty: Log-score cost per inconsistent occurrence
    """

    def __init__(self, background: int, class_index, document, penalty: float = 1.0):
        super().__init__(background, len(class_index), len(document))
        self.words = [token.word for token in document]
        self.penalty = penalty
        self._occurrences: Dict[Tuple[str, ...], List[int]] = {}
        self._score: Optional[float] = None

    def occurrences(self, span: Tuple[str, ...]) -> List[int]:
        found = self._occurrences.get(span)
        if found is None:
            k = len(span)
            found = [i for i in range(len(self.words) - k + 1) if tuple(self.words[i:i + k]) == span]
            self._occurrences[span] = found
        return found

    def score_of_sequence(self, tags: Sequence[int]) -> float:
        score = 0.0
        for start, end, label in find_entities(tags, self.background):
            span = tuple(self.words[start:end])
            for i in self.occurrences(span):
                if i == start:
                    continue
                if any(tags[j] != label for j in range(i, i + end - start)):
                    score -= self.penalty
        return score

    def set_initial_sequence(self, sequence: Sequence[int]):
        self._score = self.score_of_sequence(sequence)

    def update_sequence_element(self, sequence: Sequence[int], pos: int, old_value: int):
        self._score = self.score_of_sequence(sequence)

    @property
    def current_score(self) -> Optional[float]:
        return self._score


class FactoredSequenceModel(SequenceModel):
    """Sum of the scores of two models over the same positions."""

    def __init__(self, model1: SequenceModel, model2: SequenceModel):
        if model1.length() != model2.length():
            raise ValueError(
                f"models disagree on length: {model1.length()} vs {model2.length()}"
            )
        self.model1 = model1
        self.model2 = model2

    def length(self) -> int:
        return self.model1.length()

    def left_window(self) -> int:
        return max(self.model1.left_window(), self.model2.left_window())

    def right_window(self) -> int:
        return max(self.model1.right_window(), self.model2.right_window())

    def possible_labels(self, pos: int) -> List[int]:
        return self.model1.possible_labels(pos)

    def score_of(self, tags: Sequence[int], pos: int) -> float:
        return self.model1.score_of(tags, pos) + self.model2.score_of(tags, pos)

    def scores_of(self, tags: Sequence[int], pos: int) -> np.ndarray:
        return np.asarray(self.model1.scores_of(tags, pos)) + np.asarray(self.model2.scores_of(tags, pos))

    def score_of_sequence(self, tags: Sequence[int]) -> float:
        return self.model1.score_of_sequence(tags) + self.model2.score_of_sequence(tags)


class FactoredSequenceListener(SequenceListener):

    def __init__(self, listener1: SequenceListener, listener2: SequenceListener):
        self.listener1 = listener1
        self.listener2 = listener2

    def set_initial_sequence(self, sequence: Sequence[int]):
        self.listener1.set_initial_sequence(sequence)
        self.listener2.set_initial_sequence(sequence)

    def update_sequence_element(self, sequence: Sequence[int], pos: int, old_value: int):
        self.listener1.update_sequence_element(sequence, pos, old_value)
        self.listener2.update_sequence_element(sequence, pos, old_value)


PRIORS: Dict[str, Callable[..., SequencePrior]] = {
    "entity": EntityConsistencyPrior,
}


def make_prior(name: str, background: int, class_index, document, penalty: float = 1.0) -> SequencePrior:
    try:
        cls = PRIORS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown prior: {name!r}. Known: {', '.join(sorted(PRIORS))}"
        )
    return cls(background, class_index, document, penalty)


def make_best_sequence_finder(inference_type: str, beam_size: int = 30) -> BestSequenceFinder:
    kind = (inference_type or "Viterbi").lower()
    if kind == "viterbi":
        return ExactBestSequenceFinder()
    if kind == "beam":
        return BeamBestSequenceFinder(beam_size)
    raise ConfigurationError(
        f"Unknown inference type: {inference_type}. Your options are Viterbi|Beam."
    )
