"""
Token records, padded document views, word shapes and document preparation.

A document is a plain ``List[Token]``. Feature templates never index the
list directly: they go through a ``PaddedView`` which returns the immutable
``BOUNDARY`` token outside the document, so templates can look several
positions to either side without bounds checks.
"""

from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

import regex


# ==============================================================================
# Token Records
# ==============================================================================

WORD_KEY = "word"
ANSWER_KEY = "answer"
GOLD_ANSWER_KEY = "gold_answer"


class Token:
    """
    One input position: surface word, answer label, gold label and any
    number of named string attributes (``tag``, ``chunk``, ``lemma``,
    ``shape``, ``position``, ...). Missing attributes read as ``""``.
    """

    __slots__ = ("word", "answer", "gold_answer", "attrs")

    def __init__(
        self,
        word: str,
        answer: Optional[str] = None,
        gold_answer: Optional[str] = None,
        **attrs: str
    ):
        self.word = word
        self.answer = answer
        self.gold_answer = gold_answer
        self.attrs: Dict[str, str] = dict(attrs)

    def get(self, key: str, default: str = "") -> str:
        if key == WORD_KEY:
            return self.word
        if key == ANSWER_KEY:
            return self.answer if self.answer is not None else default
        if key == GOLD_ANSWER_KEY:
            return self.gold_answer if self.gold_answer is not None else default
        value = self.attrs.get(key)
        return default if value is None else value

    def set(self, key: str, value):
        if key == WORD_KEY:
            self.word = value
        elif key == ANSWER_KEY:
            self.answer = value
        elif key == GOLD_ANSWER_KEY:
            self.gold_answer = value
        else:
            self.attrs[key] = value

    @property
    def tag(self) -> str:
        return self.attrs.get("tag", "")

    @property
    def shape(self) -> str:
        return self.attrs.get("shape", "")

    def copy(self) -> "Token":
        return Token(self.word, self.answer, self.gold_answer, **self.attrs)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Token):
            return NotImplemented
        return (self.word == other.word and self.answer == other.answer
                and self.gold_answer == other.gold_answer and self.attrs == other.attrs)

    def __hash__(self):
        return hash((self.word, self.answer))

    def __repr__(self) -> str:
        return f"Token({self.word!r}, answer={self.answer!r})"


class _BoundaryToken:
    """Read-only token returned for positions outside a document."""

    __slots__ = ()

    word = ""
    answer = None
    gold_answer = None

    def get(self, key: str, default: str = "") -> str:
        return default

    @property
    def tag(self) -> str:
        return ""

    @property
    def shape(self) -> str:
        return ""

    def __repr__(self) -> str:
        return "BOUNDARY"


BOUNDARY = _BoundaryToken()


class PaddedView:
    """
    Read-only view of a document extended with ``BOUNDARY`` on both sides.

    ``view[i]`` is the token at ``i`` or ``BOUNDARY``; ``answer(i)`` is the
    token's answer or the background label outside the document.
    """

    __slots__ = ("tokens", "background")

    def __init__(self, tokens: Sequence[Token], background: str):
        self.tokens = tokens
        self.background = background

    def __len__(self) -> int:
        return len(self.tokens)

    def __getitem__(self, i: int):
        if 0 <= i < len(self.tokens):
            return self.tokens[i]
        return BOUNDARY

    def is_pad(self, i: int) -> bool:
        return not 0 <= i < len(self.tokens)

    def word(self, i: int) -> str:
        return self[i].word

    def answer(self, i: int) -> str:
        if self.is_pad(i):
            return self.background
        answer = self.tokens[i].answer
        return self.background if answer is None else answer


# ==============================================================================
# Word Shapes
# ==============================================================================

_UPPER = regex.compile(r"[\p{Lu}\p{Lt}]")
_LOWER = regex.compile(r"\p{Ll}")
_DIGIT = regex.compile(r"\p{Nd}")
_GREEK = regex.compile(
    r"alpha|beta|gamma|delta|epsilon|zeta|theta|iota|kappa|lambda|"
    r"omicron|rho|sigma|tau|upsilon|omega", regex.IGNORECASE
)


def _char_class(ch: str) -> str:
    if _UPPER.match(ch):
        return "X"
    if _LOWER.match(ch):
        return "x"
    if _DIGIT.match(ch):
        return "d"
    return ch


def _collapse(classes: Iterable[str], max_run: int = 1) -> str:
    out = []
    run = 0
    for c in classes:
        if out and out[-1] == c:
            run += 1
            if run >= max_run:
                continue
        else:
            run = 0
        out.append(c)
    return "".join(out)


def shape_dan1(word: str, known_lc_words: Optional[Set[str]] = None) -> str:
    """Coarse case class: ALL-DIGITS, ALL-UPPER, ALL-LOWER, MIXED-CASE, OTHER."""
    if not word:
        return "EMPTY"
    digit = upper = lower = mixed = True
    for i, ch in enumerate(word):
        is_upper = bool(_UPPER.match(ch))
        is_lower = bool(_LOWER.match(ch))
        if not _DIGIT.match(ch):
            digit = False
        if not is_lower:
            lower = False
        if not is_upper:
            upper = False
        if (i == 0 and not is_upper) or (i >= 1 and not is_lower):
            mixed = False
    if digit:
        return "ALL-DIGITS"
    if upper:
        return "ALL-UPPER"
    if lower:
        return "ALL-LOWER"
    if mixed:
        return "MIXED-CASE"
    return "OTHER"


def shape_dan2(word: str, known_lc_words: Optional[Set[str]] = None) -> str:
    """dan1 plus markers for dashes, digits, periods and commas."""
    base = shape_dan1(word)
    markers = []
    if "-" in word:
        markers.append("DASH")
    if base != "ALL-DIGITS" and _DIGIT.search(word):
        markers.append("DIGIT")
    if "." in word:
        markers.append("PERIOD")
    if "," in word:
        markers.append("COMMA")
    return "-".join([base] + markers)


def shape_chris1(word: str, known_lc_words: Optional[Set[str]] = None) -> str:
    """Character classes with runs collapsed: ``Hello`` -> ``Xx``, ``U.S.`` -> ``X.X.``."""
    return _collapse(_char_class(ch) for ch in word)


def shape_chris2(word: str, known_lc_words: Optional[Set[str]] = None, bound: int = 2) -> str:
    """
    Exact classes for the first and last ``bound`` characters, the sorted
    set of classes in between. Short words keep every character class.
    """
    classes = [_char_class(ch) for ch in word]
    if len(classes) <= 2 * bound:
        return "".join(classes)
    middle = sorted(set(classes[bound:-bound]))
    return "".join(classes[:bound]) + "".join(middle) + "".join(classes[-bound:])


def shape_chris2_use_lc(word: str, known_lc_words: Optional[Set[str]] = None) -> str:
    """chris2, marked with ``k`` for capitalised words also seen in lowercase."""
    shape = shape_chris2(word)
    if known_lc_words and word and _UPPER.match(word[0]) and word.lower() in known_lc_words:
        shape += "k"
    return shape


def shape_jenny1(word: str, known_lc_words: Optional[Set[str]] = None) -> str:
    """Character classes with runs capped at two: ``Washington`` -> ``Xxx``."""
    return _collapse((_char_class(ch) for ch in word), max_run=2)


WORD_SHAPERS: Dict[str, Optional[Callable[..., str]]] = {
    "none": None,
    "dan1": shape_dan1,
    "dan2": shape_dan2,
    "chris1": shape_chris1,
    "chris2": shape_chris2,
    "chris2uselc": shape_chris2_use_lc,
    "jenny1": shape_jenny1,
}


def word_shape(word: str, shaper: str, known_lc_words: Optional[Set[str]] = None) -> str:
    """Shape of ``word`` under the named shaper (``"none"`` returns the word)."""
    fn = WORD_SHAPERS[shaper.lower()]
    if fn is None:
        return word
    return fn(word, known_lc_words)


def is_greek(word: str) -> bool:
    return bool(_GREEK.search(word))


# ==============================================================================
# Document Preparation
# ==============================================================================

def make_document(
    words: Sequence[str],
    answers: Optional[Sequence[str]] = None,
    **columns: Sequence[str]
) -> List[Token]:
    """
    Build a document from parallel lists.

    Args:
        words: Surface words
        answers: Labels (default: none), also kept as the gold answers
        **columns: Extra attribute columns, e.g. ``tag=[...]``

    Returns:
        List of Token
    """
    doc = []
    for i, w in enumerate(words):
        attrs = {k: v[i] for k, v in columns.items()}
        answer = answers[i] if answers is not None else None
        doc.append(Token(w, answer, answer, **attrs))
    return doc


def copy_document(doc: Sequence[Token]) -> List[Token]:
    return [t.copy() for t in doc]


def collect_known_lc_words(documents: Iterable[Sequence[Token]], known: Optional[Set[str]] = None) -> Set[str]:
    """Add every word that begins with a lowercase letter to ``known``."""
    if known is None:
        known = set()
    for doc in documents:
        for token in doc:
            if token.word and _LOWER.match(token.word[0]):
                known.add(token.word)
    return known


def _merge_tag(answer: Optional[str], background: str) -> Optional[str]:
    if answer is not None and answer != background and "-" in answer:
        return answer[2:]
    return answer


def merge_tags(doc: Sequence[Token], background: str):
    """Strip ``B-``/``I-`` style prefixes from answers and gold answers."""
    for token in doc:
        token.answer = _merge_tag(token.answer, background)
        token.gold_answer = _merge_tag(token.gold_answer, background)


def _iob(answers: List[Optional[str]], background: str) -> List[Optional[str]]:
    out = []
    last = ""
    for answer in answers:
        if answer is not None and answer != background:
            idx = answer.find("-")
            if idx < 0:
                prefix, label = "", answer
            else:
                prefix, label = answer[:1], answer[2:]
            if prefix != "B":
                answer = ("I-" if last == label else "B-") + label
            last = label
        elif answer is not None:
            last = answer
        out.append(answer)
    return out


def iob_tags(doc: Sequence[Token], background: str):
    """Rewrite answers (and gold answers) to IOB: the first token of each entity becomes ``B-``."""
    answers = _iob([t.answer for t in doc], background)
    golds = _iob([t.gold_answer for t in doc], background)
    for token, answer, gold in zip(doc, answers, golds):
        token.answer = answer
        token.gold_answer = gold


def fix_doc_lengths(documents: Iterable[List[Token]], max_doc_size: int) -> List[List[Token]]:
    """
    Split documents longer than ``max_doc_size``, preferring a ``"."`` token
    between half and full size as the split point.
    """
    out = []
    for doc in documents:
        if max_doc_size < 0:
            out.append(doc)
            continue
        while len(doc) > max_doc_size:
            split = 0
            for j in range(min(max_doc_size, len(doc) - 1), max_doc_size // 2, -1):
                if doc[j].word == ".":
                    split = j + 1
                    break
            if split == 0:
                split = max(max_doc_size, 1)
            out.append(doc[:split])
            doc = doc[split:]
        if doc:
            out.append(doc)
    return out


def process_document(
    doc: List[Token],
    config,
    known_lc_words: Optional[Set[str]] = None,
    copy_gold: bool = True
) -> List[Token]:
    """
    Prepare a document in place for feature extraction.

    Applies tag merging / IOB conversion when configured, numbers the
    positions and computes word shapes. With ``copy_gold`` the answer of a
    token without a gold answer becomes its gold answer; a gold answer
    already set is never overwritten.

    Args:
        doc: Document tokens
        config: CRFConfig
        known_lc_words: Lowercase vocabulary for ``chris2useLC`` shapes
        copy_gold: Copy answers into missing gold answers (off when
            decoding, where answers are about to be overwritten)

    Returns:
        The same list
    """
    bg = config.background_symbol
    if config.merge_tags:
        merge_tags(doc, bg)
    if config.iob_tags:
        iob_tags(doc, bg)

    shaper = None
    if config.word_shape.lower() != "none" and not config.use_shape_strings:
        shaper = WORD_SHAPERS[config.word_shape.lower()]

    for position, token in enumerate(doc):
        token.set("position", str(position))
        if shaper is not None:
            token.set("shape", shaper(token.word, known_lc_words))
        if copy_gold and token.gold_answer is None:
            token.gold_answer = token.answer
    return doc


def prepare_documents(
    documents: Iterable[List[Token]],
    config,
    known_lc_words: Optional[Set[str]] = None
) -> List[List[Token]]:
    """Split over-long documents, then ``process_document`` each one."""
    docs = fix_doc_lengths(documents, config.max_doc_size)
    return [process_document(doc, config, known_lc_words) for doc in docs]
