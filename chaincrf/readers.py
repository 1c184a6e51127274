"""
Document readers and answer writers.

Two on-disk formats are supported:

- column format: one token per line, whitespace-separated columns mapped
  to token attributes by a ``map`` string such as ``"word=0,tag=1,answer=2"``,
  documents separated by blank lines;
- CoNLL format: 2 to 5 columns per line, the whole file is one document and
  blank lines become ``*BOUNDARY*`` tokens.
"""

import logging
import re
from typing import Dict, Iterator, List, Sequence, TextIO

from .exceptions import ConfigurationError
from .preprocessing import Token

logger = logging.getLogger(__name__)

CONLL_BOUNDARY = "*BOUNDARY*"
CONLL_OTHER = "O"

_DOC_SPLIT = re.compile(r"\n(?:\s*\n)+")


def parse_column_map(mapping: str) -> Dict[int, str]:
    """
    Parse ``"word=0,tag=1,answer=2"`` into ``{0: "word", 1: "tag", 2: "answer"}``.

    Raises:
        ConfigurationError: if an entry is malformed
    """
    columns = {}
    for part in mapping.split(","):
        part = part.strip()
        if not part:
            continue
        name, _, idx = part.partition("=")
        try:
            columns[int(idx)] = name.strip()
        except ValueError:
            raise ConfigurationError(f"Bad column map entry: {part!r}")
    return columns


# ==============================================================================
# Column Format
# ==============================================================================

class ColumnDocumentReader:
    """Reader and writer for blank-line separated column files."""

    def __init__(self, config):
        self.config = config
        self.columns = parse_column_map(config.map)

    def parse_line(self, line: str) -> Token:
        bits = line.split()
        token = Token("")
        for i, value in enumerate(bits):
            name = self.columns.get(i)
            if name is not None:
                token.set(name, value)
        if token.gold_answer is None:
            token.gold_answer = token.answer
        return token

    def parse_document(self, text: str) -> List[Token]:
        return [self.parse_line(line) for line in text.split("\n") if line.strip()]

    def read(self, f: TextIO) -> Iterator[List[Token]]:
        for chunk in _DOC_SPLIT.split(f.read()):
            doc = self.parse_document(chunk)
            if doc:
                yield doc

    def read_file(self, path: str) -> List[List[Token]]:
        with open(path, "r", encoding="utf-8") as f:
            docs = list(self.read(f))
        logger.info("Read %d documents from %s", len(docs), path)
        return docs

    def print_answers(self, doc: Sequence[Token], out: TextIO):
        for token in doc:
            out.write(f"{token.word}\t{token.gold_answer}\t{token.answer}\n")
        out.write("\n")


# ==============================================================================
# CoNLL Format
# ==============================================================================

def _split_answer(answer: str):
    """Split ``"B-PER"`` into ``("B", "PER")``; plain labels give ``("", label)``."""
    if len(answer) > 1 and answer[1] == "-":
        return answer[0], answer[2:]
    return "", answer


def _base_of(answer: str) -> str:
    return answer[2:] if len(answer) > 2 else answer


def entity_subclassify(doc: Sequence[Token], style: str):
    """
    Rewrite prefixed answers (``I-PER``, ``B-PER``...) into another entity
    encoding: ``iob1``, ``iob2``, ``ioe1``, ``ioe2``, ``io`` or ``sbieo``.
    Works on any of these encodings as input, except ``io`` which loses
    the boundaries between adjacent same-type entities.
    """
    style = style.lower()
    if style not in ("iob1", "iob2", "ioe1", "ioe2", "io", "sbieo"):
        logger.warning("entity_subclassify: unknown style %r, using io", style)
        style = "io"

    def answer_at(i):
        if 0 <= i < len(doc):
            return doc[i].answer or ""
        return ""

    new_answers = []
    for i in range(len(doc)):
        c, p, n = answer_at(i), answer_at(i - 1), answer_at(i + 1)
        prefix, base = _split_answer(c)
        if not prefix:
            new_answers.append(doc[i].answer)
            continue
        p_base, n_base = _base_of(p), _base_of(n)
        p_prefix = p[0] if p else " "
        n_prefix = n[0] if n else " "
        start_adjacent_same = base == p_base and (
            prefix in "BS" or p_prefix in "ES")
        end_adjacent_same = base == n_base and (
            prefix in "ES" or n_prefix == "B" or p_prefix == "S")
        is_first = base != p_base or prefix == "B"
        is_last = base != n_base or n_prefix == "B"

        if style == "iob1":
            new = ("B-" if start_adjacent_same else "I-") + base
        elif style == "iob2":
            new = ("B-" if is_first else "I-") + base
        elif style == "ioe1":
            new = ("E-" if end_adjacent_same else "I-") + base
        elif style == "ioe2":
            new = ("E-" if is_last else "I-") + base
        elif style == "io":
            new = "I-" + base
        else:
            if is_first and is_last:
                new = "S-" + base
            elif is_last:
                new = "E-" + base
            elif is_first:
                new = "B-" + base
            else:
                new = "I-" + base
        new_answers.append(new)

    for token, answer in zip(doc, new_answers):
        token.answer = answer


def de_endify(doc: Sequence[Token]):
    """Return answers to IOB1 marking, whatever encoding they were in."""
    new_answers = []
    prev = ""
    for token in doc:
        c = token.answer or ""
        prefix, base = _split_answer(c)
        if prefix:
            is_second = base == _base_of(prev)
            is_start = prefix in "BS"
            new_answers.append(("B-" if is_second and is_start else "I-") + base)
        else:
            new_answers.append(token.answer)
        prev = c
    for token, answer in zip(doc, new_answers):
        token.answer = answer


class CoNLLDocumentReader:
    """Reader and writer for CoNLL 2003 style files."""

    def __init__(self, config):
        self.config = config

    def make_token(self, line: str) -> Token:
        bits = line.split()
        n = len(bits)
        if n <= 1:
            token = Token(CONLL_BOUNDARY, CONLL_OTHER)
        elif n == 2:
            token = Token(bits[0], bits[1])
        elif n == 3:
            token = Token(bits[0], bits[2], tag=bits[1])
        elif n == 4:
            token = Token(bits[0], bits[3], tag=bits[1], chunk=bits[2])
        elif n == 5:
            word = bits[1] if self.config.use_lemma_as_word else bits[0]
            token = Token(word, bits[4], lemma=bits[1], tag=bits[2], chunk=bits[3])
        else:
            raise ValueError(f"Unexpected input (many fields): {line!r}")
        token.set("orig_answer", token.answer)
        return token

    def parse_document(self, text: str) -> List[Token]:
        doc = []
        for line in text.split("\n"):
            if self.config.delete_blank_lines and not line.strip():
                continue
            doc.append(self.make_token(line))
        entity_subclassify(doc, self.config.entity_subclassification)
        for token in doc:
            token.gold_answer = token.answer
        return doc

    def read(self, f: TextIO) -> Iterator[List[Token]]:
        text = f.read()
        if text.endswith("\n"):
            text = text[:-1]
        if text:
            yield self.parse_document(text)

    def read_file(self, path: str) -> List[List[Token]]:
        with open(path, "r", encoding="utf-8") as f:
            docs = list(self.read(f))
        logger.info("Read %d documents from %s", len(docs), path)
        return docs

    def print_answers(self, doc: Sequence[Token], out: TextIO):
        if (self.config.entity_subclassification.lower() != "iob1"
                and not self.config.retain_entity_subclassification):
            de_endify(doc)
        for token in doc:
            if token.word == CONLL_BOUNDARY:
                out.write("\n")
                continue
            gold = token.get("orig_answer")
            out.write(f"{token.word}\t{token.tag}\t{token.get('chunk')}\t{gold}\t{token.answer}\n")


READERS = {
    "column": ColumnDocumentReader,
    "conll": CoNLLDocumentReader,
}


def make_reader(config):
    """Reader registered under ``config.reader``."""
    try:
        cls = READERS[config.reader.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown reader: {config.reader!r}. Known: {', '.join(sorted(READERS))}"
        )
    return cls(config)


def read_documents(path: str, config) -> List[List[Token]]:
    return make_reader(config).read_file(path)
