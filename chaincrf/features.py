"""
Clique catalogue and feature template engine.

A feature is a string built from the tokens around a position, suffixed
with ``"|" + clique name`` so that features of different clique orders
never collide. ``NERFeatureFactory`` implements the named-entity template
catalogue; every template is switched on by a ``CRFConfig`` flag.
"""

import logging
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .config import CRFConfig
from .exceptions import ConfigurationError
from .preprocessing import PaddedView

logger = logging.getLogger(__name__)

BOUNDARY_WORD = "*BOUNDARY*"


# ==============================================================================
# Cliques
# ==============================================================================

class Clique(Enum):
    """Relative label offsets a feature is conjoined with."""

    C = (0,)
    CpC = (-1, 0)
    Cp2C = (-2, 0)
    Cp3C = (-3, 0)
    Cp4C = (-4, 0)
    Cp5C = (-5, 0)
    CpCp2C = (-2, -1, 0)
    CpCp2Cp3C = (-3, -2, -1, 0)
    CpCp2Cp3Cp4C = (-4, -3, -2, -1, 0)
    CpCp2Cp3Cp4Cp5C = (-5, -4, -3, -2, -1, 0)
    CnC = (0, 1)
    CpCnC = (-1, 0, 1)

    @property
    def offsets(self) -> Tuple[int, ...]:
        return self.value

    @property
    def max_left(self) -> int:
        return -min(self.value)

    @property
    def max_right(self) -> int:
        return max(self.value)

    @property
    def width(self) -> int:
        """Clique order: number of labels conjoined minus one."""
        return max(self.value) - min(self.value)

    def __str__(self) -> str:
        return self.name


def feature_order(feature: str) -> int:
    """Clique order of a suffixed feature string such as ``"Obama-WORD|C"``."""
    _, _, name = feature.rpartition("|")
    try:
        return Clique[name].width
    except KeyError:
        raise ConfigurationError(f"Feature {feature!r} does not end with a clique name")


def get_cliques(max_left: int, max_right: int = 0) -> List[Clique]:
    """All known cliques reaching at most ``max_left`` back and ``max_right`` ahead."""
    return [c for c in Clique if c.max_left <= max_left and c.max_right <= max_right]


def window_cliques(order: int) -> List[Clique]:
    """Cliques whose features are conjoined with a label window of ``order + 1``."""
    return [c for c in Clique if c.max_left == order and c.max_right <= 0]


# ==============================================================================
# String Predicates
# ==============================================================================

ORDINAL_PATTERN = re.compile(
    r"(?:(?:first|second|third|fourth|fifth|sixth|seventh|eighth|ninth|tenth|"
    r"eleventh|twelfth|thirteenth|fourteenth|fifteenth|sixteenth|"
    r"seventeenth|eighteenth|nineteenth|twenty|twentieth|thirty|thirtieth|"
    r"fourty|fourtieth|fifty|fiftieth|sixty|sixtieth|seventy|seventieth|"
    r"eighty|eightieth|ninety|ninetieth|one|two|three|four|five|six|seven|"
    r"eight|nine|hundred|hundredth)-?)+|[0-9]+(?:st|nd|rd|th)",
    re.IGNORECASE,
)
NUMBER_PATTERN = re.compile(r"[0-9]+")
ORDINAL_END_PATTERN = re.compile(r"(?:st|nd|rd|th)", re.IGNORECASE)
TITLE_PATTERN = re.compile(r"(?:Mr|Ms|Mrs|Dr|Miss|Sen|Judge|Sir)\.?")
GREEK_PATTERN = re.compile(
    r"(alpha)|(beta)|(gamma)|(delta)|(epsilon)|(zeta)|(kappa)|(lambda)|"
    r"(rho)|(sigma)|(tau)|(upsilon)|(omega)"
)

OPEN_BRACKETS = ("(", "[", "-LRB-")
CLOSE_BRACKETS = (")", "]", "-RRB-")


def dehyphenate(s: str) -> str:
    """Drop internal hyphens; the first two and last two characters are kept."""
    out = s
    hyphen = 2
    while True:
        hyphen = out.find("-", hyphen)
        if 0 <= hyphen < len(s) - 2:
            out = out[:hyphen] + out[hyphen + 1:]
        else:
            return out


def greekify(s: str) -> str:
    return GREEK_PATTERN.sub("~", s)


def is_name_case(s: str) -> bool:
    """Capitalised with no further capitals: ``Smith`` but not ``McDonald``."""
    if len(s) < 2:
        return False
    if not (s[0].isupper() or s[0].istitle()):
        return False
    return not any(ch.isupper() for ch in s[1:])


def no_upper_case(s: str) -> bool:
    return bool(s) and not any(ch.isupper() for ch in s)


def has_letter(s: str) -> bool:
    return any(ch.isalpha() for ch in s)


def is_ordinal(view: PaddedView, pos: int) -> bool:
    """True for ``third``, ``21st``, ``21 st`` and ``twenty - first`` style tokens."""
    word = view.word(pos)
    if ORDINAL_PATTERN.fullmatch(word):
        return True
    if NUMBER_PATTERN.fullmatch(word):
        return pos + 1 < len(view) and bool(ORDINAL_END_PATTERN.fullmatch(view.word(pos + 1)))
    if ORDINAL_END_PATTERN.fullmatch(word):
        if pos > 0 and NUMBER_PATTERN.fullmatch(view.word(pos - 1)):
            return True
    if word == "-" and 0 < pos < len(view) - 1:
        if ORDINAL_PATTERN.fullmatch(view.word(pos - 1)) and ORDINAL_PATTERN.fullmatch(view.word(pos + 1)):
            return True
    return False


# ==============================================================================
# Feature Factories
# ==============================================================================

class FeatureFactory(ABC):
    """Turns (document, position, clique) into a set of feature strings."""

    def __init__(self, config: CRFConfig):
        self.config = config

    def cliques(self) -> List[Clique]:
        return get_cliques(self.config.max_left, 0)

    @abstractmethod
    def get_clique_features(self, view: PaddedView, loc: int, clique: Clique) -> Set[str]:
        ...

    def clear_substring_cache(self):
        pass


class GazetteEntry:
    """One gazette phrase, anchored at the index of the word that looked it up."""

    __slots__ = ("feature", "loc", "words")

    def __init__(self, feature: str, loc: int, words: Tuple[str, ...]):
        self.feature = feature
        self.loc = loc
        self.words = words


class NERFeatureFactory(FeatureFactory):
    """
    Named-entity feature templates over words, tags, chunks, shapes,
    lemmas, gazettes and distributional-similarity classes.

    Args:
        config: Feature flags
        lexicon: word (lowercased) -> distributional class; loaded from
            ``config.dist_sim_lexicon`` when omitted and ``use_dist_sim`` is set
        gazette_lines: ``TYPE phrase words`` lines; read from
            ``config.gazettes`` when omitted
    """

    name = "ner"

    def __init__(
        self,
        config: CRFConfig,
        lexicon: Optional[Dict[str, str]] = None,
        gazette_lines: Optional[Iterable[str]] = None
    ):
        super().__init__(config)
        self._substrings: Dict[str, List[str]] = {}
        self.gazette_entries: Dict[str, Set[str]] = {}
        self.gazette_infos: Dict[str, List[GazetteEntry]] = {}

        if lexicon is None and config.use_dist_sim and config.dist_sim_lexicon:
            lexicon = load_lexicon(config.dist_sim_lexicon)
        self.lexicon = lexicon

        if gazette_lines is not None:
            self.read_gazette(gazette_lines)
        for path in config.gazettes:
            with open(path, "r", encoding="utf-8") as f:
                self.read_gazette(f)

    # ------------------------------------------------------------------
    # Instance state
    # ------------------------------------------------------------------

    def read_gazette(self, lines: Iterable[str]):
        """Index gazette phrases by each of their words."""
        for line in lines:
            m = re.match(r"^(\S+)\s+(.+)$", line.rstrip("\n"))
            if not m:
                continue
            kind, phrase = m.group(1), m.group(2)
            words = tuple(phrase.split(" "))
            feature = f"{kind}-GAZ{len(words)}"
            for i, word in enumerate(words):
                if self.config.sloppy_gazette:
                    self.gazette_entries.setdefault(word, set()).add(feature)
                if self.config.clean_gazette:
                    self.gazette_infos.setdefault(word, []).append(GazetteEntry(feature, i, words))

    def clear_substring_cache(self):
        self._substrings = {}

    def dist_sim(self, view: PaddedView, i: int) -> str:
        if view.is_pad(i):
            return ""
        if not self.lexicon:
            return "null"
        return self.lexicon.get(view.word(i).lower(), "null")

    def substrings(self, word: str) -> List[str]:
        """Character n-grams of ``<word>``, each wrapped as ``#sub#``."""
        cached = self._substrings.get(word)
        if cached is not None:
            return cached
        cfg = self.config
        padded = "<" + word + ">"
        if cfg.lowercase_n_grams:
            padded = padded.lower()
        if cfg.dehyphenate_n_grams:
            padded = dehyphenate(padded)
        if cfg.greekify_n_grams:
            padded = greekify(padded)
        subs = []
        n = len(padded)
        for i in range(n):
            for j in range(i + 2, n + 1):
                if cfg.no_mid_n_grams and i != 0 and j != n:
                    continue
                if cfg.max_n_gram_leng >= 0 and j - i > cfg.max_n_gram_leng:
                    continue
                subs.append("#" + padded[i:j] + "#")
        if cfg.cache_n_grams:
            self._substrings[word] = subs
        return subs

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def get_clique_features(self, view: PaddedView, loc: int, clique: Clique) -> Set[str]:
        """
        Features for ``clique`` at position ``loc``.

        Args:
            view: Padded document
            loc: Position (0-based)
            clique: Which label window the features attach to

        Returns:
            Set of suffixed feature strings
        """
        features: Set[str] = set()
        if clique is Clique.C:
            _add_suffixed(features, self.features_c(view, loc), "C")
        elif clique is Clique.CpC:
            _add_suffixed(features, self.features_cpc(view, loc), "CpC")
            _add_suffixed(features, self.features_cnc(view, loc - 1), "CnC")
        elif clique is Clique.Cp2C:
            _add_suffixed(features, self.features_cp2c(view, loc), "Cp2C")
        elif clique is Clique.Cp3C:
            _add_suffixed(features, self.features_cpkc(view, loc, 3), "Cp3C")
        elif clique is Clique.Cp4C:
            _add_suffixed(features, self.features_cpkc(view, loc, 4), "Cp4C")
        elif clique is Clique.Cp5C:
            _add_suffixed(features, self.features_cpkc(view, loc, 5), "Cp5C")
        elif clique is Clique.CpCp2C:
            _add_suffixed(features, self.features_cpcp2c(view, loc), "CpCp2C")
            _add_suffixed(features, self.features_cpcnc(view, loc - 1), "CpCnC")
        elif clique is Clique.CpCp2Cp3C:
            _add_suffixed(features, self.features_cpcp2cp3c(view, loc), "CpCp2Cp3C")
        elif clique is Clique.CpCp2Cp3Cp4C:
            _add_suffixed(features, self.features_cpcp2cp3cp4c(view, loc), "CpCp2Cp3Cp4C")
        return features

    # ------------------------------------------------------------------
    # Order 0
    # ------------------------------------------------------------------

    def features_c(self, view: PaddedView, loc: int) -> List[str]:
        cfg = self.config
        c, n, n2 = view[loc], view[loc + 1], view[loc + 2]
        p, p2, p3 = view[loc - 1], view[loc - 2], view[loc - 3]
        c_word = c.word
        out: List[str] = []

        if cfg.use_dist_sim:
            c_ds, p_ds, n_ds = (self.dist_sim(view, loc), self.dist_sim(view, loc - 1),
                                self.dist_sim(view, loc + 1))
            if cfg.use_more_tags:
                out.append(f"{p_ds}-{c_word}-PDISTSIM-CWORD")
            out.append(c_ds + "-DISTSIM")
        else:
            c_ds = p_ds = n_ds = ""

        if cfg.use_title and TITLE_PATTERN.fullmatch(c_word):
            out.append("IS_TITLE")

        if cfg.use_internal and cfg.use_external:
            if cfg.use_word:
                out.append(c_word + "-WORD")

            if cfg.use_lemmas:
                lem = c.get("lemma")
                if lem:
                    out.append(lem + "-LEM")
            if cfg.use_prev_next_lemmas:
                plem, nlem = p.get("lemma"), n.get("lemma")
                if plem:
                    out.append(plem + "-PLEM")
                if nlem:
                    out.append(nlem + "-NLEM")

            if cfg.binned_lengths:
                out.append(_binned_length(len(c_word), cfg.binned_lengths))

            if cfg.use_is_url:
                out.append(c.get("is_url") + "-ISURL")
            if cfg.use_entity_types:
                out.append(c.get("entity_type") + "-ENTITYTYPE")

            if cfg.use_more_tags:
                out.append(f"{p.get('tag')}-{c_word}-PTAG-CWORD")

            if cfg.use_position:
                out.append(c.get("position") + "-POSITION")
            if cfg.use_begin_sent:
                where = "BEGIN-SENT" if c.get("position") == "0" else "IN-SENT"
                out.append(where)
                out.append(f"{c.get('shape')}-{where}")
            if cfg.use_tags:
                out.append(c.get("tag") + "-TAG")

            if cfg.use_ordinal:
                out.extend(_ordinal_features(view, loc))

            if cfg.use_prev:
                out.append(p.word + "-PW")
                if cfg.use_tags:
                    out.append(p.get("tag") + "-PTAG")
                if cfg.use_dist_sim:
                    out.append(p_ds + "-PDISTSIM")
                if cfg.use_is_url:
                    out.append(p.get("is_url") + "-PISURL")
                if cfg.use_entity_types:
                    out.append(p.get("entity_type") + "-PENTITYTYPE")

            if cfg.use_next:
                out.append(n.word + "-NW")
                if cfg.use_tags:
                    out.append(n.get("tag") + "-NTAG")
                if cfg.use_dist_sim:
                    out.append(n_ds + "-NDISTSIM")
                if cfg.use_is_url:
                    out.append(n.get("is_url") + "-NISURL")
                if cfg.use_entity_types:
                    out.append(n.get("entity_type") + "-NENTITYTYPE")

            if cfg.use_either_side_word:
                out.append(p.word + "-EW")
                out.append(n.word + "-EW")

            if cfg.use_word_pairs:
                out.append(f"{c_word}-{p.word}-W-PW")
                out.append(f"{c_word}-{n.word}-W-NW")

            if cfg.use_sym_tags:
                if cfg.use_tags:
                    pt, ct, nt = p.get("tag"), c.get("tag"), n.get("tag")
                    out.append(f"{pt}-{ct}-{nt}-PCNTAGS")
                    out.append(f"{ct}-{nt}-CNTAGS")
                    out.append(f"{pt}-{ct}-PCTAGS")
                if cfg.use_dist_sim:
                    out.append(f"{p_ds}-{c_ds}-{n_ds}-PCNDISTSIM")
                    out.append(f"{c_ds}-{n_ds}-CNDISTSIM")
                    out.append(f"{p_ds}-{c_ds}-PCDISTSIM")

            if cfg.use_sym_word_pairs:
                out.append(f"{p.word}-{n.word}-SWORDS")

            out.extend(self._gaz_features(c, p, n, c_word))
            out.extend(self._abbr_features(c, p, n, c_word))

            if cfg.use_chunks:
                pc, cc, nc = p.get("chunk"), c.get("chunk"), n.get("chunk")
                out.append(f"{pc}-{cc}-PCCHUNK")
                out.append(f"{cc}-{nc}-CNCHUNK")
                out.append(f"{pc}-{cc}-{nc}-PCNCHUNK")

            out.extend(self._verb_features(view, loc))

            if cfg.use_shape_conjunctions:
                out.append(c.get("position") + c.shape + "-POS-SH")
                if cfg.use_tags:
                    out.append(c.tag + c.shape + "-TAG-SH")
                if cfg.use_dist_sim:
                    out.append(c_ds + c.shape + "-DISTSIM-SH")

            if cfg.use_word_tag:
                out.append(f"{c_word}-{c.get('tag')}-W-T")
                out.append(f"{c_word}-{p.get('tag')}-W-PT")
                out.append(f"{c_word}-{n.get('tag')}-W-NT")

            if cfg.use_np_head:
                out.append(c.get("head") + "-HW")
                if cfg.use_tags:
                    out.append(f"{c.get('head')}-{c.get('tag')}-HW-T")
                if cfg.use_dist_sim:
                    out.append(f"{c.get('head')}-{c_ds}-HW-DISTSIM")

            if cfg.use_np_governor:
                out.append(c.get("governor") + "-GW")
                if cfg.use_tags:
                    out.append(f"{c.get('governor')}-{c.get('tag')}-GW-T")
                if cfg.use_dist_sim:
                    out.append(f"{c.get('governor')}-{c_ds}-DISTSIM-T1")

            if cfg.use_head_gov:
                out.append(f"{c.get('head')}-{c.get('governor')}-HW_GW")

            if cfg.use_class_feature:
                out.append("###")

            if cfg.use_first_word:
                out.append(view.word(0))

            if cfg.use_n_grams:
                out.extend(self._n_gram_features(c))

            if cfg.use_gazettes:
                out.extend(self._gazette_features(view, loc))

            if cfg.uses_word_shape:
                out.append(c.get("shape") + "-TYPE")
                if cfg.use_type_seqs:
                    out.extend(_type_seq_features(c, p, n, with_pc=True))

            out.extend(self._real_word_features(c, p, p2, n, n2))

            if cfg.use_occurrence_patterns:
                out.extend(self.occurrence_patterns(view, loc))

            out.extend(self._disjunctive_features(view, loc, c, either_side=True))

            if cfg.use_extra_taggy_sequences:
                if cfg.use_tags:
                    out.append(f"{p2.get('tag')}-{p.get('tag')}-{c.get('tag')}-TTS")
                    out.append(f"{p3.get('tag')}-{p2.get('tag')}-{p.get('tag')}-{c.get('tag')}-TTTS")
                if cfg.use_dist_sim:
                    p2_ds, p3_ds = self.dist_sim(view, loc - 2), self.dist_sim(view, loc - 3)
                    out.append(f"{p2_ds}-{p_ds}-{c_ds}-DISTSIM_TTS1")
                    out.append(f"{p3_ds}-{p2_ds}-{p_ds}-{c_ds}-DISTSIM_TTTS1")

            if cfg.use_muc_features:
                out.append(c.get("section") + "-SECTION")
                out.append(c.get("word_pos") + "-WORD_POSITION")
                out.append(c.get("sent_pos") + "-SENT_POSITION")
                out.append(c.get("para_pos") + "-PARA_POSITION")
                out.append(f"{c.get('word_pos')}-{c.get('shape')}-WORD_POSITION_SHAPE")

        elif cfg.use_internal:
            if cfg.use_word:
                out.append(c_word + "-WORD")
            if cfg.use_n_grams:
                out.extend(self._n_gram_features(c))
            if cfg.uses_word_shape:
                out.append(c.get("shape") + "-TYPE")
            if cfg.use_occurrence_patterns:
                out.extend(self.occurrence_patterns(view, loc))

        elif cfg.use_external:
            if cfg.use_prev:
                out.append(p.word + "-PW")
            if cfg.use_next:
                out.append(n.word + "-NW")
            if cfg.use_word_pairs:
                out.append(f"{c_word}-{p.word}-W-PW")
                out.append(f"{c_word}-{n.word}-W-NW")
            if cfg.use_sym_word_pairs:
                out.append(f"{p.word}-{n.word}-SWORDS")
            if cfg.uses_word_shape and cfg.use_type_seqs:
                out.extend(_type_seq_features(c, p, n, with_pc=cfg.max_left > 0))
            out.extend(self._real_word_features(c, p, p2, n, n2))
            out.extend(self._disjunctive_features(view, loc, c, either_side=False))

        if cfg.two_stage:
            for i in range(1, 7):
                out.append(f"{c.get(f'bin{i}')}-BIN{i}")

        return out

    def _n_gram_features(self, c) -> List[str]:
        subs = self.substrings(c.word)
        if not self.config.conjoin_shape_n_grams:
            return subs
        shape = c.get("shape")
        return subs + [f"{s}-{shape}-CNGram-CS" for s in subs]

    def _gaz_features(self, c, p, n, c_word: str) -> List[str]:
        cfg = self.config
        out = []
        drop = cfg.drop_gaz
        cg, pg, ng = c.get("gaz"), p.get("gaz"), n.get("gaz")
        if cfg.use_gaz_features:
            if cg != drop:
                out.append(cg + "-GAZ")
            if ng != drop:
                out.append(ng + "-NGAZ")
            if pg != drop:
                out.append(pg + "-PGAZ")
        if cfg.use_more_gaz_features and cg != drop:
            out.append(f"{cg}-{c_word}-CG-CW-GAZ")
            if ng != drop:
                out.append(f"{cg}-{ng}-CNGAZ")
            if pg != drop:
                out.append(f"{pg}-{cg}-PCGAZ")
        return out

    def _abbr_features(self, c, p, n, c_word: str) -> List[str]:
        cfg = self.config
        out = []
        ca, pa, na = c.get("abbr"), p.get("abbr"), n.get("abbr")
        if cfg.use_abbr or cfg.use_minimal_abbr:
            out.append(ca + "-ABBR")
        if (cfg.use_abbr1 or cfg.use_minimal_abbr1) and ca != "XX":
            out.append(ca + "-ABBR")
        if cfg.use_abbr or (cfg.use_abbr1 and ca != "XX"):
            out.append(f"{pa}-{ca}-PCABBR")
            out.append(f"{ca}-{na}-CNABBR")
            out.append(f"{pa}-{ca}-{na}-PCNABBR")
        if cfg.use_minimal_abbr or (cfg.use_minimal_abbr1 and ca != "XX"):
            out.append(f"{c_word}-{ca}-CWABB")
        return out

    def _verb_features(self, view: PaddedView, loc: int) -> List[str]:
        cfg = self.config
        out = []
        prev_vb = next_vb = ""
        if cfg.use_prev_vb:
            prev_vb = _find_verb(view, loc, -1)
            out.append(prev_vb + "-PVB")
        if cfg.use_next_vb:
            next_vb = _find_verb(view, loc, 1)
            out.append(next_vb + "-NVB")
        if cfg.use_vb:
            out.append(f"{prev_vb}-{next_vb}-PNVB")
        return out

    def _gazette_features(self, view: PaddedView, loc: int) -> List[str]:
        cfg = self.config
        c_word = view.word(loc)
        out = []
        if cfg.sloppy_gazette:
            out.extend(self.gazette_entries.get(c_word, ()))
        if cfg.clean_gazette:
            for info in self.gazette_infos.get(c_word, ()):
                start = loc - info.loc
                if all(view.word(start + g) == w for g, w in enumerate(info.words)):
                    out.append(info.feature)
        return out

    def _real_word_features(self, c, p, p2, n, n2) -> List[str]:
        cfg = self.config
        out = []
        if cfg.use_last_real_word and len(p.word) <= 3:
            out.append(f"{p2.word}...{c.get('shape')}-PPW_CTYPE")
        if cfg.use_next_real_word and len(n.word) <= 3:
            out.append(f"{n2.word}...{c.get('shape')}-NNW_CTYPE")
        return out

    def _disjunctive_features(self, view: PaddedView, loc: int, c, either_side: bool) -> List[str]:
        cfg = self.config
        out = []
        c_shape = c.get("shape")
        if cfg.use_disjunctive:
            for i in range(1, cfg.disjunction_width + 1):
                dn, dp = view[loc + i], view[loc - i]
                out.append(dn.word + "-DISJN")
                if cfg.use_disjunctive_shape_interaction:
                    out.append(f"{dn.word}-{c_shape}-DISJN-CS")
                out.append(dp.word + "-DISJP")
                if cfg.use_disjunctive_shape_interaction:
                    out.append(f"{dp.word}-{c_shape}-DISJP-CS")
        if cfg.use_wide_disjunctive:
            for i in range(1, cfg.wide_disjunction_width + 1):
                out.append(view.word(loc + i) + "-DISJWN")
                out.append(view.word(loc - i) + "-DISJWP")
        if either_side and cfg.use_either_side_disjunctive:
            for i in range(1, cfg.disjunction_width + 1):
                out.append(view.word(loc + i) + "-DISJWE")
                out.append(view.word(loc - i) + "-DISJWE")
        if cfg.use_disj_shape:
            for i in range(1, cfg.disjunction_width + 1):
                n_shape = view[loc + i].get("shape")
                out.append(n_shape + "-NDISJSHAPE")
                out.append(f"{c_shape}-{n_shape}-CNDISJSHAPE")
        return out

    def occurrence_patterns(self, view: PaddedView, loc: int) -> List[str]:
        """
        Features describing other occurrences of a capitalised word in the
        document, e.g. whether it reappears preceded by the same name.
        """
        r = -1 if self.config.use_reverse else 1
        word = view.word(loc)
        n_word = view.word(loc + r)
        p_word = view.word(loc - r)
        if not (is_name_case(word) and no_upper_case(n_word) and has_letter(n_word)
                and has_letter(p_word) and not view.is_pad(loc - r)):
            return ["NO-OCCURRENCE-PATTERN"]

        def proper(i):
            return is_name_case(view.word(loc + r * i)) and view[loc + r * i].get("tag") == "NNP"

        found = set()
        if is_name_case(p_word) and view[loc - r].get("tag") == "NNP":
            for jump in range(3, 150):
                if view.word(loc + r * jump) == word:
                    same = view.word(loc + r * (jump - 1)) == p_word
                    found.add("XY-NEXT-OCCURRENCE-XY" if same else "XY-NEXT-OCCURRENCE-Y")
            for jump in range(-3, -150, -1):
                if view.word(loc + r * jump) == word:
                    same = view.word(loc + r * (jump - 1)) == p_word
                    found.add("XY-PREV-OCCURRENCE-XY" if same else "XY-PREV-OCCURRENCE-Y")
        else:
            for jump in range(3, 150):
                if view.word(loc + r * jump) == word:
                    if proper(jump - 1):
                        found.add("X-NEXT-OCCURRENCE-YX")
                    elif proper(jump + 1):
                        found.add("X-NEXT-OCCURRENCE-XY")
                    else:
                        found.add("X-NEXT-OCCURRENCE-X")
            for jump in range(-3, -150, -1):
                if view.word(loc + r * jump) == word:
                    if proper(jump + 1):
                        found.add("X-PREV-OCCURRENCE-YX")
                    elif proper(jump - 1):
                        found.add("X-PREV-OCCURRENCE-XY")
                    else:
                        found.add("X-PREV-OCCURRENCE-X")
        return sorted(found)

    # ------------------------------------------------------------------
    # Order 1
    # ------------------------------------------------------------------

    def features_cpc(self, view: PaddedView, loc: int) -> List[str]:
        cfg = self.config
        c, n, p = view[loc], view[loc + 1], view[loc - 1]
        c_word = c.word
        out: List[str] = []
        shape_seqs = cfg.uses_word_shape and cfg.use_type_seqs and (cfg.use_type_seqs2 or cfg.use_type_seqs3)

        if cfg.use_internal and cfg.use_external:
            if cfg.use_ordinal:
                out.extend(_ordinal_features(view, loc))

            ca, pa = c.get("abbr"), p.get("abbr")
            if cfg.use_abbr or cfg.use_minimal_abbr:
                out.append(f"{pa}-{ca}-PABBRANS")
            if (cfg.use_abbr1 or cfg.use_minimal_abbr1) and ca != "XX":
                out.append(f"{pa}-{ca}-PABBRANS")

            if cfg.use_chunky_sequences:
                out.append(f"{p.get('chunk')}-{c.get('chunk')}-{n.get('chunk')}-PCNCHUNK")

            if cfg.use_prev and cfg.use_sequences and cfg.use_prev_sequences:
                out.append("PSEQ")
                out.append(c_word + "-PSEQW")

            if shape_seqs:
                out.extend(_shape_pair_features(c, p, n, cfg))

            if cfg.use_typey_sequences:
                out.append(c.get("shape") + "-TPS2")
                out.append(n.get("shape") + "-TNS1")

            if cfg.use_taggy_sequences:
                if cfg.use_tags:
                    out.append(f"{p.get('tag')}-{c.get('tag')}-TS")
                if cfg.use_dist_sim:
                    out.append(f"{self.dist_sim(view, loc - 1)}-{self.dist_sim(view, loc)}-DISTSIM_TS1")

            if cfg.use_paren_matching and self._paren_match(view, loc, 1, brackets_only=False):
                out.append("PAREN-MATCH")

            if cfg.use_entity_type_sequences:
                out.append(f"{p.get('entity_type')}-{c.get('entity_type')}-ETSEQ")
            if cfg.use_url_sequences:
                out.append(f"{p.get('is_url')}-{c.get('is_url')}-URLSEQ")

        elif cfg.use_internal:
            if cfg.use_sequences and cfg.use_prev_sequences:
                out.append("PSEQ")
                out.append(c_word + "-PSEQW")
            if cfg.use_typey_sequences:
                out.append(c.get("shape") + "-TPS2")

        elif cfg.use_external:
            if shape_seqs:
                out.extend(_shape_pair_features(c, p, n, cfg))
            if cfg.use_typey_sequences:
                out.append(n.get("shape") + "-TNS1")
                out.append(f"{p.get('shape')}-{c.get('shape')}-TPS")

        return out

    def features_cnc(self, view: PaddedView, loc: int) -> List[str]:
        cfg = self.config
        if cfg.use_next and cfg.use_sequences and cfg.use_next_sequences:
            return ["NSEQ", view.word(loc) + "-NSEQW"]
        return []

    # ------------------------------------------------------------------
    # Order 2 and above
    # ------------------------------------------------------------------

    def _paren_match(self, view: PaddedView, loc: int, k: int, brackets_only: bool) -> bool:
        """
        True when position ``loc`` closes a bracket opened exactly ``k``
        positions earlier with no bracket of the same kind in between.
        Reversed documents swap opening and closing brackets.
        """
        opening, closing = OPEN_BRACKETS, CLOSE_BRACKETS
        if brackets_only:
            opening, closing = opening[:2], closing[:2]
        if self.config.use_reverse:
            opening, closing = closing, opening
        if view.word(loc) not in closing or view.word(loc - k) not in opening:
            return False
        return not any(view.word(loc - i) in opening for i in range(1, k))

    def features_cp2c(self, view: PaddedView, loc: int) -> List[str]:
        cfg = self.config
        c, p2 = view[loc], view[loc - 2]
        ca, p2a = c.get("abbr"), p2.get("abbr")
        out: List[str] = []
        if cfg.use_more_abbr:
            out.append(f"{p2a}-{ca}-P2ABBRANS")
        if cfg.use_minimal_abbr or (cfg.use_minimal_abbr1 and ca != "XX"):
            out.append(f"{p2a}-{ca}-P2AP2CABB")
        if cfg.use_paren_matching and self._paren_match(view, loc, 2, brackets_only=False):
            out.append("PAREN-MATCH")
        return out

    def features_cpkc(self, view: PaddedView, loc: int, k: int) -> List[str]:
        """Bracket matching across ``k`` positions (cliques Cp3C to Cp5C)."""
        cfg = self.config
        if (cfg.use_paren_matching and cfg.max_left >= k
                and self._paren_match(view, loc, k, brackets_only=True)):
            return ["PAREN-MATCH"]
        return []

    def features_cpcp2c(self, view: PaddedView, loc: int) -> List[str]:
        cfg = self.config
        c, p, p2 = view[loc], view[loc - 1], view[loc - 2]
        out: List[str] = []
        type_types = (cfg.uses_word_shape and cfg.use_type_seqs and cfg.use_type_seqs2
                      and cfg.max_left >= 2)

        if cfg.use_internal and cfg.use_external:
            if cfg.use_abbr:
                out.append(f"{p2.get('abbr')}-{p.get('abbr')}-{c.get('abbr')}-2PABBRANS")
            if cfg.use_chunks:
                out.append(f"{p2.get('chunk')}-{p.get('chunk')}-{c.get('chunk')}-2PCHUNKS")
            if cfg.use_long_sequences:
                out.append("PPSEQ")
            if cfg.use_boundary_sequences and p.word == BOUNDARY_WORD:
                out.append("BNDRY-SPAN-PPSEQ")
            if cfg.use_taggy_sequences:
                c_shape = c.get("shape")
                if cfg.use_tags:
                    tts = f"{p2.get('tag')}-{p.get('tag')}-{c.get('tag')}"
                    out.append(tts + "-TTS")
                    if cfg.use_taggy_sequences_shape_interaction:
                        out.append(f"{tts}-{c_shape}-TTS-CS")
                if cfg.use_dist_sim:
                    ds = "-".join(self.dist_sim(view, loc - i) for i in (2, 1, 0))
                    out.append(ds + "-DISTSIM_TTS1")
                    if cfg.use_taggy_sequences_shape_interaction:
                        out.append(f"{ds}-{c_shape}-DISTSIM_TTS1-CS")
            if type_types:
                out.append(f"{p2.get('shape')}-{p.get('shape')}-{c.get('shape')}-TYPETYPES")

        elif cfg.use_internal:
            if cfg.use_long_sequences:
                out.append("PPSEQ")

        elif cfg.use_external:
            if cfg.use_long_sequences:
                out.append("PPSEQ")
            if type_types:
                out.append(f"{p2.get('shape')}-{p.get('shape')}-{c.get('shape')}-TYPETYPES")

        return out

    def features_cpcnc(self, view: PaddedView, loc: int) -> List[str]:
        cfg = self.config
        if (cfg.use_next and cfg.use_prev and cfg.use_sequences
                and cfg.use_prev_sequences and cfg.use_next_sequences):
            return ["PNSEQ", view.word(loc) + "-PNSEQW"]
        return []

    def features_cpcp2cp3c(self, view: PaddedView, loc: int) -> List[str]:
        cfg = self.config
        c, p = view[loc], view[loc - 1]
        out: List[str] = []

        if cfg.use_taggy_sequences and cfg.max_left >= 3 and not cfg.dont_extend_taggy:
            c_shape = c.get("shape")
            if cfg.use_tags:
                ttts = "-".join(view[loc - i].get("tag") for i in (3, 2, 1, 0))
                out.append(ttts + "-TTTS")
                if cfg.use_taggy_sequences_shape_interaction:
                    out.append(f"{ttts}-{c_shape}-TTTS-CS")
            if cfg.use_dist_sim:
                ds = "-".join(self.dist_sim(view, loc - i) for i in (3, 2, 1, 0))
                out.append(ds + "-DISTSIM_TTTS1")
                if cfg.use_taggy_sequences_shape_interaction:
                    out.append(f"{ds}-{c_shape}-DISTSIM_TTTS1-CS")

        if cfg.max_left >= 3:
            if cfg.use_long_sequences:
                out.append("PPPSEQ")
            if cfg.use_boundary_sequences and p.word == BOUNDARY_WORD:
                out.append("BNDRY-SPAN-PPPSEQ")
        return out

    def features_cpcp2cp3cp4c(self, view: PaddedView, loc: int) -> List[str]:
        cfg = self.config
        out: List[str] = []
        if cfg.max_left >= 4:
            if cfg.use_long_sequences:
                out.append("PPPPSEQ")
            if cfg.use_boundary_sequences and view.word(loc - 1) == BOUNDARY_WORD:
                out.append("BNDRY-SPAN-PPPPSEQ")
        return out


# ==============================================================================
# Template Helpers
# ==============================================================================

def _add_suffixed(accumulator: Set[str], features: Iterable[str], suffix: str):
    for feat in features:
        accumulator.add(feat + "|" + suffix)


def _binned_length(length: int, bins: List[int]) -> str:
    for i, bound in enumerate(bins):
        if length <= bound:
            low = 1 if i == 0 else bins[i - 1]
            return f"Len-{low}-{bound}"
    return f"Len-{bins[-1]}-Inf"


def _ordinal_features(view: PaddedView, loc: int) -> List[str]:
    out = []
    prev_ordinal = is_ordinal(view, loc - 1)
    if is_ordinal(view, loc):
        out.append("C_ORDINAL")
        if prev_ordinal:
            out.append("PC_ORDINAL")
    if prev_ordinal:
        out.append("P_ORDINAL")
    return out


def _find_verb(view: PaddedView, loc: int, step: int) -> str:
    """Nearest word tagged ``VB*`` in direction ``step``, or ``"X"`` at the edge."""
    j = loc + step
    while not view.is_pad(j):
        if view[j].get("tag").startswith("VB"):
            return view.word(j)
        j += step
    return "X"


def _type_seq_features(c, p, n, with_pc: bool) -> List[str]:
    c_type, p_type, n_type = c.get("shape"), p.get("shape"), n.get("shape")
    out = [
        p_type + "-PTYPE",
        n_type + "-NTYPE",
        f"{p.word}...{c_type}-PW_CTYPE",
        f"{c_type}...{n.word}-NW_CTYPE",
    ]
    if with_pc:
        out.append(f"{p_type}...{c_type}-PCTYPE")
    out.append(f"{c_type}...{n_type}-CNTYPE")
    out.append(f"{p_type}...{c_type}...{n_type}-PCNTYPE")
    return out


def _shape_pair_features(c, p, n, cfg: CRFConfig) -> List[str]:
    p_type, c_type = p.get("shape"), c.get("shape")
    out = []
    if cfg.use_type_seqs3:
        out.append(f"{p_type}-{c_type}-{n.get('shape')}-PCNSHAPES")
    if cfg.use_type_seqs2:
        out.append(f"{p_type}-{c_type}-TYPES")
    return out


def load_lexicon(path: str) -> Dict[str, str]:
    """Read a ``word class`` per line distributional-similarity lexicon."""
    lexicon = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            bits = line.split()
            if len(bits) >= 2:
                lexicon[bits[0].lower()] = bits[1]
    logger.info("Loaded %d distsim classes from %s", len(lexicon), path)
    return lexicon


# ==============================================================================
# Registry
# ==============================================================================

FEATURE_FACTORIES: Dict[str, Callable[..., FeatureFactory]] = {
    "ner": NERFeatureFactory,
}


def make_feature_factory(config: CRFConfig, **kwargs) -> FeatureFactory:
    """Instantiate the factory registered under ``config.feature_factory``."""
    try:
        cls = FEATURE_FACTORIES[config.feature_factory]
    except KeyError:
        raise ConfigurationError(
            f"Unknown feature factory: {config.feature_factory!r}. "
            f"Known: {', '.join(sorted(FEATURE_FACTORIES))}"
        )
    return cls(config, **kwargs)
