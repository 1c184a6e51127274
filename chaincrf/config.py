"""
Configuration flags for the CRF sequence classifier.

All feature templates, the training loop and the decoders read their
switches from a single ``CRFConfig``. Configs can be built from keyword
arguments, a dict, a JSON file, or a Java-style ``.prop`` file whose
camelCase keys (``maxLeft=2``, ``useNGrams=true``) are mapped onto the
snake_case fields.
"""

import json
import os
import re
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List, Optional, get_type_hints

from .exceptions import ConfigurationError


INFERENCE_TYPES = ("viterbi", "beam")
ANNEALING_TYPES = ("linear", "exp", "exponential")
ENTITY_SUBCLASSIFICATIONS = ("iob1", "iob2", "ioe1", "ioe2", "io", "sbieo")

# camelCase keys that the generic conversion gets wrong
PROPERTY_ALIASES = {
    "QNsize": "qn_size",
    "QNsize2": "qn_size2",
    "useNGrams": "use_n_grams",
    "readerAndWriter": "reader",
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def camel_to_snake(name: str) -> str:
    """Convert ``useTypeSeqs2`` to ``use_type_seqs2``."""
    if name in PROPERTY_ALIASES:
        return PROPERTY_ALIASES[name]
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@dataclass
class CRFConfig:
    """Flags controlling features, training and inference."""

    # ==========================================================================
    # Model structure
    # ==========================================================================
    background_symbol: str = "O"
    max_left: int = 1
    feature_factory: str = "ner"
    use_observed_sequences_only: bool = False
    remove_background_singleton_features: bool = False
    use_reverse: bool = False

    # ==========================================================================
    # Training
    # ==========================================================================
    sigma: float = 1.0
    tolerance: float = 1e-4
    qn_size: int = 25
    qn_size2: int = 25
    max_iterations: Optional[int] = None
    num_times_prune_features: int = 0
    feature_diff_thresh: float = 0.0
    initial_weights: Optional[str] = None
    interim_output_freq: int = 0
    serialize_to: Optional[str] = None

    # ==========================================================================
    # Inference
    # ==========================================================================
    inference_type: str = "Viterbi"
    beam_size: int = 30
    do_gibbs: bool = False
    annealing_type: Optional[str] = None
    annealing_rate: float = 0.0
    num_samples: int = 100
    init_viterbi: bool = True
    gibbs_prior: Optional[str] = None
    prior_penalty: float = 1.0
    random_seed: int = 1

    # ==========================================================================
    # Document reading and preparation
    # ==========================================================================
    reader: str = "column"
    map: str = "word=0,answer=1"
    entity_subclassification: str = "io"
    retain_entity_subclassification: bool = False
    delete_blank_lines: bool = False
    use_lemma_as_word: bool = False
    word_shape: str = "none"
    use_shape_strings: bool = False
    merge_tags: bool = False
    iob_tags: bool = False
    max_doc_size: int = -1

    # ==========================================================================
    # Feature templates
    # ==========================================================================
    use_internal: bool = True
    use_external: bool = True
    use_word: bool = True
    use_n_grams: bool = False
    lowercase_n_grams: bool = False
    dehyphenate_n_grams: bool = False
    greekify_n_grams: bool = False
    no_mid_n_grams: bool = False
    max_n_gram_leng: int = -1
    cache_n_grams: bool = True
    conjoin_shape_n_grams: bool = False
    use_prev: bool = False
    use_next: bool = False
    use_tags: bool = False
    use_word_pairs: bool = False
    use_sym_tags: bool = False
    use_sym_word_pairs: bool = False
    use_either_side_word: bool = False
    use_lemmas: bool = False
    use_prev_next_lemmas: bool = False
    binned_lengths: Optional[List[int]] = None
    use_position: bool = False
    use_begin_sent: bool = False
    use_title: bool = False
    use_ordinal: bool = False
    use_more_tags: bool = False
    use_chunks: bool = False
    use_chunky_sequences: bool = False
    use_abbr: bool = False
    use_abbr1: bool = False
    use_minimal_abbr: bool = False
    use_minimal_abbr1: bool = False
    use_more_abbr: bool = False
    use_gaz_features: bool = False
    use_more_gaz_features: bool = False
    drop_gaz: Optional[str] = None
    use_gazettes: bool = False
    gazettes: List[str] = field(default_factory=list)
    sloppy_gazette: bool = False
    clean_gazette: bool = False
    use_dist_sim: bool = False
    dist_sim_lexicon: Optional[str] = None
    use_is_url: bool = False
    use_entity_types: bool = False
    use_prev_vb: bool = False
    use_next_vb: bool = False
    use_vb: bool = False
    use_shape_conjunctions: bool = False
    use_word_tag: bool = False
    use_np_head: bool = False
    use_np_governor: bool = False
    use_head_gov: bool = False
    use_class_feature: bool = False
    use_first_word: bool = False
    use_type_seqs: bool = False
    use_type_seqs2: bool = False
    use_type_seqs3: bool = False
    use_last_real_word: bool = False
    use_next_real_word: bool = False
    use_occurrence_patterns: bool = False
    use_disjunctive: bool = False
    disjunction_width: int = 4
    use_disjunctive_shape_interaction: bool = False
    use_wide_disjunctive: bool = False
    wide_disjunction_width: int = 10
    use_either_side_disjunctive: bool = False
    use_disj_shape: bool = False
    use_extra_taggy_sequences: bool = False
    use_taggy_sequences: bool = False
    use_taggy_sequences_shape_interaction: bool = False
    dont_extend_taggy: bool = False
    use_typey_sequences: bool = False
    use_sequences: bool = True
    use_prev_sequences: bool = False
    use_next_sequences: bool = False
    use_long_sequences: bool = False
    use_boundary_sequences: bool = False
    use_paren_matching: bool = False
    use_entity_type_sequences: bool = False
    use_url_sequences: bool = False
    use_muc_features: bool = False
    two_stage: bool = False

    @property
    def window_size(self) -> int:
        return self.max_left + 1

    @property
    def uses_word_shape(self) -> bool:
        """True when a shape attribute feeds the templates."""
        return self.word_shape.lower() != "none" or self.use_shape_strings

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> "CRFConfig":
        """
        Check enumerated and range-limited flags.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: on the first invalid flag
        """
        # Imported here: features and preprocessing import this module.
        from .features import FEATURE_FACTORIES
        from .preprocessing import WORD_SHAPERS

        if not 0 <= self.max_left <= 5:
            raise ConfigurationError(f"max_left must be in [0, 5], got {self.max_left}")
        if self.inference_type.lower() not in INFERENCE_TYPES:
            raise ConfigurationError(
                f"Unknown inference type: {self.inference_type}. Your options are Viterbi|Beam."
            )
        if self.beam_size < 1:
            raise ConfigurationError(f"beam_size must be positive, got {self.beam_size}")
        if self.do_gibbs and (self.annealing_type is None
                              or self.annealing_type.lower() not in ANNEALING_TYPES):
            raise ConfigurationError("No annealing type specified")
        if self.do_gibbs:
            if self.num_samples < 1:
                raise ConfigurationError(f"num_samples must be positive, got {self.num_samples}")
            if (self.annealing_type.lower() != "linear"
                    and not 0.0 < self.annealing_rate <= 1.0):
                raise ConfigurationError(
                    f"annealing_rate must be in (0, 1] for exponential annealing, "
                    f"got {self.annealing_rate}"
                )
        if self.feature_factory not in FEATURE_FACTORIES:
            raise ConfigurationError(
                f"Unknown feature factory: {self.feature_factory!r}. "
                f"Known: {', '.join(sorted(FEATURE_FACTORIES))}"
            )
        if self.word_shape.lower() not in WORD_SHAPERS:
            raise ConfigurationError(f"Unknown word shape: {self.word_shape!r}")
        if self.entity_subclassification.lower() not in ENTITY_SUBCLASSIFICATIONS:
            raise ConfigurationError(
                f"Unknown entity subclassification: {self.entity_subclassification!r}"
            )
        if self.sigma <= 0:
            raise ConfigurationError(f"sigma must be positive, got {self.sigma}")
        if self.tolerance <= 0:
            raise ConfigurationError(f"tolerance must be positive, got {self.tolerance}")
        return self

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def replace(self, **overrides) -> "CRFConfig":
        data = self.to_dict()
        data.update(overrides)
        return CRFConfig.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CRFConfig":
        """
        Build a config from a mapping. Keys may be snake_case or the
        camelCase names of a ``.prop`` file; string values are coerced to
        the field's type.
        """
        hints = get_type_hints(cls)
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = key if key in known else camel_to_snake(key)
            if name not in known:
                raise ConfigurationError(f"Unknown configuration key: {key!r}")
            kwargs[name] = _coerce(name, hints[name], value)
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: str) -> "CRFConfig":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    @classmethod
    def from_properties(cls, path: str) -> "CRFConfig":
        """Read ``key=value`` (or ``key value``) lines; ``#`` and ``!`` start comments."""
        return cls.from_dict(read_properties(path))


def read_properties(path: str) -> Dict[str, str]:
    props = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line[0] in "#!":
                continue
            match = re.match(r"^([^=:\s]+)\s*[=:\s]\s*(.*)$", line)
            if match:
                props[match.group(1)] = match.group(2).strip()
            else:
                # bare key means "true"
                props[line] = "true"
    return props


def load_config(path: str, **overrides) -> CRFConfig:
    """Load a config by file extension (``.json`` or anything else as properties)."""
    if not os.path.exists(path):
        raise ConfigurationError(f"Config file not found: {path}")
    if path.endswith(".json"):
        config = CRFConfig.from_json(path)
    else:
        config = CRFConfig.from_properties(path)
    if overrides:
        config = config.replace(**overrides)
    return config


def _coerce(name: str, hint, value):
    if not isinstance(value, str):
        return value
    text = value.strip()
    hint_str = str(hint)

    if hint is bool:
        lowered = text.lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
        raise ConfigurationError(f"{name}: expected a boolean, got {value!r}")

    if "List[int]" in hint_str:
        if text.lower() in ("", "null", "none"):
            return None
        try:
            return [int(x) for x in re.split(r"[,\s]+", text) if x]
        except ValueError:
            raise ConfigurationError(f"{name}: expected a list of integers, got {value!r}")

    if "List[str]" in hint_str:
        return [x for x in re.split(r"[,;]", text) if x.strip()]

    if "Optional" in hint_str or "None" in hint_str:
        if text.lower() in ("null", "none"):
            return None
        if "int" in hint_str:
            hint = int
        elif "str" in hint_str:
            return text

    try:
        if hint is int:
            return int(text)
        if hint is float:
            return float(text)
    except ValueError:
        raise ConfigurationError(f"{name}: cannot parse {value!r}")
    return text
