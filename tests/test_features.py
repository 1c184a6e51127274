import pytest

from chaincrf.config import CRFConfig
from chaincrf.exceptions import ConfigurationError
from chaincrf.features import (
    Clique, NERFeatureFactory, dehyphenate, feature_order, get_cliques, greekify,
    is_name_case, is_ordinal, make_feature_factory, window_cliques
)
from chaincrf.preprocessing import PaddedView, make_document


def view_of(words, tags=None):
    doc = make_document(words)
    if tags:
        for token, tag in zip(doc, tags):
            token.set("tag", tag)
    return PaddedView(doc, "O")


class TestCliques:

    def test_offsets(self):
        assert Clique.C.offsets == (0,)
        assert Clique.CpCp2C.max_left == 2
        assert Clique.CnC.max_right == 1
        assert Clique.CpCnC.width == 2
        assert str(Clique.Cp3C) == "Cp3C"

    def test_feature_order(self):
        assert feature_order("Obama-WORD|C") == 0
        assert feature_order("PSEQ|CpC") == 1
        assert feature_order("NSEQ|CnC") == 1
        assert feature_order("x|CpCnC") == 2
        assert feature_order("a|b|Cp2C") == 2

    @pytest.mark.parametrize("feature", ["nosuffix", "x|Foo"])
    def test_feature_order_unknown_suffix(self, feature):
        with pytest.raises(ConfigurationError):
            feature_order(feature)

    def test_cliques_by_window(self):
        assert get_cliques(1) == [Clique.C, Clique.CpC]
        assert window_cliques(0) == [Clique.C]
        assert window_cliques(1) == [Clique.CpC]
        assert window_cliques(2) == [Clique.Cp2C, Clique.CpCp2C]


class TestStringPredicates:

    def test_dehyphenate_keeps_edges(self):
        assert dehyphenate("<ab-cd-ef>") == "<abcdef>"
        assert dehyphenate("-abc") == "-abc"
        assert dehyphenate("ab-c") == "ab-c"

    def test_greekify(self):
        assert greekify("alphabeta") == "~~"

    def test_name_case(self):
        assert is_name_case("Smith")
        assert not is_name_case("McDonald")
        assert not is_name_case("s")

    def test_ordinals(self):
        view = view_of(["the", "21", "st", "twenty", "-", "first"])
        assert [is_ordinal(view, i) for i in range(6)] == [False, True, True, True, True, True]


class TestNERFeatureFactory:

    def features(self, config, words, loc, clique=Clique.C, **kwargs):
        factory = NERFeatureFactory(config, **kwargs)
        return factory.get_clique_features(view_of(words), loc, clique)

    def test_word_feature(self):
        feats = self.features(CRFConfig(), ["John", "lives"], 0)
        assert "John-WORD|C" in feats
        assert all(f.endswith("|C") for f in feats)

    def test_neighbours_at_boundary(self):
        cfg = CRFConfig(use_prev=True, use_next=True)
        feats = self.features(cfg, ["John", "lives"], 0)
        assert "-PW|C" in feats
        assert "lives-NW|C" in feats

    def test_sequence_features(self):
        cfg = CRFConfig(use_prev=True, use_next=True, use_prev_sequences=True,
                        use_next_sequences=True)
        feats = self.features(cfg, ["John", "lives"], 1, Clique.CpC)
        assert {"PSEQ|CpC", "lives-PSEQW|CpC", "NSEQ|CnC", "John-NSEQW|CnC"} <= feats

    def test_binned_lengths(self):
        feats = self.features(CRFConfig(binned_lengths=[3, 6]), ["John"], 0)
        assert "Len-3-6|C" in feats
        feats = self.features(CRFConfig(binned_lengths=[3, 6]), ["Washington"], 0)
        assert "Len-6-Inf|C" in feats

    def test_n_grams(self):
        factory = NERFeatureFactory(CRFConfig(use_n_grams=True))
        assert set(factory.substrings("ab")) == {"#<a#", "#<ab#", "#<ab>#", "#ab#", "#ab>#", "#b>#"}
        factory = NERFeatureFactory(CRFConfig(use_n_grams=True, no_mid_n_grams=True))
        assert "#ab#" not in factory.substrings("ab")
        factory = NERFeatureFactory(CRFConfig(use_n_grams=True, max_n_gram_leng=2))
        assert set(factory.substrings("ab")) == {"#<a#", "#ab#", "#b>#"}

    def test_n_gram_cache(self):
        cached = NERFeatureFactory(CRFConfig(use_n_grams=True))
        uncached = NERFeatureFactory(CRFConfig(use_n_grams=True, cache_n_grams=False))
        first = cached.substrings("Paris")
        assert cached.substrings("Paris") is first
        assert uncached.substrings("Paris") == first
        cached.clear_substring_cache()
        assert cached.substrings("Paris") is not first

    def test_clean_gazette(self):
        cfg = CRFConfig(use_gazettes=True, clean_gazette=True)
        lines = ["PERSON John Smith"]
        assert "PERSON-GAZ2|C" in self.features(cfg, ["John", "Smith", "said"], 1, gazette_lines=lines)
        assert "PERSON-GAZ2|C" not in self.features(cfg, ["John", "said"], 0, gazette_lines=lines)

    def test_sloppy_gazette(self):
        cfg = CRFConfig(use_gazettes=True, sloppy_gazette=True)
        assert "PERSON-GAZ2|C" in self.features(cfg, ["John", "said"], 0, gazette_lines=["PERSON John Smith"])

    def test_dist_sim(self):
        cfg = CRFConfig(use_dist_sim=True, use_prev=True)
        lexicon = {"paris": "C7"}
        feats = self.features(cfg, ["Paris", "Texas"], 0, lexicon=lexicon)
        assert "C7-DISTSIM|C" in feats
        assert "-PDISTSIM|C" in feats
        feats = self.features(cfg, ["Paris", "Texas"], 1, lexicon=lexicon)
        assert "null-DISTSIM|C" in feats
        assert "C7-PDISTSIM|C" in feats

    def test_occurrence_patterns(self):
        factory = NERFeatureFactory(CRFConfig(use_occurrence_patterns=True))
        view = view_of(["the", "Smith", "said", "that", "Smith", "left"])
        assert factory.occurrence_patterns(view, 1) == ["X-NEXT-OCCURRENCE-X"]
        assert factory.occurrence_patterns(view, 0) == ["NO-OCCURRENCE-PATTERN"]

    def test_make_feature_factory(self):
        assert isinstance(make_feature_factory(CRFConfig()), NERFeatureFactory)
        with pytest.raises(ConfigurationError):
            make_feature_factory(CRFConfig(feature_factory="pos"))
