import json

import pytest

from chaincrf.config import CRFConfig, camel_to_snake, load_config, read_properties
from chaincrf.exceptions import ConfigurationError


class TestCamelToSnake:

    @pytest.mark.parametrize("camel,snake", [
        ("maxLeft", "max_left"),
        ("useTypeSeqs2", "use_type_seqs2"),
        ("maxNGramLeng", "max_n_gram_leng"),
        ("useNGrams", "use_n_grams"),
        ("QNsize", "qn_size"),
        ("QNsize2", "qn_size2"),
    ])
    def test_conversion(self, camel, snake):
        assert camel_to_snake(camel) == snake


class TestCRFConfig:

    def test_defaults(self):
        cfg = CRFConfig()
        assert cfg.max_left == 1
        assert cfg.window_size == 2
        assert cfg.sigma == 1.0
        assert cfg.tolerance == 1e-4
        assert cfg.qn_size == cfg.qn_size2 == 25
        assert cfg.beam_size == 30
        assert cfg.use_word and cfg.use_sequences
        assert cfg.map == "word=0,answer=1"
        assert not cfg.uses_word_shape

    def test_from_dict_coerces_strings(self):
        cfg = CRFConfig.from_dict({
            "maxLeft": "2",
            "useNGrams": "true",
            "sigma": "3.5",
            "binnedLengths": "3,6,9",
            "maxIterations": "none",
            "gazettes": "a.txt;b.txt",
        })
        assert cfg.max_left == 2
        assert cfg.use_n_grams is True
        assert cfg.sigma == 3.5
        assert cfg.binned_lengths == [3, 6, 9]
        assert cfg.max_iterations is None
        assert cfg.gazettes == ["a.txt", "b.txt"]

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError):
            CRFConfig.from_dict({"noSuchFlag": "true"})

    def test_bad_boolean(self):
        with pytest.raises(ConfigurationError):
            CRFConfig.from_dict({"useWord": "maybe"})

    def test_replace_keeps_other_flags(self):
        cfg = CRFConfig(max_left=2).replace(inference_type="Beam")
        assert cfg.max_left == 2
        assert cfg.inference_type == "Beam"

    def test_to_dict_round_trip(self):
        cfg = CRFConfig(max_left=3, use_prev=True, binned_lengths=[2, 4])
        assert CRFConfig.from_dict(cfg.to_dict()) == cfg

    @pytest.mark.parametrize("flags,message", [
        ({"inference_type": "Foo"}, "Unknown inference type: Foo. Your options are Viterbi|Beam."),
        ({"do_gibbs": True}, "No annealing type specified"),
        ({"max_left": 6}, "max_left"),
        ({"feature_factory": "pos"}, "Unknown feature factory"),
        ({"word_shape": "fancy"}, "Unknown word shape"),
        ({"sigma": 0.0}, "sigma"),
        ({"do_gibbs": True, "annealing_type": "linear", "num_samples": 0}, "num_samples"),
        ({"do_gibbs": True, "annealing_type": "exp", "annealing_rate": 0.0}, "annealing_rate"),
        ({"do_gibbs": True, "annealing_type": "exponential", "annealing_rate": 1.5}, "annealing_rate"),
    ])
    def test_validate(self, flags, message):
        with pytest.raises(ConfigurationError, match=message.replace("|", r"\|").replace(".", r"\.")):
            CRFConfig(**flags).validate()

    def test_validate_accepts_gibbs_with_schedule(self):
        CRFConfig(do_gibbs=True, annealing_type="exp", annealing_rate=0.9).validate()


class TestLoaders:

    def test_read_properties(self, tmp_path):
        path = tmp_path / "ner.prop"
        path.write_text(
            "# a comment\n"
            "maxLeft=2\n"
            "useNGrams = true\n"
            "! another comment\n"
            "backgroundSymbol O\n"
            "useClassFeature\n",
            encoding="utf-8",
        )
        props = read_properties(str(path))
        assert props == {
            "maxLeft": "2",
            "useNGrams": "true",
            "backgroundSymbol": "O",
            "useClassFeature": "true",
        }

    def test_load_properties(self, tmp_path):
        path = tmp_path / "ner.prop"
        path.write_text("maxLeft=2\nuseWord=false\n", encoding="utf-8")
        cfg = load_config(str(path), sigma=2.0)
        assert cfg.max_left == 2
        assert cfg.use_word is False
        assert cfg.sigma == 2.0

    def test_load_json(self, tmp_path):
        path = tmp_path / "ner.json"
        path.write_text(json.dumps({"max_left": 0, "inferenceType": "Beam"}), encoding="utf-8")
        cfg = load_config(str(path))
        assert cfg.max_left == 0
        assert cfg.inference_type == "Beam"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "missing.prop"))
