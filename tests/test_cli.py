import pytest

from chaincrf.cli import main, parse_overrides
from chaincrf.models import CRFClassifier

from conftest import TOY_CORPUS


TRAIN_FLAGS = ["maxLeft=1", "usePrev", "useNext", "usePrevSequences", "sigma=10", "maxIterations=100"]


@pytest.fixture
def train_file(tmp_path):
    path = tmp_path / "train.tsv"
    blocks = []
    for words, answers in TOY_CORPUS:
        blocks.append("\n".join(f"{w}\t{a}" for w, a in zip(words, answers)))
    path.write_text("\n\n".join(blocks) + "\n", encoding="utf-8")
    return str(path)


@pytest.fixture
def model_file(tmp_path, train_file):
    path = str(tmp_path / "toy.ser.gz")
    assert main(["train", train_file, "-o", path] + TRAIN_FLAGS) == 0
    return path


class TestParseOverrides:

    def test_pairs_and_bare_keys(self):
        assert parse_overrides(["maxLeft=2", "useNGrams"]) == {"maxLeft": "2", "useNGrams": "true"}


class TestCommands:

    def test_train_and_test(self, model_file, train_file, tmp_path, capsys):
        out = tmp_path / "answers.tsv"
        assert main(["test", model_file, train_file, "-o", str(out)]) == 0
        lines = [line for line in out.read_text(encoding="utf-8").split("\n") if line]
        assert lines[0] == "John\tPER\tPER"
        assert "Evaluation Results: train.tsv" in capsys.readouterr().out

    def test_kbest(self, model_file, train_file, capsys):
        assert main(["kbest", model_file, train_file, "-k", "2"]) == 0
        out = capsys.readouterr().out
        assert out.startswith("1\t") or "\n1\t" in out
        assert "John/PER" in out

    def test_probs(self, model_file, train_file, capsys):
        assert main(["probs", model_file, train_file]) == 0
        first = [line for line in capsys.readouterr().out.split("\n") if line.startswith("John\t")][0]
        assert "PER=" in first and "LOC=" in first

    def test_cv(self, train_file, capsys):
        assert main(["cv", train_file, "--folds", "2"] + TRAIN_FLAGS) == 0
        assert "Cross-Validation Summary" in capsys.readouterr().out

    def test_overrides_after_options(self, train_file, tmp_path):
        path = str(tmp_path / "second.ser")
        argv = ["train", train_file, "-o", path, "-j", "1"] + TRAIN_FLAGS + ["maxLeft=2"]
        assert main(argv) == 0
        assert CRFClassifier.load(path).window_size == 3

    def test_unknown_option(self, train_file):
        with pytest.raises(SystemExit):
            main(["train", train_file, "--bogus"] + TRAIN_FLAGS)

    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_missing_file(self, tmp_path, capsys):
        assert main(["train", str(tmp_path / "missing.tsv")]) == 1
        assert "ERROR" in capsys.readouterr().out

    def test_bad_flag(self, train_file, capsys):
        assert main(["train", train_file, "inferenceType=Foo"]) == 1
        assert "Your options are Viterbi|Beam" in capsys.readouterr().out

    def test_too_few_documents_for_folds(self, train_file, capsys):
        assert main(["cv", train_file, "--folds", "10"]) == 1
