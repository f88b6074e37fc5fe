import pytest

from dyngraph.vocab import Dict, UnknownWordError, read_sentence, read_sentence_pair


def test_convert_assigns_consecutive_ids():
    d = Dict()
    ids = [d.convert(w) for w in ["a", "b", "a", "c"]]
    assert ids == [0, 1, 0, 2]
    assert len(d) == 3


def test_word_round_trip():
    d = Dict()
    for w in ["the", "cat", "sat"]:
        assert d.word(d.convert(w)) == w


def test_word_out_of_range():
    d = Dict()
    d.convert("x")
    with pytest.raises(IndexError):
        d.word(1)
    with pytest.raises(IndexError):
        d.word(-1)


def test_contains():
    d = Dict()
    d.convert("dog")
    assert "dog" in d
    assert "cat" not in d


def test_frozen_rejects_unknown():
    d = Dict()
    d.convert("known")
    d.freeze()
    assert d.convert("known") == 0
    with pytest.raises(UnknownWordError):
        d.convert("unknown")
    assert len(d) == 1


def test_set_unk_requires_frozen():
    d = Dict()
    with pytest.raises(RuntimeError):
        d.set_unk("<unk>")


def test_set_unk_maps_unknown_words():
    d = Dict()
    d.convert("a")
    d.freeze()
    d.set_unk("<unk>")
    unk = d.convert("<unk>")
    assert d.word(unk) == "<unk>"
    assert d.convert("never-seen") == unk
    assert "never-seen" not in d


def test_set_unk_twice_fails():
    d = Dict()
    d.freeze()
    d.set_unk("<unk>")
    with pytest.raises(RuntimeError):
        d.set_unk("<unk2>")


def test_clear():
    d = Dict()
    d.convert("a")
    d.clear()
    assert len(d) == 0
    assert "a" not in d


def test_read_sentence():
    d = Dict()
    ids = read_sentence("  the cat   the dog ", d)
    assert ids == [d.convert("the"), d.convert("cat"), d.convert("the"), d.convert("dog")]
    assert len(d) == 3
    assert read_sentence("", d) == []


def test_read_sentence_pair():
    sd, td = Dict(), Dict()
    src, tgt = read_sentence_pair("a b ||| x y z", sd, td)
    assert [sd.word(i) for i in src] == ["a", "b"]
    assert [td.word(i) for i in tgt] == ["x", "y", "z"]
    assert "x" not in sd
    assert "a" not in td