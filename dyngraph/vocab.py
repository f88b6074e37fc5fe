"""Word-to-id dictionaries and sentence readers."""

from __future__ import annotations

SENTENCE_PAIR_SEPARATOR = "|||"


class UnknownWordError(LookupError):
    """A word was looked up in a frozen dictionary with no unknown-word id."""


class Dict:
    """Two-way mapping between words and consecutive integer ids."""

    def __init__(self):
        self._frozen = False
        self._map_unk = False
        self._unk_id = -1
        self._words: list[str] = []
        self._ids: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._words)

    def __contains__(self, word: str) -> bool:
        return word in self._ids

    def freeze(self) -> None:
        """Stop new words from being added."""
        self._frozen = True

    def convert(self, word: str) -> int:
        """Id of ``word``, adding it when the dictionary is not frozen."""
        found = self._ids.get(word)
        if found is not None:
            return found
        if self._frozen:
            if self._map_unk:
                return self._unk_id
            raise UnknownWordError(
                f"Unknown word encountered in frozen dictionary: {word}"
            )
        self._words.append(word)
        self._ids[word] = len(self._words) - 1
        return self._ids[word]

    def word(self, word_id: int) -> str:
        """The word with id ``word_id``."""
        if not 0 <= word_id < len(self._words):
            raise IndexError(f"word id {word_id} out of range")
        return self._words[word_id]

    def set_unk(self, word: str) -> None:
        """Map every unknown word to the id of ``word`` from now on."""
        if not self._frozen:
            raise RuntimeError("Please call set_unk() only after dictionary is frozen")
        if self._map_unk:
            raise RuntimeError("Set UNK more than one time")
        self._frozen = False
        self._unk_id = self.convert(word)
        self._frozen = True
        self._map_unk = True

    def clear(self) -> None:
        """Forget every word."""
        self._words.clear()
        self._ids.clear()


def read_sentence(line: str, dictionary: Dict) -> list[int]:
    """Ids of the whitespace-separated words of ``line``."""
    return [dictionary.convert(word) for word in line.split()]


def read_sentence_pair(
    line: str, source_dict: Dict, target_dict: Dict
) -> tuple[list[int], list[int]]:
    """Split ``source ||| target`` into two id lists using two dictionaries."""
    source: list[int] = []
    target: list[int] = []
    d, v = source_dict, source
    for word in line.split():
        if word == SENTENCE_PAIR_SEPARATOR:
            d, v = target_dict, target
            continue
        v.append(d.convert(word))
    return source, target