# vocabmaster/errors.py
from __future__ import annotations


class VocabError(Exception):
    """Base class for every error raised by vocabmaster."""


class ProviderError(VocabError):
    """The content provider could not produce usable data."""


class ProviderUnavailable(ProviderError):
    """Network, auth or timeout failure talking to the provider."""


class ParseError(ProviderError):
    """The provider answered, but not with anything we can use."""


class StorageError(VocabError):
    """The state document could not be read or written."""


class ValidationError(VocabError):
    """An import document is malformed. Current state is left untouched."""


class UnknownWord(VocabError):
    def __init__(self, word_id: str):
        super().__init__(f"Unknown word id: {word_id}")
        self.word_id = word_id


class EmptyDeck(VocabError):
    pass


class NoActiveSession(VocabError):
    pass


class ConfirmationRequired(VocabError):
    """Every word of a course set was already started; reviewing all needs a yes."""

    def __init__(self, set_index: int, size: int):
        super().__init__(f"All {size} words in set {set_index + 1} were already started")
        self.set_index = set_index
        self.size = size
