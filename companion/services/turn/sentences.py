"""Incremental sentence segmentation of streamed reply tokens."""
import re
from typing import List, Optional

# Latin terminators plus the Devanagari danda
SENTENCE_END = re.compile(r"[.!?।]+\s*$")
MIN_SENTENCE_CHARS = 5


class SentenceSplitter:
    """Accumulates tokens and releases complete sentences as they close.

    A buffered fragment is released once it ends in a sentence terminator and
    has more than ``MIN_SENTENCE_CHARS`` characters after stripping. Shorter
    fragments ("Hi!") stay buffered and merge into the next sentence.
    """

    def __init__(self):
        self._buffer = ""
        self.full_text = ""

    def feed(self, token: str) -> Optional[str]:
        """Add a token; return a complete sentence when one closes."""
        self._buffer += token
        self.full_text += token
        if SENTENCE_END.search(self._buffer) and len(self._buffer.strip()) > MIN_SENTENCE_CHARS:
            sentence = self._buffer.strip()
            self._buffer = ""
            return sentence
        return None

    def flush(self) -> Optional[str]:
        """Release whatever remains once the stream has ended."""
        tail = self._buffer.strip()
        self._buffer = ""
        return tail or None


def split_sentences(text: str) -> List[str]:
    """Split a complete text the same way a token stream would be split."""
    splitter = SentenceSplitter()
    sentences = []
    for token in re.findall(r"\S+\s*", text):
        sentence = splitter.feed(token)
        if sentence:
            sentences.append(sentence)
    tail = splitter.flush()
    if tail:
        sentences.append(tail)
    return sentences
