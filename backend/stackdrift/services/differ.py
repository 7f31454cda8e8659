"""Content fingerprinting and sentence-level diffing.

The diff treats each side as a *set* of sentences: reordered or duplicated
sentences produce no entries. A sentence that is both moved and reworded shows
up as an unrelated add/remove pair. It is not a positional (LCS) diff.
"""

import hashlib
import re
from dataclasses import dataclass, field

SENTENCE_BOUNDARY = re.compile(r"[.!?]+")


@dataclass(frozen=True)
class Diff:
    """Sentences added to and removed from a document."""
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed

    @property
    def changed_count(self) -> int:
        return len(self.added) + len(self.removed)

    def to_dict(self) -> dict[str, list[str]]:
        return {"added": list(self.added), "removed": list(self.removed)}


def fingerprint(content: str) -> str:
    """SHA256 hex digest of normalized content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def has_changed(old_hash: str | None, new_hash: str) -> bool:
    """Two snapshots are unchanged iff their fingerprints are equal."""
    return old_hash != new_hash


def split_sentences(text: str) -> list[str]:
    """Split text into trimmed, non-empty sentences (duplicates kept)."""
    return [s.strip() for s in SENTENCE_BOUNDARY.split(text) if s.strip()]


def diff(old_content: str, new_content: str) -> Diff:
    """Compute the sentence-set difference between two texts.

    Output order follows first occurrence in the respective text so that
    prompts and reports read naturally.
    """
    old_sentences = list(dict.fromkeys(split_sentences(old_content)))
    new_sentences = list(dict.fromkeys(split_sentences(new_content)))
    old_set = set(old_sentences)
    new_set = set(new_sentences)

    added = [s for s in new_sentences if s not in old_set]
    removed = [s for s in old_sentences if s not in new_set]
    return Diff(added=added, removed=removed)
