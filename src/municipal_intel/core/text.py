"""
Text normalization shared by every classifier and filter.

The only linguistic processing in the package is:
  - case-fold
  - strip diacritics (NFD decomposition, drop combining marks)
  - split on whitespace, trimming punctuation around each token

Vocabulary terms are matched against tokens, never against raw substrings:
  - "bairro"          exact token
  - "insatisf*"       token prefix (word stem)
  - "quem e"          contiguous token sequence (each word may itself be a stem)
"""
from __future__ import annotations

import string
import unicodedata
from typing import Iterable, List, Sequence

_PUNCTUATION = string.punctuation + "¿¡“”‘’«»…–—"


def normalize(text: object) -> str:
    if text is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.casefold().split())


def tokenize(text: object) -> List[str]:
    tokens = []
    for raw in normalize(text).split():
        tok = raw.strip(_PUNCTUATION)
        if tok:
            tokens.append(tok)
    return tokens


def is_name_like(token: str) -> bool:
    return len(token) >= 2 and any(ch.isalpha() for ch in token)


def _word_matches(token: str, word: str) -> bool:
    if word.endswith("*"):
        return token.startswith(word[:-1])
    return token == word


def has_term(tokens: Sequence[str], term: str) -> bool:
    words = term.split()
    if not words:
        return False
    if len(words) == 1:
        return any(_word_matches(tok, words[0]) for tok in tokens)
    span = len(words)
    for start in range(len(tokens) - span + 1):
        if all(_word_matches(tokens[start + i], words[i]) for i in range(span)):
            return True
    return False


def has_any(tokens: Sequence[str], terms: Iterable[str]) -> bool:
    return any(has_term(tokens, t) for t in terms)


def matching_terms(tokens: Sequence[str], terms: Iterable[str]) -> List[str]:
    return [t for t in terms if has_term(tokens, t)]


def token_in_terms(token: str, terms: Iterable[str]) -> bool:
    """True if a single token is covered by any single- or multi-word term."""
    for term in terms:
        if any(_word_matches(token, w) for w in term.split()):
            return True
    return False
