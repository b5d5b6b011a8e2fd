"""
Text preprocessing utilities for topictrends.

This module turns raw document strings into normalized token sequences ready
for counting. Normalization is a chain of small steps, each a pure function
from a token list to a token list:

    lowercase -> collapse_whitespace -> remove_stopwords -> strip_punctuation
    -> remove_numbers -> stem (or lemmatize)

The chain starts from a one-element list holding the raw text, so the first
two steps see the whole document and later steps see individual tokens. Any
step can be replaced, removed, or supplemented by passing a custom `steps`
list to TextPreprocessor.
"""

import re
from functools import partial
from multiprocessing import Pool
from typing import Callable, Iterable, List, Optional, Sequence

from nltk.corpus import stopwords
from nltk.stem import SnowballStemmer, WordNetLemmatizer

from ._file_driver import log_print
from .errors import ConfigurationError

TokenStep = Callable[[List[str]], List[str]]

_EDGE_PUNCTUATION = re.compile(r"^[\W_]+|[\W_]+$")
_SYMBOLS = re.compile(r"[^\w-]|_")
_HYPHEN_RUNS = re.compile(r"-{2,}")
_LOOSE_HYPHENS = re.compile(r"(?<![^\W_])-+|-+(?![^\W_])")
_DIGITS = re.compile(r"\d+")


def load_stopwords(language: str = 'english', extra: Optional[Iterable[str]] = None) -> frozenset:
    """Load NLTK's stopword list for a language and merge any extra words."""
    words = set(stopwords.words(language))
    if extra:
        words.update(w.lower() for w in extra)
    return frozenset(words)


# ============================================================================
# Token steps
# ============================================================================

def lowercase(tokens):
    return [token.lower() for token in tokens]


def collapse_whitespace(tokens):
    return [piece for token in tokens for piece in token.split()]


def remove_stopwords(tokens, stopword_set):
    """Drop tokens that are stopwords, ignoring punctuation stuck to their edges."""
    return [
        token for token in tokens
        if token not in stopword_set and _EDGE_PUNCTUATION.sub("", token) not in stopword_set
    ]


def _drop_loose_hyphens(token):
    """Collapse hyphen runs to one, then drop hyphens not between word characters."""
    return _LOOSE_HYPHENS.sub("", _HYPHEN_RUNS.sub("-", token))


def strip_punctuation(tokens):
    """Remove punctuation and symbols, keeping hyphens between word characters."""
    stripped = (_drop_loose_hyphens(_SYMBOLS.sub("", token)) for token in tokens)
    return [token for token in stripped if token]


def remove_numbers(tokens):
    stripped = (_drop_loose_hyphens(_DIGITS.sub("", token)) for token in tokens)
    return [token for token in stripped if token]


def stem_tokens(tokens, stemmer):
    return [stemmer.stem(token) for token in tokens]


def lemmatize_tokens(tokens, lemmatizer):
    return [lemmatizer.lemmatize(token) for token in tokens]


def get_reduction_step(strategy: Optional[str], language: str = 'english') -> Optional[TokenStep]:
    """
    Build the final base-form reduction step.

    Args:
        strategy: 'stem' (Snowball stemmer), 'lemmatize' (WordNet lemmatizer) or None
        language: Stemmer language

    Returns:
        Token step, or None when no reduction is wanted
    """
    if strategy is None:
        return None
    if strategy == 'stem':
        if language not in SnowballStemmer.languages:
            raise ConfigurationError(f"No Snowball stemmer for language '{language}'")
        return partial(stem_tokens, stemmer=SnowballStemmer(language))
    if strategy == 'lemmatize':
        return partial(lemmatize_tokens, lemmatizer=WordNetLemmatizer())
    raise ConfigurationError(f"Unknown stemming strategy '{strategy}', expected 'stem', 'lemmatize' or None")


def normalize_text(raw_text, steps: Sequence[TokenStep]) -> List[str]:
    """Run one raw document through a chain of token steps."""
    if raw_text is None:
        return []
    tokens = [str(raw_text)]
    for step in steps:
        tokens = step(tokens)
    return tokens


class TextPreprocessor:
    """
    Normalizes raw documents into token sequences.

    Args:
        stopwords: Stopword set. Loaded from NLTK for `language` when None.
        language: Language for the NLTK stopword list and the Snowball stemmer
        stemming: 'stem', 'lemmatize' or None
        extra_stopwords: Words added to the stopword set
        steps: Full replacement for the default step chain
    """

    def __init__(self,
                 stopwords: Optional[Iterable[str]] = None,
                 language: str = 'english',
                 stemming: Optional[str] = 'stem',
                 extra_stopwords: Optional[Iterable[str]] = None,
                 steps: Optional[Sequence[TokenStep]] = None):
        self.language = language
        self.stemming = stemming
        if stopwords is None:
            self.stopwords = load_stopwords(language, extra_stopwords)
        else:
            self.stopwords = frozenset(w.lower() for w in stopwords) | frozenset(
                w.lower() for w in (extra_stopwords or ()))
        self.steps = list(steps) if steps is not None else self.default_steps()
        self.stats_log = {}

    def default_steps(self) -> List[TokenStep]:
        steps = [
            lowercase,
            collapse_whitespace,
            partial(remove_stopwords, stopword_set=self.stopwords),
            strip_punctuation,
            remove_numbers,
        ]
        reduction = get_reduction_step(self.stemming, self.language)
        if reduction is not None:
            steps.append(reduction)
        return steps

    def normalize(self, raw_text) -> List[str]:
        return normalize_text(raw_text, self.steps)

    def normalize_corpus(self, texts: Sequence, n_workers: int = 1) -> List[List[str]]:
        """
        Normalize every document, optionally across worker processes.

        Results are returned in input order regardless of n_workers.
        """
        texts = list(texts)
        if n_workers is None or n_workers < 1:
            raise ConfigurationError(f"n_workers must be >= 1, got {n_workers}")

        if n_workers > 1 and len(texts) > 1:
            log_print(f"Normalizing {len(texts)} documents on {n_workers} workers", level="info")
            with Pool(n_workers) as pool:
                token_sequences = pool.map(self.normalize, texts)
        else:
            log_print(f"Normalizing {len(texts)} documents", level="info")
            token_sequences = [self.normalize(text) for text in texts]

        self.stats_log = {
            'documents': len(token_sequences),
            'empty_documents': sum(1 for tokens in token_sequences if not tokens),
            'tokens': sum(len(tokens) for tokens in token_sequences),
        }
        return token_sequences

    def get_stats_log(self):
        return self.stats_log
