"""
Vocabulary and document-term matrix construction.

Token sequences are counted into a gensim Dictionary, rare terms are pruned by
their collection frequency, and the surviving counts are laid out as a sparse
documents x terms matrix. Documents left without any term are dropped, and
their original positions are kept so metadata can be realigned.
"""

import numpy as np
import pandas as pd
from gensim.corpora import Dictionary
from gensim.matutils import corpus2csc

from ._file_driver import log_print
from .errors import ConfigurationError, DimensionMismatchError, EmptyCorpusError


class DocumentTermMatrix:
    """
    Pruned document-term count matrix with its index maps.

    Attributes:
        counts: scipy.sparse.csr_matrix of shape (n_documents, n_terms), integer counts
        vocabulary: list of terms; position i is the term of column i
        document_indices: original document position of each row
        excluded_indices: original positions of documents that were dropped
        n_input_documents: number of documents before empty-row removal
    """

    def __init__(self, counts, vocabulary, document_indices, excluded_indices, n_input_documents):
        self.counts = counts
        self.vocabulary = list(vocabulary)
        self.document_indices = np.asarray(document_indices, dtype=np.int64)
        self.excluded_indices = np.asarray(excluded_indices, dtype=np.int64)
        self.n_input_documents = n_input_documents

        if self.counts.shape != (len(self.document_indices), len(self.vocabulary)):
            raise DimensionMismatchError(
                f"Count matrix shape {self.counts.shape} does not match "
                f"{len(self.document_indices)} documents x {len(self.vocabulary)} terms"
            )

    @property
    def shape(self):
        return self.counts.shape

    @property
    def n_documents(self):
        return self.counts.shape[0]

    @property
    def n_terms(self):
        return self.counts.shape[1]

    @property
    def n_tokens(self):
        return int(self.counts.sum())

    def document_lengths(self):
        """Number of token occurrences in each row."""
        return np.asarray(self.counts.sum(axis=1)).ravel()

    def term_frequencies(self):
        """Global count of each vocabulary term, most frequent first."""
        totals = np.asarray(self.counts.sum(axis=0)).ravel()
        series = pd.Series(totals, index=self.vocabulary, name='frequency')
        return series.sort_values(ascending=False, kind='mergesort')

    def term_index(self):
        return {term: idx for idx, term in enumerate(self.vocabulary)}

    def __repr__(self):
        return (f"DocumentTermMatrix(documents={self.n_documents}, terms={self.n_terms}, "
                f"tokens={self.n_tokens}, excluded={len(self.excluded_indices)})")


def build_document_term_matrix(token_sequences, minimum_frequency):
    """
    Count, prune and lay out token sequences as a document-term matrix.

    Args:
        token_sequences: One list of tokens per document, in document order
        minimum_frequency: Keep only terms occurring at least this many times in
            the whole corpus

    Returns:
        DocumentTermMatrix whose rows all contain at least one term

    Raises:
        ConfigurationError: if minimum_frequency is not an integer >= 1
        EmptyCorpusError: if there are no documents, no term survives pruning,
            or every document is left empty
    """
    if isinstance(minimum_frequency, bool) or not isinstance(minimum_frequency, (int, np.integer)) \
            or minimum_frequency < 1:
        raise ConfigurationError(f"minimum_frequency must be an integer >= 1, got {minimum_frequency!r}")

    token_sequences = [list(tokens) for tokens in token_sequences]
    n_input = len(token_sequences)
    if n_input == 0:
        raise EmptyCorpusError("No documents to build a document-term matrix from")

    # Global collection frequencies must be complete before anything is pruned
    dictionary = Dictionary(token_sequences)
    vocab_initial = len(dictionary)

    rare_ids = [token_id for token_id, freq in dictionary.cfs.items() if freq < minimum_frequency]
    if rare_ids:
        dictionary.filter_tokens(bad_ids=rare_ids)
    log_print(
        f"Vocabulary pruning (minimum_frequency={minimum_frequency}): "
        f"{vocab_initial} -> {len(dictionary)} terms",
        level="info"
    )
    if len(dictionary) == 0:
        raise EmptyCorpusError(
            f"No term occurs at least {minimum_frequency} times; the vocabulary is empty"
        )

    bow_corpus = [dictionary.doc2bow(tokens) for tokens in token_sequences]
    counts = corpus2csc(bow_corpus, num_terms=len(dictionary), num_docs=n_input, dtype=np.int64).T.tocsr()

    row_sums = np.asarray(counts.sum(axis=1)).ravel()
    surviving = np.flatnonzero(row_sums > 0)
    excluded = np.flatnonzero(row_sums == 0)
    if surviving.size == 0:
        raise EmptyCorpusError("Every document is empty after vocabulary pruning")

    log_print(f"Removed {len(excluded)} of {n_input} documents with no remaining terms", level="info")

    vocabulary = [dictionary[token_id] for token_id in range(len(dictionary))]
    return DocumentTermMatrix(
        counts=counts[surviving],
        vocabulary=vocabulary,
        document_indices=surviving,
        excluded_indices=excluded,
        n_input_documents=n_input,
    )


def align_documents(documents_df, dtm):
    """
    Restrict a document-indexed frame to the rows that survived in the DTM.

    The input frame is left untouched; the returned frame is renumbered 0..D-1
    so that row i matches DTM row i.
    """
    if len(documents_df) != dtm.n_input_documents:
        raise DimensionMismatchError(
            f"Documents frame has {len(documents_df)} rows but the DTM was built "
            f"from {dtm.n_input_documents} documents"
        )
    return documents_df.iloc[dtm.document_indices].reset_index(drop=True)
