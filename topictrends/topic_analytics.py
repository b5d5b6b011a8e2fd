"""
Topic analytics on a fitted model.

Everything here is a pure function of theta (documents x topics), beta
(topics x terms) and document metadata: topic labels, topic rankings,
threshold filtering of documents and aggregation of topic proportions over
time buckets. Ties are always resolved towards the lower topic or term index
so repeated calls give identical output.
"""

import numbers

import numpy as np
import pandas as pd

from .dataframe_schema import parse_document_date
from .errors import ConfigurationError, DimensionMismatchError, InvalidThresholdError

# Thresholds this far above 1.0 are treated as floating-point slack, not as errors
THRESHOLD_TOLERANCE = 1e-6


def _as_matrix(values, name):
    matrix = np.asarray(values, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[0] == 0 or matrix.shape[1] == 0:
        raise DimensionMismatchError(f"{name} must be a non-empty 2-d matrix, got shape {matrix.shape}")
    return matrix


def _descending_order(values):
    """Indices sorting values from largest to smallest, lower index first on ties."""
    values = np.asarray(values, dtype=np.float64)
    return np.lexsort((np.arange(len(values)), -values))


# ============================================================================
# Topic naming and term listings
# ============================================================================

def term_scores(beta):
    """Term score beta_kw * (log beta_kw - mean over topics of log beta_kw).

    Down-weights terms that are probable in every topic.
    """
    beta = _as_matrix(beta, "beta")
    log_beta = np.log(np.maximum(beta, np.finfo(np.float64).tiny))
    return beta * (log_beta - log_beta.mean(axis=0, keepdims=True))


def top_term_indices(beta, top_n, by_score=False):
    """For each topic, the vocabulary indices of its top_n terms."""
    beta = _as_matrix(beta, "beta")
    if not isinstance(top_n, numbers.Integral) or isinstance(top_n, bool) or top_n < 1:
        raise ConfigurationError(f"top_n must be an integer >= 1, got {top_n!r}")
    weights = term_scores(beta) if by_score else beta
    return [list(_descending_order(row)[:top_n]) for row in weights]


def name_topics(beta, vocabulary, top_n=5, by_score=False, separator=" "):
    """
    Label each topic with its top_n terms.

    Args:
        beta: (K, V) topic-term matrix
        vocabulary: terms for the V columns of beta
        top_n: terms per label
        by_score: rank terms by term_scores() instead of raw probability
        separator: string placed between terms

    Returns:
        List of K label strings
    """
    beta = _as_matrix(beta, "beta")
    if len(vocabulary) != beta.shape[1]:
        raise DimensionMismatchError(
            f"beta has {beta.shape[1]} term columns but the vocabulary has {len(vocabulary)} terms"
        )
    return [separator.join(vocabulary[i] for i in indices)
            for indices in top_term_indices(beta, top_n, by_score)]


def top_terms(beta, vocabulary, top_n=10, by_score=False):
    """Table of the top_n terms per topic: rows are ranks 1..top_n, columns are topic indices."""
    beta = _as_matrix(beta, "beta")
    if len(vocabulary) != beta.shape[1]:
        raise DimensionMismatchError(
            f"beta has {beta.shape[1]} term columns but the vocabulary has {len(vocabulary)} terms"
        )
    columns = {k: [vocabulary[i] for i in indices]
               for k, indices in enumerate(top_term_indices(beta, top_n, by_score))}
    table = pd.DataFrame(columns)
    table.index = pd.RangeIndex(1, len(table) + 1, name='rank')
    return table


def topic_term_frequencies(beta, vocabulary, topic_index, top_n=40):
    """Most probable terms of one topic with their probabilities, e.g. for a word cloud."""
    beta = _as_matrix(beta, "beta")
    _check_topic_index(topic_index, beta.shape[0])
    indices = top_term_indices(beta, top_n)[topic_index]
    return pd.Series(beta[topic_index, indices], index=[vocabulary[i] for i in indices], name='probability')


# ============================================================================
# Topic rankings
# ============================================================================

def rank_by_mean_proportion(theta):
    """Topic indices ordered by their mean proportion over all documents."""
    theta = _as_matrix(theta, "theta")
    return [int(k) for k in _descending_order(theta.mean(axis=0))]


def primary_topics(theta):
    """Most probable topic of each document, lowest index on ties."""
    theta = _as_matrix(theta, "theta")
    return np.argmax(theta, axis=1)


def primary_topic_counts(theta):
    """Number of documents for which each topic is the primary topic."""
    theta = _as_matrix(theta, "theta")
    return np.bincount(primary_topics(theta), minlength=theta.shape[1])


def rank_by_primary_count(theta):
    """Topic indices ordered by how many documents they are the primary topic of."""
    return [int(k) for k in _descending_order(primary_topic_counts(theta))]


# ============================================================================
# Document filtering
# ============================================================================

def _check_topic_index(topic_index, n_topics):
    if not isinstance(topic_index, numbers.Integral) or isinstance(topic_index, bool) \
            or not 0 <= topic_index < n_topics:
        raise ConfigurationError(f"topic_index must be an integer in [0, {n_topics}), got {topic_index!r}")


def validate_threshold(threshold):
    if isinstance(threshold, bool) or not isinstance(threshold, numbers.Real) or not np.isfinite(threshold) \
            or threshold < 0 or threshold > 1 + THRESHOLD_TOLERANCE:
        raise InvalidThresholdError(f"threshold must lie in [0, 1], got {threshold!r}")
    return float(threshold)


def filter_by_threshold(theta, topic_index, threshold):
    """
    Documents whose proportion of a topic is at least threshold.

    Returns:
        Sorted array of theta row indices
    """
    theta = _as_matrix(theta, "theta")
    _check_topic_index(topic_index, theta.shape[1])
    threshold = validate_threshold(threshold)
    return np.flatnonzero(theta[:, topic_index] >= threshold)


def document_topic_table(theta, topic_names=None, rows=None):
    """Topic mixture of selected documents (all documents when rows is None)."""
    theta = _as_matrix(theta, "theta")
    columns = _topic_labels(theta.shape[1], topic_names)
    index = np.arange(theta.shape[0]) if rows is None else np.asarray(rows, dtype=np.int64)
    return pd.DataFrame(theta[index], index=pd.Index(index, name='document'), columns=columns)


def _topic_labels(n_topics, topic_names):
    if topic_names is None:
        return list(range(n_topics))
    if len(topic_names) != n_topics:
        raise DimensionMismatchError(f"Got {len(topic_names)} topic names for {n_topics} topics")
    return list(topic_names)


# ============================================================================
# Temporal aggregation
# ============================================================================

def aggregate_by_time_bucket(theta, bucket_keys, topic_names=None):
    """
    Mean topic proportions per time bucket.

    Args:
        theta: (D, K) document-topic matrix
        bucket_keys: one bucket key per theta row
        topic_names: optional column labels (defaults to topic indices)

    Returns:
        DataFrame indexed by the observed bucket keys (sorted) with one column
        per topic. Buckets without documents do not appear.
    """
    theta = _as_matrix(theta, "theta")
    bucket_keys = list(bucket_keys)
    if len(bucket_keys) != theta.shape[0]:
        raise DimensionMismatchError(
            f"Got {len(bucket_keys)} bucket keys for {theta.shape[0]} documents"
        )
    frame = pd.DataFrame(theta, columns=_topic_labels(theta.shape[1], topic_names))
    aggregate = frame.groupby(pd.Index(bucket_keys, name='bucket'), sort=True, dropna=False).mean()
    return aggregate


def to_long_format(aggregate):
    """Melt a bucket x topic aggregate into (bucket, topic, proportion) rows."""
    return aggregate.reset_index().melt(id_vars='bucket', var_name='topic', value_name='proportion')


def decade_bucket(date_value):
    """'1987-05-01' -> '1980'."""
    return f"{parse_document_date(date_value).year // 10 * 10}"


def year_bucket(date_value):
    return f"{parse_document_date(date_value).year}"


def month_bucket(date_value):
    date = parse_document_date(date_value)
    return f"{date.year}-{date.month:02d}"


TIME_BUCKETS = {
    'decade': decade_bucket,
    'year': year_bucket,
    'month': month_bucket,
}


def get_time_bucket_function(name_or_function):
    """Resolve a bucket function by name, or pass a callable straight through."""
    if callable(name_or_function):
        return name_or_function
    try:
        return TIME_BUCKETS[name_or_function]
    except KeyError:
        raise ConfigurationError(
            f"Unknown time bucket '{name_or_function}', expected one of {sorted(TIME_BUCKETS)}"
        ) from None


def bucket_keys_for(dates, bucket_function):
    """Apply a bucket function to every document date."""
    bucket_function = get_time_bucket_function(bucket_function)
    return [bucket_function(date) for date in dates]
