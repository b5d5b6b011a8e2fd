"""
Latent Dirichlet Allocation by collapsed Gibbs sampling.

Every token occurrence in the document-term matrix carries a topic
assignment z. The sampler keeps three count tables in step with z:

    n_dk  document x topic assignment counts
    n_wk  term x topic assignment counts (stored term-major for fast lookups)
    n_k   topic totals

One sweep visits every token occurrence once, in a fresh random permutation.
Each visit removes the token's assignment from the counts, draws a new topic
with weight

    (n_dk + alpha) * (n_wk + eta) / (n_k + V * eta)

and adds it back. After the last sweep the posterior means are

    theta_dk = (n_dk + alpha) / (N_d + K * alpha)
    beta_kw  = (n_wk + eta)   / (n_k + V * eta)

All randomness comes from a single numpy Generator seeded by the caller, so a
run is bit-for-bit reproducible. Sampling within a run is sequential; the
count tables belong to the run that created them.
"""

import numbers

import numpy as np
from scipy import sparse
from scipy.special import digamma, gammaln
from tqdm import tqdm

from ._file_driver import log_print
from .errors import (
    ConfigurationError,
    DimensionMismatchError,
    EmptyCorpusError,
    InferenceCancelledError,
    InvalidTopicCountError,
)

AUTO_ALPHA = 'auto'
ALPHA_FLOOR = 1e-10


# ============================================================================
# Validation
# ============================================================================

def _is_integer(value):
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def validate_alpha(alpha):
    if isinstance(alpha, str):
        if alpha != AUTO_ALPHA:
            raise ConfigurationError(f"alpha must be a positive number or '{AUTO_ALPHA}', got {alpha!r}")
        return alpha
    if isinstance(alpha, bool) or not isinstance(alpha, numbers.Real) or not np.isfinite(alpha) or alpha <= 0:
        raise ConfigurationError(f"alpha must be a positive number or '{AUTO_ALPHA}', got {alpha!r}")
    return float(alpha)


def validate_sampler_settings(iterations, seed, eta, burn_in=0, keep=0,
                              optimize_interval=10, progress_every=10):
    """Check every sampler setting that does not depend on the data."""
    if not _is_integer(iterations) or iterations < 1:
        raise ConfigurationError(f"iterations must be an integer >= 1, got {iterations!r}")
    if not _is_integer(seed):
        raise ConfigurationError(f"seed must be an integer, got {seed!r}")
    if isinstance(eta, bool) or not isinstance(eta, numbers.Real) or not np.isfinite(eta) or eta <= 0:
        raise ConfigurationError(f"eta must be a positive number, got {eta!r}")
    if not _is_integer(burn_in) or burn_in < 0:
        raise ConfigurationError(f"burn_in must be an integer >= 0, got {burn_in!r}")
    if not _is_integer(keep) or keep < 0:
        raise ConfigurationError(f"keep must be an integer >= 0, got {keep!r}")
    if keep and burn_in >= iterations:
        raise ConfigurationError(f"burn_in ({burn_in}) leaves no sweeps to sample out of {iterations}")
    if not _is_integer(optimize_interval) or optimize_interval < 1:
        raise ConfigurationError(f"optimize_interval must be an integer >= 1, got {optimize_interval!r}")
    if not _is_integer(progress_every) or progress_every < 1:
        raise ConfigurationError(f"progress_every must be an integer >= 1, got {progress_every!r}")


def validate_topic_count(n_topics, n_distinct_terms):
    if not _is_integer(n_topics):
        raise InvalidTopicCountError(f"Number of topics must be an integer, got {n_topics!r}")
    if n_topics < 2 or n_topics > n_distinct_terms:
        raise InvalidTopicCountError(
            f"Number of topics must be between 2 and the number of distinct terms "
            f"({n_distinct_terms}), got {n_topics}"
        )


def as_count_matrix(dtm):
    """Return (csr counts, vocabulary or None, document indices or None)."""
    if hasattr(dtm, 'counts') and hasattr(dtm, 'vocabulary'):
        return dtm.counts.tocsr(), list(dtm.vocabulary), np.asarray(dtm.document_indices)
    counts = sparse.csr_matrix(dtm)
    return counts, None, None


def expand_token_occurrences(counts):
    """
    Flatten a sparse count matrix into one entry per token occurrence.

    Returns:
        (doc_ids, word_ids) integer arrays of length equal to the total count
    """
    counts = counts.tocsr()
    counts.sum_duplicates()
    data = counts.data.astype(np.int64)
    if np.any(data < 0):
        raise ConfigurationError("Document-term matrix must not contain negative counts")
    rows = np.repeat(np.arange(counts.shape[0], dtype=np.int64), np.diff(counts.indptr))
    doc_ids = np.repeat(rows, data)
    word_ids = np.repeat(counts.indices.astype(np.int64), data)
    return doc_ids, word_ids


# ============================================================================
# Likelihood and hyperparameter estimation
# ============================================================================

def log_likelihood(n_wk, n_k, eta):
    """log p(w | z) with the topic-term distributions integrated out."""
    n_terms, n_topics = n_wk.shape
    v_eta = n_terms * eta
    ll = n_topics * (gammaln(v_eta) - n_terms * gammaln(eta))
    ll += np.sum(gammaln(n_wk + eta)) - np.sum(gammaln(n_k + v_eta))
    return float(ll)


def estimate_symmetric_alpha(n_dk, doc_lengths, alpha, max_steps=20, tol=1e-6):
    """
    Minka fixed-point update for a symmetric document-topic Dirichlet prior.

    Args:
        n_dk: document x topic assignment counts
        doc_lengths: token count of each document
        alpha: current value

    Returns:
        Updated alpha, never below ALPHA_FLOOR
    """
    n_docs, n_topics = n_dk.shape
    for _ in range(max_steps):
        numerator = np.sum(digamma(n_dk + alpha)) - n_docs * n_topics * digamma(alpha)
        denominator = n_topics * (np.sum(digamma(doc_lengths + n_topics * alpha))
                                  - n_docs * digamma(n_topics * alpha))
        if denominator <= 0:
            break
        updated = max(alpha * numerator / denominator, ALPHA_FLOOR)
        converged = abs(updated - alpha) < tol * alpha
        alpha = updated
        if converged:
            break
    return float(alpha)


# ============================================================================
# Model containers
# ============================================================================

class TopicModel:
    """
    Result of one inference run. Arrays are read-only.

    Attributes:
        theta: (n_documents, n_topics) document-topic proportions
        beta: (n_topics, n_terms) topic-term probabilities
        n_topics: K
        alpha: final document-topic prior (estimated when 'auto' was requested)
        eta: topic-term prior
        iterations: sweeps performed
        seed: random seed used
        vocabulary: terms for beta columns, when known
        document_indices: original document positions of theta rows, when known
        log_likelihoods: list of (sweep, log p(w|z)) samples
    """

    def __init__(self, theta, beta, alpha, eta, iterations, seed,
                 vocabulary=None, document_indices=None, log_likelihoods=None):
        theta = np.array(theta, dtype=np.float64)
        beta = np.array(beta, dtype=np.float64)
        if theta.ndim != 2 or beta.ndim != 2 or theta.shape[1] != beta.shape[0]:
            raise DimensionMismatchError(
                f"theta {theta.shape} and beta {beta.shape} do not share a topic dimension"
            )
        if vocabulary is not None and len(vocabulary) != beta.shape[1]:
            raise DimensionMismatchError(
                f"beta has {beta.shape[1]} term columns but the vocabulary has {len(vocabulary)} terms"
            )
        theta.setflags(write=False)
        beta.setflags(write=False)
        self.theta = theta
        self.beta = beta
        self.n_topics = theta.shape[1]
        self.alpha = alpha
        self.eta = eta
        self.iterations = iterations
        self.seed = seed
        self.vocabulary = list(vocabulary) if vocabulary is not None else None
        self.document_indices = document_indices
        self.log_likelihoods = list(log_likelihoods or [])

    @property
    def n_documents(self):
        return self.theta.shape[0]

    @property
    def n_terms(self):
        return self.beta.shape[1]

    def check_alignment(self, dtm):
        """Raise DimensionMismatchError unless theta/beta match the DTM shape."""
        n_docs, n_terms = dtm.shape
        if self.theta.shape != (n_docs, self.n_topics):
            raise DimensionMismatchError(
                f"theta has shape {self.theta.shape}, expected ({n_docs}, {self.n_topics})"
            )
        if self.beta.shape != (self.n_topics, n_terms):
            raise DimensionMismatchError(
                f"beta has shape {self.beta.shape}, expected ({self.n_topics}, {n_terms})"
            )
        return True

    def get_model_params(self):
        return {
            'model_type': 'LDA_Gibbs',
            'n_topics': self.n_topics,
            'alpha': self.alpha,
            'eta': self.eta,
            'iterations': self.iterations,
            'seed': self.seed,
        }

    def __repr__(self):
        return (f"TopicModel(n_topics={self.n_topics}, documents={self.n_documents}, "
                f"terms={self.n_terms}, alpha={self.alpha:.4g}, eta={self.eta:.4g})")


class GibbsLDA:
    """
    Collapsed Gibbs sampler for LDA.

    Each call to fit() builds fresh count tables and a fresh random generator
    from `seed`, so fitting twice with the same inputs gives identical results.

    Token visits run one at a time in Python, so a sweep costs roughly tens of
    microseconds per token occurrence. A corpus of a million tokens at 500
    sweeps takes hours; use `should_stop` and `progress_every` to manage it.

    Args:
        n_topics: Number of topics K
        alpha: Symmetric document-topic prior, or 'auto' to start at 50/K and
            re-estimate every `optimize_interval` sweeps after burn-in
        eta: Symmetric topic-term prior
        iterations: Number of full sweeps
        seed: Random seed
        burn_in: Sweeps before log-likelihood samples and alpha updates start
        keep: Record log p(w|z) every `keep` sweeps after burn-in (0 disables)
        optimize_interval: Sweeps between alpha re-estimates when alpha='auto'
        progress_every: Sweeps between progress log lines
        show_progress: Show a tqdm progress bar
        should_stop: Callable checked between sweeps; a true result cancels
    """

    def __init__(self, n_topics, alpha, iterations, seed, eta=0.1, burn_in=0, keep=0,
                 optimize_interval=10, progress_every=10, show_progress=False, should_stop=None):
        self.alpha_setting = validate_alpha(alpha)
        validate_sampler_settings(iterations, seed, eta, burn_in, keep, optimize_interval, progress_every)
        self.n_topics = n_topics
        self.eta = float(eta)
        self.iterations = iterations
        self.seed = int(seed)
        self.burn_in = burn_in
        self.keep = keep
        self.optimize_interval = optimize_interval
        self.progress_every = progress_every
        self.show_progress = show_progress
        self.should_stop = should_stop

        # Populated by fit()
        self.alpha = None
        self.assignments = None
        self.n_dk = None
        self.n_wk = None
        self.n_k = None
        self.log_likelihoods = []

    def fit(self, dtm):
        """
        Run the sampler on a document-term matrix.

        Args:
            dtm: DocumentTermMatrix, scipy sparse matrix or 2-d array of counts

        Returns:
            TopicModel

        Raises:
            EmptyCorpusError: if the matrix has no tokens or a row without tokens
            InvalidTopicCountError: if K is outside [2, distinct observed terms]
            InferenceCancelledError: if should_stop() returns true between sweeps
        """
        counts, vocabulary, document_indices = as_count_matrix(dtm)
        n_docs, n_terms = counts.shape
        doc_lengths = np.asarray(counts.sum(axis=1)).ravel().astype(np.int64)
        if n_docs == 0 or doc_lengths.sum() == 0:
            raise EmptyCorpusError("The document-term matrix contains no tokens")
        if np.any(doc_lengths == 0):
            raise EmptyCorpusError(
                f"Document row {int(np.flatnonzero(doc_lengths == 0)[0])} has no tokens; "
                f"empty rows must be removed before inference"
            )
        n_observed_terms = int(np.count_nonzero(np.asarray(counts.sum(axis=0)).ravel()))
        validate_topic_count(self.n_topics, n_observed_terms)

        K = self.n_topics
        alpha = 50.0 / K if self.alpha_setting == AUTO_ALPHA else self.alpha_setting
        eta = self.eta
        v_eta = n_terms * eta

        doc_ids, word_ids = expand_token_occurrences(counts)
        n_tokens = len(doc_ids)
        rng = np.random.default_rng(self.seed)

        z = rng.integers(K, size=n_tokens)
        n_dk = np.zeros((n_docs, K), dtype=np.int64)
        n_wk = np.zeros((n_terms, K), dtype=np.int64)
        np.add.at(n_dk, (doc_ids, z), 1)
        np.add.at(n_wk, (word_ids, z), 1)
        n_k = np.bincount(z, minlength=K).astype(np.int64)

        log_print(
            f"Gibbs sampling: {n_docs} documents, {n_terms} terms, {n_tokens} tokens, "
            f"K={K}, alpha={self.alpha_setting}, eta={eta}, {self.iterations} sweeps",
            level="info"
        )

        log_likelihoods = []
        for sweep in tqdm(range(self.iterations), desc=f"LDA K={K}", disable=not self.show_progress):
            if self.should_stop is not None and self.should_stop():
                log_print(f"Gibbs sampling cancelled after {sweep} sweeps", level="warning")
                raise InferenceCancelledError(sweep, self.iterations)

            order = rng.permutation(n_tokens)
            uniforms = rng.random(n_tokens)
            # n_k + V * eta, kept in step with n_k through the sweep
            denominators = n_k + v_eta
            for position, i in enumerate(order):
                d = doc_ids[i]
                w = word_ids[i]
                k = z[i]
                n_dk[d, k] -= 1
                n_wk[w, k] -= 1
                n_k[k] -= 1
                denominators[k] -= 1.0

                weights = (n_dk[d] + alpha) * (n_wk[w] + eta) / denominators
                cumulative = np.cumsum(weights)
                k = int(np.searchsorted(cumulative, uniforms[position] * cumulative[-1], side='right'))
                if k >= K:
                    k = K - 1

                z[i] = k
                n_dk[d, k] += 1
                n_wk[w, k] += 1
                n_k[k] += 1
                denominators[k] += 1.0

            completed = sweep + 1
            past_burn_in = completed > self.burn_in
            if self.alpha_setting == AUTO_ALPHA and past_burn_in and completed % self.optimize_interval == 0:
                alpha = estimate_symmetric_alpha(n_dk, doc_lengths, alpha)
                log_print(f"Sweep {completed}: re-estimated alpha = {alpha:.5g}", level="debug")
            if self.keep and past_burn_in and (completed - self.burn_in) % self.keep == 0:
                log_likelihoods.append((completed, log_likelihood(n_wk, n_k, eta)))
            if completed % self.progress_every == 0 or completed == self.iterations:
                log_print(f"Gibbs sweep {completed}/{self.iterations} finished (K={K})", level="info")

        self.alpha = alpha
        self.assignments = z
        self.n_dk = n_dk
        self.n_wk = n_wk
        self.n_k = n_k
        self.log_likelihoods = log_likelihoods

        theta = (n_dk + alpha) / (doc_lengths[:, None] + K * alpha)
        beta = (n_wk.T + eta) / (n_k[:, None] + v_eta)
        model = TopicModel(
            theta=theta,
            beta=beta,
            alpha=alpha,
            eta=eta,
            iterations=self.iterations,
            seed=self.seed,
            vocabulary=vocabulary,
            document_indices=document_indices,
            log_likelihoods=log_likelihoods,
        )
        model.check_alignment(counts)
        return model

    def get_model_params(self):
        return {
            'model_type': 'LDA_Gibbs',
            'n_topics': self.n_topics,
            'alpha': self.alpha_setting,
            'eta': self.eta,
            'iterations': self.iterations,
            'seed': self.seed,
            'burn_in': self.burn_in,
            'keep': self.keep,
        }


def infer(dtm, n_topics, alpha, iterations, seed, eta=0.1, **sampler_kwargs):
    """
    Fit LDA to a document-term matrix by collapsed Gibbs sampling.

    Args:
        dtm: DocumentTermMatrix, scipy sparse matrix or 2-d array of counts
        n_topics: Number of topics K, 2 <= K <= distinct observed terms
        alpha: Positive document-topic prior, or 'auto'
        iterations: Number of full sweeps (>= 1)
        seed: Random seed
        eta: Positive topic-term prior
        **sampler_kwargs: burn_in, keep, optimize_interval, progress_every,
            show_progress, should_stop (see GibbsLDA)

    Returns:
        TopicModel with theta and beta
    """
    return GibbsLDA(n_topics=n_topics, alpha=alpha, iterations=iterations, seed=seed,
                    eta=eta, **sampler_kwargs).fit(dtm)
