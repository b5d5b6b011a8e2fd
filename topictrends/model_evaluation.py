"""
model_evaluation.py

Diagnostic metrics for choosing the number of topics K. Each metric scores one
fitted model; scanning a range of K values and looking for where the curves
flatten out or cross gives a human a basis for picking K.

Two families are implemented:

Likelihood-based. griffiths2004 is the harmonic-mean estimate of the marginal
likelihood log p(w | K), taken over log p(w | z) samples recorded by the Gibbs
sampler after burn-in (Griffiths and Steyvers, 2004). Higher is better.

Density-based. These compare the topic-term distributions with each other.
caojuan2009 is the mean pairwise cosine similarity between topics (Cao Juan et
al., 2009), lower is better. deveaud2014 is the mean pairwise divergence
between topics (Deveaud et al., 2014), higher is better. arun2010 is the
symmetric Kullback-Leibler divergence between the singular values of the
topic-term matrix and the length-weighted topic mass over documents (Arun et
al., 2010), lower is better.
"""
# ==============================================================================
# Imports
# ==============================================================================
import numpy as np
from scipy.special import logsumexp, rel_entr
from sklearn.metrics.pairwise import cosine_similarity


EPSILON = 1e-10
MAXIMIZE = 'maximize'
MINIMIZE = 'minimize'


# ==============================================================================
# Primary Functions
# ==============================================================================
def griffiths2004(log_likelihoods):
    """Harmonic mean of p(w | z) samples, computed in log space.

    :param log_likelihoods: sequence of log p(w | z) values, or (sweep, value) pairs
    :return: log of the harmonic mean of the likelihoods
    """
    values = np.array([ll[1] if isinstance(ll, tuple) else ll for ll in log_likelihoods], dtype=np.float64)
    if values.size == 0:
        raise ValueError("griffiths2004 needs at least one log-likelihood sample; set keep >= 1")
    return float(-(logsumexp(-values) - np.log(values.size)))


def caojuan2009(beta):
    """Mean cosine similarity over all unordered pairs of topics."""
    beta = np.asarray(beta, dtype=np.float64)
    n_topics = beta.shape[0]
    sims = cosine_similarity(beta)
    upper = sims[np.triu_indices(n_topics, k=1)]
    return float(np.sum(upper) / (n_topics * (n_topics - 1) / 2))


def arun2010(beta, theta, doc_lengths):
    """Symmetric KL divergence between the singular values of beta and the
    document-length weighted column sums of theta.

    :param beta: (K, V) topic-term matrix
    :param theta: (D, K) document-topic matrix
    :param doc_lengths: (D,) token counts per document
    """
    beta = np.asarray(beta, dtype=np.float64)
    theta = np.asarray(theta, dtype=np.float64)
    doc_lengths = np.asarray(doc_lengths, dtype=np.float64)

    cm1 = np.linalg.svd(beta, compute_uv=False)
    cm2 = doc_lengths @ theta
    cm2 = cm2 / np.max(np.abs(doc_lengths))

    n = min(len(cm1), len(cm2))
    cm1 = np.maximum(cm1[:n], EPSILON)
    cm2 = np.maximum(cm2[:n], EPSILON)
    return float(np.sum(cm1 * np.log(cm1 / cm2)) + np.sum(cm2 * np.log(cm2 / cm1)))


def deveaud2014(beta):
    """Mean symmetric divergence over all ordered pairs of topics."""
    beta = np.asarray(beta, dtype=np.float64)
    if np.any(beta == 0):
        beta = beta + np.finfo(np.float64).tiny
    n_topics = beta.shape[0]

    total = 0.0
    for i in range(n_topics - 1):
        for j in range(i + 1, n_topics):
            total += symmetric_kl_divergence(beta[i], beta[j])
    return float(total / (n_topics * (n_topics - 1)))


# ==============================================================================
# Utility Functions
# ==============================================================================
def symmetric_kl_divergence(p, q):
    """0.5 * KL(p || q) + 0.5 * KL(q || p)."""
    return 0.5 * np.sum(rel_entr(p, q)) + 0.5 * np.sum(rel_entr(q, p))


def evaluate_topic_count_metrics(model, doc_lengths, metrics):
    """
    Compute the requested metrics for one fitted model.

    Args:
        model: TopicModel with theta, beta and log_likelihoods
        doc_lengths: token count per document row
        metrics: iterable of metric names from METRICS

    Returns:
        Dictionary of metric name -> score
    """
    scores = {}
    for name in metrics:
        if name == 'griffiths2004':
            scores[name] = griffiths2004(model.log_likelihoods)
        elif name == 'caojuan2009':
            scores[name] = caojuan2009(model.beta)
        elif name == 'arun2010':
            scores[name] = arun2010(model.beta, model.theta, doc_lengths)
        elif name == 'deveaud2014':
            scores[name] = deveaud2014(model.beta)
        else:
            raise ValueError(f"Unknown metric '{name}'")
    return scores


# Metric name -> whether larger or smaller values indicate a better K
METRICS = {
    'griffiths2004': MAXIMIZE,
    'caojuan2009': MINIMIZE,
    'arun2010': MINIMIZE,
    'deveaud2014': MAXIMIZE,
}
