"""
Topic-count advisor.

Fits one Gibbs LDA model per candidate K and tabulates diagnostic metrics
from topictrends.model_evaluation. The table is meant to be read by a person
looking for where the metric curves level off or cross; nothing here picks K.

Candidate fits are independent: each builds its own count tables from the
same seed, so a candidate's scores do not depend on which other candidates are
scanned or whether they run in parallel.
"""

from multiprocessing import Pool

import numpy as np
import pandas as pd

from ._file_driver import log_print
from .errors import ConfigurationError
from .gibbs_lda import (
    GibbsLDA,
    as_count_matrix,
    validate_alpha,
    validate_sampler_settings,
    validate_topic_count,
)
from .model_evaluation import METRICS, evaluate_topic_count_metrics


def metric_directions():
    """Metric name -> 'maximize' or 'minimize'."""
    return dict(METRICS)


def validate_metrics(metrics):
    metrics = list(metrics)
    if not metrics:
        raise ConfigurationError("At least one metric must be requested")
    unknown = [m for m in metrics if m not in METRICS]
    if unknown:
        raise ConfigurationError(f"Unknown metrics {unknown}; supported metrics are {sorted(METRICS)}")
    return list(dict.fromkeys(metrics))


def _fit_candidate(args):
    """Fit one candidate K and score it. Module level so worker processes can pickle it."""
    counts, n_topics, metrics, sampler_params = args
    model = GibbsLDA(n_topics=n_topics, **sampler_params).fit(counts)
    doc_lengths = np.asarray(counts.sum(axis=1)).ravel()
    return n_topics, evaluate_topic_count_metrics(model, doc_lengths, metrics)


def scan(dtm, candidate_ks, metrics, seed, iterations, alpha='auto', eta=0.1,
         burn_in=0, keep=0, n_workers=1):
    """
    Score each candidate topic count with the requested metrics.

    Args:
        dtm: DocumentTermMatrix or sparse count matrix
        candidate_ks: Topic counts to try, each >= 2
        metrics: Metric names, a subset of METRICS
        seed: Random seed shared by every candidate fit
        iterations: Gibbs sweeps per candidate
        alpha: Document-topic prior or 'auto'
        eta: Topic-term prior
        burn_in: Sweeps before log-likelihood samples are recorded
        keep: Sample interval for log-likelihoods (required by griffiths2004)
        n_workers: Number of worker processes for candidate fits

    Returns:
        DataFrame indexed by K (ascending) with one column per metric
    """
    metrics = validate_metrics(metrics)
    validate_alpha(alpha)
    validate_sampler_settings(iterations, seed, eta, burn_in, keep)
    if 'griffiths2004' in metrics and not keep:
        raise ConfigurationError("griffiths2004 needs log-likelihood samples; set keep >= 1")
    if n_workers is None or n_workers < 1:
        raise ConfigurationError(f"n_workers must be >= 1, got {n_workers}")

    counts, _, _ = as_count_matrix(dtm)
    n_observed_terms = int(np.count_nonzero(np.asarray(counts.sum(axis=0)).ravel()))
    candidate_ks = list(candidate_ks)
    if not candidate_ks:
        raise ConfigurationError("candidate_ks must contain at least one topic count")
    for k in candidate_ks:
        validate_topic_count(k, n_observed_terms)
    candidate_ks = sorted(set(int(k) for k in candidate_ks))

    sampler_params = {
        'alpha': alpha,
        'eta': eta,
        'iterations': iterations,
        'seed': seed,
        'burn_in': burn_in,
        'keep': keep,
        'progress_every': iterations,
    }
    jobs = [(counts, k, metrics, sampler_params) for k in candidate_ks]

    log_print(f"Scanning topic counts {candidate_ks} with metrics {metrics}", level="info")
    if n_workers > 1 and len(jobs) > 1:
        with Pool(min(n_workers, len(jobs))) as pool:
            results = pool.map(_fit_candidate, jobs)
    else:
        results = [_fit_candidate(job) for job in jobs]

    table = pd.DataFrame(
        [scores for _, scores in results],
        index=pd.Index([k for k, _ in results], name='n_topics'),
        columns=metrics,
    )
    log_print(f"Topic count scan finished for {len(table)} candidates", level="info")
    return table


def normalize_scan(table):
    """Rescale every metric column to [0, 1]; constant columns become 0."""
    span = table.max() - table.min()
    normalized = (table - table.min()) / span.replace(0, np.nan)
    return normalized.fillna(0.0)
