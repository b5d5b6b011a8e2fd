"""
Test cases for gibbs_lda.py module
"""

import logging

import pytest
import numpy as np
from scipy import sparse

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from topictrends.errors import (
    ConfigurationError, DimensionMismatchError, EmptyCorpusError,
    InferenceCancelledError, InvalidTopicCountError
)
from topictrends.gibbs_lda import (
    GibbsLDA, TopicModel, infer, expand_token_occurrences, log_likelihood,
    estimate_symmetric_alpha, validate_alpha
)
from topictrends.vocabulary import build_document_term_matrix


@pytest.fixture
def counts():
    return sparse.csr_matrix(np.array([
        [3, 1, 0, 0, 0],
        [0, 2, 2, 0, 1],
        [1, 0, 1, 3, 0],
        [0, 0, 2, 2, 1],
        [4, 1, 0, 0, 2],
    ], dtype=np.int64))


class TestTokenExpansion:
    """Test flattening of counts into token occurrences"""

    def test_expand_token_occurrences(self):
        doc_ids, word_ids = expand_token_occurrences(sparse.csr_matrix([[2, 0, 1], [0, 1, 0]]))
        assert list(doc_ids) == [0, 0, 0, 1]
        assert list(word_ids) == [0, 0, 2, 1]

    def test_negative_counts_rejected(self):
        with pytest.raises(ConfigurationError):
            expand_token_occurrences(sparse.csr_matrix([[1, -1]]))


class TestInference:
    """Test the collapsed Gibbs sampler"""

    def test_output_shapes(self, counts):
        model = infer(counts, n_topics=2, alpha=0.5, iterations=10, seed=42)
        assert model.theta.shape == (5, 2)
        assert model.beta.shape == (2, 5)
        assert model.n_topics == 2

    def test_rows_are_distributions(self, counts):
        model = infer(counts, n_topics=3, alpha=0.5, iterations=10, seed=1)
        assert np.all(model.theta >= 0)
        assert np.all(model.beta >= 0)
        np.testing.assert_allclose(model.theta.sum(axis=1), 1.0, atol=1e-6)
        np.testing.assert_allclose(model.beta.sum(axis=1), 1.0, atol=1e-6)

    def test_same_seed_is_bit_identical(self, counts):
        first = infer(counts, n_topics=3, alpha=0.5, iterations=15, seed=42)
        second = infer(counts, n_topics=3, alpha=0.5, iterations=15, seed=42)
        assert np.array_equal(first.theta, second.theta)
        assert np.array_equal(first.beta, second.beta)

    def test_refit_resets_random_stream(self, counts):
        sampler = GibbsLDA(n_topics=2, alpha=0.5, iterations=10, seed=7)
        first = sampler.fit(counts)
        first_assignments = sampler.assignments.copy()
        second = sampler.fit(counts)
        assert np.array_equal(first_assignments, sampler.assignments)
        assert np.array_equal(first.theta, second.theta)

    def test_count_tables_consistent(self, counts):
        sampler = GibbsLDA(n_topics=3, alpha=0.1, iterations=5, seed=3)
        sampler.fit(counts)
        doc_lengths = np.asarray(counts.sum(axis=1)).ravel()
        term_totals = np.asarray(counts.sum(axis=0)).ravel()
        assert np.array_equal(sampler.n_dk.sum(axis=1), doc_lengths)
        assert np.array_equal(sampler.n_wk.sum(axis=1), term_totals)
        assert np.array_equal(sampler.n_k, np.bincount(sampler.assignments, minlength=3))
        assert len(sampler.assignments) == counts.sum()

    def test_dense_input_accepted(self, counts):
        model = infer(counts.toarray(), n_topics=2, alpha=0.5, iterations=5, seed=0)
        assert model.theta.shape == (5, 2)

    def test_vocabulary_carried_from_dtm(self):
        dtm = build_document_term_matrix([["a", "b", "a"], ["b", "c"], ["c", "a"]], minimum_frequency=1)
        model = infer(dtm, n_topics=2, alpha=0.5, iterations=5, seed=0)
        assert model.vocabulary == dtm.vocabulary
        assert list(model.document_indices) == [0, 1, 2]
        assert model.check_alignment(dtm)

    def test_model_arrays_read_only(self, counts):
        model = infer(counts, n_topics=2, alpha=0.5, iterations=5, seed=0)
        with pytest.raises(ValueError):
            model.theta[0, 0] = 1.0

    def test_auto_alpha_is_estimated(self, counts):
        """A single update at the last sweep is the fixed-point estimate from 50/K on the final counts"""
        sampler = GibbsLDA(n_topics=2, alpha='auto', iterations=5, seed=0, optimize_interval=5)
        model = sampler.fit(counts)
        doc_lengths = np.asarray(counts.sum(axis=1)).ravel()
        expected = estimate_symmetric_alpha(sampler.n_dk, doc_lengths, 25.0)
        assert model.alpha == pytest.approx(expected)
        assert model.alpha != 25.0

    def test_posterior_means_from_final_counts(self, counts):
        sampler = GibbsLDA(n_topics=3, alpha=0.3, eta=0.05, iterations=8, seed=5)
        model = sampler.fit(counts)
        n_terms = counts.shape[1]
        doc_lengths = np.asarray(counts.sum(axis=1)).ravel()
        expected_theta = (sampler.n_dk + 0.3) / (doc_lengths[:, None] + 3 * 0.3)
        expected_beta = (sampler.n_wk.T + 0.05) / (sampler.n_k[:, None] + n_terms * 0.05)
        np.testing.assert_allclose(model.theta, expected_theta)
        np.testing.assert_allclose(model.beta, expected_beta)

    def test_progress_logged_every_interval_and_at_end(self, counts, caplog):
        with caplog.at_level(logging.INFO, logger="topictrends"):
            infer(counts, n_topics=2, alpha=0.5, iterations=7, seed=0, progress_every=3)
        progress = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Gibbs sweep")]
        assert progress == [
            "Gibbs sweep 3/7 finished (K=2)",
            "Gibbs sweep 6/7 finished (K=2)",
            "Gibbs sweep 7/7 finished (K=2)",
        ]

    def test_log_likelihood_samples(self, counts):
        model = infer(counts, n_topics=2, alpha=0.5, iterations=10, seed=0, burn_in=4, keep=2)
        assert [sweep for sweep, _ in model.log_likelihoods] == [6, 8, 10]
        assert all(np.isfinite(ll) and ll < 0 for _, ll in model.log_likelihoods)

    def test_model_params(self, counts):
        model = infer(counts, n_topics=2, alpha=0.5, iterations=5, seed=11)
        params = model.get_model_params()
        assert params['n_topics'] == 2
        assert params['seed'] == 11
        assert params['iterations'] == 5


class TestValidation:
    """Test failures raised before any sampling starts"""

    @pytest.mark.parametrize("n_topics", [0, 1, 6, 2.5])
    def test_invalid_topic_count(self, counts, n_topics):
        with pytest.raises(InvalidTopicCountError):
            infer(counts, n_topics=n_topics, alpha=0.5, iterations=5, seed=0)

    def test_topic_count_equal_to_terms_allowed(self, counts):
        model = infer(counts, n_topics=5, alpha=0.5, iterations=2, seed=0)
        assert model.n_topics == 5

    def test_unobserved_terms_do_not_count(self):
        counts = sparse.csr_matrix([[1, 0, 0], [1, 1, 0]])
        with pytest.raises(InvalidTopicCountError):
            infer(counts, n_topics=3, alpha=0.5, iterations=2, seed=0)

    @pytest.mark.parametrize("alpha", [0, -1.0, 'fixed', float('nan'), True])
    def test_invalid_alpha(self, alpha):
        with pytest.raises(ConfigurationError):
            validate_alpha(alpha)

    @pytest.mark.parametrize("kwargs", [
        {'iterations': 0},
        {'iterations': -5},
        {'seed': 1.5},
        {'eta': 0},
        {'burn_in': -1},
        {'keep': -1},
        {'burn_in': 10, 'keep': 1},
        {'optimize_interval': 0},
        {'progress_every': 0},
    ])
    def test_invalid_sampler_settings(self, kwargs):
        params = dict(n_topics=2, alpha=0.5, iterations=10, seed=0)
        params.update(kwargs)
        with pytest.raises(ConfigurationError):
            GibbsLDA(**params)

    def test_empty_matrix(self):
        with pytest.raises(EmptyCorpusError):
            infer(sparse.csr_matrix((2, 3), dtype=np.int64), n_topics=2, alpha=0.5, iterations=2, seed=0)

    def test_empty_row(self):
        with pytest.raises(EmptyCorpusError):
            infer(sparse.csr_matrix([[1, 2], [0, 0]]), n_topics=2, alpha=0.5, iterations=2, seed=0)


class TestCancellation:
    """Test caller-driven interruption between sweeps"""

    def test_cancel_before_first_sweep(self, counts):
        with pytest.raises(InferenceCancelledError) as excinfo:
            infer(counts, n_topics=2, alpha=0.5, iterations=10, seed=0, should_stop=lambda: True)
        assert excinfo.value.completed_sweeps == 0
        assert excinfo.value.total_sweeps == 10

    def test_cancel_mid_run(self, counts):
        calls = []

        def should_stop():
            calls.append(1)
            return len(calls) > 3

        sampler = GibbsLDA(n_topics=2, alpha=0.5, iterations=10, seed=0, should_stop=should_stop)
        with pytest.raises(InferenceCancelledError) as excinfo:
            sampler.fit(counts)
        assert excinfo.value.completed_sweeps == 3
        # no partial model is published
        assert sampler.n_dk is None


class TestLikelihoodAndAlpha:
    """Test likelihood and hyperparameter helpers"""

    def test_log_likelihood_without_assignments(self):
        n_wk = np.zeros((4, 2), dtype=np.int64)
        n_k = np.zeros(2, dtype=np.int64)
        assert log_likelihood(n_wk, n_k, 0.1) == pytest.approx(0.0, abs=1e-9)

    def test_log_likelihood_prefers_concentrated_topics(self):
        concentrated = np.array([[4, 0], [0, 4]])
        mixed = np.array([[2, 2], [2, 2]])
        n_k = np.array([4, 4])
        assert log_likelihood(concentrated, n_k, 0.1) > log_likelihood(mixed, n_k, 0.1)

    def test_estimate_symmetric_alpha_positive(self):
        n_dk = np.array([[5, 0], [0, 5], [4, 1]])
        doc_lengths = n_dk.sum(axis=1)
        alpha = estimate_symmetric_alpha(n_dk, doc_lengths, 1.0)
        assert 0 < alpha < 1.0


class TestTopicModel:
    """Test the TopicModel container"""

    def test_mismatched_topic_dimension(self):
        with pytest.raises(DimensionMismatchError):
            TopicModel(np.ones((3, 2)) / 2, np.ones((3, 4)) / 4, 0.5, 0.1, 10, 0)

    def test_mismatched_vocabulary(self):
        with pytest.raises(DimensionMismatchError):
            TopicModel(np.ones((3, 2)) / 2, np.ones((2, 4)) / 4, 0.5, 0.1, 10, 0, vocabulary=["a"])

    def test_check_alignment_against_dtm(self):
        model = TopicModel(np.ones((3, 2)) / 2, np.ones((2, 4)) / 4, 0.5, 0.1, 10, 0)
        assert model.check_alignment(sparse.csr_matrix((3, 4)))
        with pytest.raises(DimensionMismatchError):
            model.check_alignment(sparse.csr_matrix((4, 4)))
        with pytest.raises(DimensionMismatchError):
            model.check_alignment(sparse.csr_matrix((3, 5)))


class TestAlphaEstimation:
    """Test the fixed-point update for the document-topic prior"""

    def test_peaked_documents_lower_alpha(self):
        n_dk = np.array([[10, 0], [0, 10], [10, 0]])
        doc_lengths = n_dk.sum(axis=1)
        assert estimate_symmetric_alpha(n_dk, doc_lengths, 5.0) < 5.0

    def test_spread_documents_keep_alpha_higher(self):
        peaked = np.array([[10, 0], [0, 10], [10, 0]])
        spread = np.array([[5, 5], [6, 4], [4, 6]])
        lengths = np.array([10, 10, 10])
        assert estimate_symmetric_alpha(spread, lengths, 5.0) > estimate_symmetric_alpha(peaked, lengths, 5.0)
