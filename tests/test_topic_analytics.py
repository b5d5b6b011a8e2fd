"""
Test cases for topic_analytics.py module
"""

import pytest
import datetime as dt
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from topictrends.errors import ConfigurationError, DimensionMismatchError, InvalidThresholdError
from topictrends.topic_analytics import (
    name_topics, top_terms, top_term_indices, term_scores, topic_term_frequencies,
    rank_by_mean_proportion, rank_by_primary_count, primary_topics, primary_topic_counts,
    filter_by_threshold, validate_threshold, document_topic_table,
    aggregate_by_time_bucket, to_long_format,
    decade_bucket, year_bucket, month_bucket, get_time_bucket_function, bucket_keys_for
)


@pytest.fixture
def theta():
    return np.array([
        [0.7, 0.2, 0.1],
        [0.1, 0.6, 0.3],
        [0.2, 0.2, 0.6],
        [0.5, 0.4, 0.1],
    ])


@pytest.fixture
def beta():
    return np.array([
        [0.1, 0.5, 0.4],
        [0.3, 0.3, 0.4],
    ])


VOCABULARY = ["alpha", "beta", "gamma"]


class TestTopicNaming:
    """Test topic labels and term listings"""

    def test_name_topics(self, beta):
        assert name_topics(beta, VOCABULARY, top_n=2) == ["beta gamma", "gamma alpha"]

    def test_name_topics_ties_prefer_lower_term_index(self, beta):
        assert name_topics(beta, VOCABULARY, top_n=3)[1] == "gamma alpha beta"

    def test_name_topics_separator(self, beta):
        assert name_topics(beta, VOCABULARY, top_n=2, separator="_")[0] == "beta_gamma"

    def test_top_n_larger_than_vocabulary(self, beta):
        assert name_topics(beta, VOCABULARY, top_n=10)[0] == "beta gamma alpha"

    def test_invalid_top_n(self, beta):
        with pytest.raises(ConfigurationError):
            name_topics(beta, VOCABULARY, top_n=0)

    def test_vocabulary_mismatch(self, beta):
        with pytest.raises(DimensionMismatchError):
            name_topics(beta, ["alpha", "beta"], top_n=2)

    def test_term_scores_downweight_shared_terms(self):
        beta = np.array([[0.5, 0.25, 0.25], [0.5, 0.0625, 0.4375]])
        scores = term_scores(beta)
        np.testing.assert_allclose(scores[:, 0], 0.0, atol=1e-12)
        assert top_term_indices(beta, 1, by_score=True)[0] == [1]
        assert top_term_indices(beta, 1)[0] == [0]

    def test_top_terms_table(self, beta):
        table = top_terms(beta, VOCABULARY, top_n=2)
        assert list(table.index) == [1, 2]
        assert table.index.name == 'rank'
        assert list(table[0]) == ["beta", "gamma"]
        assert list(table[1]) == ["gamma", "alpha"]

    def test_topic_term_frequencies(self, beta):
        series = topic_term_frequencies(beta, VOCABULARY, topic_index=0, top_n=2)
        assert list(series.index) == ["beta", "gamma"]
        assert series["beta"] == pytest.approx(0.5)

    def test_topic_term_frequencies_bad_topic(self, beta):
        with pytest.raises(ConfigurationError):
            topic_term_frequencies(beta, VOCABULARY, topic_index=2)


class TestRankings:
    """Test topic rankings"""

    def test_rank_by_mean_proportion(self, theta):
        assert rank_by_mean_proportion(theta) == [0, 1, 2]

    def test_rank_by_primary_count(self, theta):
        assert list(primary_topics(theta)) == [0, 1, 2, 0]
        assert list(primary_topic_counts(theta)) == [2, 1, 1]
        assert rank_by_primary_count(theta) == [0, 1, 2]

    def test_rankings_are_permutations(self):
        rng = np.random.default_rng(0)
        theta = rng.dirichlet(np.ones(6), size=20)
        for ranking in (rank_by_mean_proportion(theta), rank_by_primary_count(theta)):
            assert sorted(ranking) == list(range(6))

    def test_argmax_ties_prefer_lower_topic(self):
        theta = np.array([[0.2, 0.4, 0.4]])
        assert list(primary_topics(theta)) == [1]
        assert rank_by_primary_count(theta) == [1, 0, 2]

    def test_mean_ties_prefer_lower_topic(self):
        theta = np.array([[0.25, 0.5, 0.25], [0.25, 0.5, 0.25]])
        assert rank_by_mean_proportion(theta) == [1, 0, 2]

    def test_primary_count_includes_topics_without_documents(self):
        theta = np.array([[0.1, 0.9, 0.0], [0.2, 0.8, 0.0]])
        assert list(primary_topic_counts(theta)) == [0, 2, 0]


class TestFilterByThreshold:
    """Test document filtering"""

    def test_zero_threshold_returns_all(self, theta):
        for topic in range(3):
            assert list(filter_by_threshold(theta, topic, 0.0)) == [0, 1, 2, 3]

    def test_just_above_one_returns_none(self, theta):
        assert len(filter_by_threshold(theta, 0, 1.0 + 1e-9)) == 0

    def test_inclusive_boundary(self, theta):
        assert list(filter_by_threshold(theta, 0, 0.7)) == [0]
        assert list(filter_by_threshold(theta, 0, 0.5)) == [0, 3]

    @pytest.mark.parametrize("threshold", [-0.1, 1.5, float('nan'), '0.5'])
    def test_invalid_threshold(self, theta, threshold):
        with pytest.raises(InvalidThresholdError):
            filter_by_threshold(theta, 0, threshold)

    def test_invalid_threshold_is_value_error(self):
        with pytest.raises(ValueError):
            validate_threshold(2.0)

    def test_invalid_topic_index(self, theta):
        with pytest.raises(ConfigurationError):
            filter_by_threshold(theta, 3, 0.2)

    def test_document_topic_table(self, theta):
        rows = filter_by_threshold(theta, 0, 0.5)
        table = document_topic_table(theta, topic_names=["a", "b", "c"], rows=rows)
        assert list(table.index) == [0, 3]
        assert list(table.columns) == ["a", "b", "c"]
        assert table.loc[3, "b"] == pytest.approx(0.4)


class TestTimeBuckets:
    """Test bucket functions and temporal aggregation"""

    def test_decade_bucket(self):
        assert decade_bucket("1987-05-01") == "1980"
        assert decade_bucket(dt.date(2000, 1, 1)) == "2000"
        assert decade_bucket(pd.Timestamp("2019-12-31")) == "2010"

    def test_year_and_month_buckets(self):
        assert year_bucket("1987-05-01") == "1987"
        assert month_bucket("1987-05-01") == "1987-05"

    def test_get_time_bucket_function(self):
        assert get_time_bucket_function('decade') is decade_bucket
        custom = lambda date: "all"
        assert get_time_bucket_function(custom) is custom
        with pytest.raises(ConfigurationError):
            get_time_bucket_function('century')

    def test_bucket_keys_for(self):
        assert bucket_keys_for(["1987-05-01", "1991-01-01"], 'decade') == ["1980", "1990"]

    def test_single_bucket_equals_column_mean(self, theta):
        aggregate = aggregate_by_time_bucket(theta, ["all"] * 4)
        assert list(aggregate.index) == ["all"]
        np.testing.assert_allclose(aggregate.loc["all"].values, theta.mean(axis=0))

    def test_observed_buckets_only(self, theta):
        aggregate = aggregate_by_time_bucket(theta, ["1990", "1980", "1990", "1980"])
        assert list(aggregate.index) == ["1980", "1990"]
        np.testing.assert_allclose(aggregate.loc["1980"].values, theta[[1, 3]].mean(axis=0))
        assert "2000" not in aggregate.index

    def test_topic_names_as_columns(self, theta):
        aggregate = aggregate_by_time_bucket(theta, ["x"] * 4, topic_names=["a", "b", "c"])
        assert list(aggregate.columns) == ["a", "b", "c"]

    def test_bucket_length_mismatch(self, theta):
        with pytest.raises(DimensionMismatchError):
            aggregate_by_time_bucket(theta, ["1980"] * 3)

    def test_to_long_format(self, theta):
        aggregate = aggregate_by_time_bucket(theta, ["1990", "1980", "1990", "1980"])
        long_form = to_long_format(aggregate)
        assert list(long_form.columns) == ["bucket", "topic", "proportion"]
        assert len(long_form) == 6
