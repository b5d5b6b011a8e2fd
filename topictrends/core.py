"""
Core topictrends functionality.

This module provides the configuration layer and the TopicPipeline
orchestrator, which chains the pipeline stages:

    documents -> token sequences -> document-term matrix
              -> (topic count scan) -> Gibbs LDA -> topic analytics

Each stage returns new values; the orchestrator keeps the latest value of each
stage so results can be inspected or exported between steps.
"""

import copy
import logging
import os
import datetime as dt
from numbers import Integral
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pandas as pd
import yaml
from scipy import sparse

from ._file_driver import log_print, write_json, write_pickle
from .dataframe_schema import DocumentSchema, build_documents_frame
from .errors import ConfigurationError, InvalidTopicCountError
from .gibbs_lda import GibbsLDA, validate_alpha, validate_sampler_settings
from .text_preprocessing import TextPreprocessor, get_reduction_step
from .topic_analytics import (
    aggregate_by_time_bucket,
    bucket_keys_for,
    filter_by_threshold,
    get_time_bucket_function,
    name_topics,
    rank_by_mean_proportion,
    rank_by_primary_count,
    top_terms,
    validate_threshold,
)
from .topic_count_advisor import scan, validate_metrics
from .vocabulary import align_documents, build_document_term_matrix


"""============================================================================
Configuration
============================================================================"""
DEFAULT_CONFIG_PATH = Path(__file__).parent / 'config.yaml'


def load_default_config() -> dict:
    """Load the packaged default configuration."""
    with open(DEFAULT_CONFIG_PATH, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


def _merge_config(base: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(overrides: Optional[Union[dict, str, Path]] = None) -> dict:
    """
    Build a validated configuration from the packaged defaults.

    Args:
        overrides: dict of section -> values, or path to a YAML file with the same layout

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigurationError: if any value is missing or invalid
    """
    config = load_default_config()
    if overrides is not None:
        if isinstance(overrides, (str, Path)):
            try:
                with open(overrides, 'r', encoding='utf-8') as f:
                    overrides = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Error parsing config file {overrides}: {e}") from e
        if not isinstance(overrides, dict):
            raise ConfigurationError("Configuration overrides must be a mapping of sections")
        unknown = set(overrides) - set(config)
        if unknown:
            raise ConfigurationError(f"Unknown configuration sections: {sorted(unknown)}")
        config = _merge_config(config, overrides)
    validate_config(config)
    return config


def _require_int(section, key, value, minimum):
    if isinstance(value, bool) or not isinstance(value, Integral) or value < minimum:
        raise ConfigurationError(f"{section}.{key} must be an integer >= {minimum}, got {value!r}")


def validate_config(config: dict) -> None:
    """Check every configuration value before any work starts."""
    try:
        text_cfg = config['text_processing']
        vocab_cfg = config['vocabulary']
        scan_cfg = config['topic_count_scan']
        model_cfg = config['topic_model']
        analysis_cfg = config['analysis']
    except KeyError as e:
        raise ConfigurationError(f"Missing configuration section {e}") from None

    try:
        if not isinstance(text_cfg['language'], str):
            raise ConfigurationError("text_processing.language must be a string")
        get_reduction_step(text_cfg['stemming'], text_cfg['language'])
        if not isinstance(text_cfg['extra_stopwords'] or [], list):
            raise ConfigurationError("text_processing.extra_stopwords must be a list")
        _require_int('text_processing', 'n_workers', text_cfg['n_workers'], 1)

        _require_int('vocabulary', 'minimum_frequency', vocab_cfg['minimum_frequency'], 1)

        candidate_ks = scan_cfg['candidate_ks']
        if not isinstance(candidate_ks, list) or not candidate_ks:
            raise ConfigurationError("topic_count_scan.candidate_ks must be a non-empty list")
        for k in candidate_ks:
            if isinstance(k, bool) or not isinstance(k, Integral) or k < 2:
                raise InvalidTopicCountError(f"topic_count_scan.candidate_ks entries must be integers >= 2, got {k!r}")
        validate_metrics(scan_cfg['metrics'])
        validate_alpha(scan_cfg['alpha'])
        validate_sampler_settings(scan_cfg['iterations'], model_cfg['random_seed'], scan_cfg['eta'],
                                  scan_cfg['burn_in'], scan_cfg['keep'])
        if 'griffiths2004' in scan_cfg['metrics'] and not scan_cfg['keep']:
            raise ConfigurationError("topic_count_scan.keep must be >= 1 when griffiths2004 is requested")
        _require_int('topic_count_scan', 'n_workers', scan_cfg['n_workers'], 1)

        n_topics = model_cfg['n_topics']
        if isinstance(n_topics, bool) or not isinstance(n_topics, Integral) or n_topics < 2:
            raise InvalidTopicCountError(f"topic_model.n_topics must be an integer >= 2, got {n_topics!r}")
        validate_alpha(model_cfg['alpha'])
        validate_sampler_settings(model_cfg['iterations'], model_cfg['random_seed'], model_cfg['eta'],
                                  model_cfg['burn_in'], 0, model_cfg['optimize_interval'],
                                  model_cfg['progress_every'])

        _require_int('analysis', 'topics_per_name', analysis_cfg['topics_per_name'], 1)
        if not isinstance(analysis_cfg['name_by_score'], bool):
            raise ConfigurationError("analysis.name_by_score must be true or false")
        _require_int('analysis', 'filter_topic_index', analysis_cfg['filter_topic_index'], 0)
        if analysis_cfg['filter_topic_index'] >= n_topics:
            raise ConfigurationError(
                f"analysis.filter_topic_index ({analysis_cfg['filter_topic_index']}) "
                f"must be below topic_model.n_topics ({n_topics})"
            )
        validate_threshold(analysis_cfg['filter_threshold'])
        get_time_bucket_function(analysis_cfg['time_bucket'])
    except KeyError as e:
        raise ConfigurationError(f"Missing configuration value {e}") from None


"""============================================================================
Results container
============================================================================"""
class PipelineResults:
    """
    Analytics computed from one fitted topic model.

    Attributes:
        topic_names: label per topic
        rank_by_mean: topic indices by mean proportion
        rank_by_primary: topic indices by primary-topic document count
        filter_topic_index: topic used for document filtering
        filter_threshold: threshold used for document filtering
        filtered_documents: theta row indices passing the filter
        time_aggregate: DataFrame of mean topic proportions per time bucket
        top_terms: DataFrame of top terms per topic
    """

    def __init__(self, topic_names, rank_by_mean, rank_by_primary, filter_topic_index,
                 filter_threshold, filtered_documents, time_aggregate, top_terms):
        self.topic_names = topic_names
        self.rank_by_mean = rank_by_mean
        self.rank_by_primary = rank_by_primary
        self.filter_topic_index = filter_topic_index
        self.filter_threshold = filter_threshold
        self.filtered_documents = filtered_documents
        self.time_aggregate = time_aggregate
        self.top_terms = top_terms

    def to_dict(self) -> Dict[str, Any]:
        return {
            'topic_names': list(self.topic_names),
            'rank_by_mean_proportion': list(self.rank_by_mean),
            'rank_by_primary_count': list(self.rank_by_primary),
            'filter_topic_index': self.filter_topic_index,
            'filter_threshold': self.filter_threshold,
            'filtered_documents': [int(i) for i in self.filtered_documents],
        }


"""============================================================================
class TopicPipeline

Primary user interface for topictrends
============================================================================"""
class TopicPipeline:
    """
    Orchestrates the topic modeling pipeline over one static corpus.

    Example Usage:
        pipeline = TopicPipeline(config={'topic_model': {'n_topics': 10}})
        pipeline.load_documents(records)
        pipeline.preprocess_text()
        pipeline.build_document_term_matrix()
        pipeline.scan_topic_counts()          # optional, advisory only
        pipeline.fit_topic_model()
        results = pipeline.analyze()
        pipeline.export_results("out/")
    """

    def __init__(self,
                 config: Optional[Union[dict, str, Path]] = None,
                 stopwords: Optional[Sequence[str]] = None,
                 text_preprocessor: Optional[TextPreprocessor] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            config: Overrides for the packaged config.yaml, as a dict or YAML path
            stopwords: Stopword list; NLTK's list for the configured language when None
            text_preprocessor: Pre-configured TextPreprocessor, built from config if None
            logger: Custom logger, creates default if None
        """
        self.config = load_config(config)
        self.logger = logger or self._setup_logger()
        self._stopwords = stopwords
        self._text_preprocessor = text_preprocessor

        # Stage outputs
        self.documents_df = None
        self.token_sequences = None
        self.dtm = None
        self.aligned_documents_df = None
        self.topic_count_scan = None
        self.topic_model = None
        self.results = None

        self.logger.info("TopicPipeline initialized")

    # ============================================================================
    # Stage 0: documents
    # ============================================================================
    def load_documents(self, documents, text_key: str = 'raw_text', date_key: str = 'date') -> 'TopicPipeline':
        """Take an ordered sequence of documents (DataFrame or list of dicts) with text and date."""
        self.documents_df = build_documents_frame(documents, text_key=text_key, date_key=date_key)
        self.token_sequences = None
        self.dtm = None
        self.aligned_documents_df = None
        self.topic_model = None
        self.results = None
        self.logger.info(f"Loaded {len(self.documents_df)} documents")
        return self

    # ============================================================================
    # Stage 1: normalization
    # ============================================================================
    def get_text_preprocessor(self) -> TextPreprocessor:
        if self._text_preprocessor is None:
            text_cfg = self.config['text_processing']
            self._text_preprocessor = TextPreprocessor(
                stopwords=self._stopwords,
                language=text_cfg['language'],
                stemming=text_cfg['stemming'],
                extra_stopwords=text_cfg['extra_stopwords'],
            )
        return self._text_preprocessor

    def preprocess_text(self, n_workers: Optional[int] = None) -> 'TopicPipeline':
        if self.documents_df is None:
            raise ValueError("No documents loaded. Call load_documents() first.")
        n_workers = n_workers if n_workers is not None else self.config['text_processing']['n_workers']

        preprocessor = self.get_text_preprocessor()
        self.token_sequences = preprocessor.normalize_corpus(
            self.documents_df[DocumentSchema.RAW_TEXT.colname].tolist(), n_workers=n_workers
        )
        stats = preprocessor.get_stats_log()
        self.logger.info(
            f"Text preprocessing complete: {stats['tokens']} tokens, "
            f"{stats['empty_documents']} empty documents"
        )
        return self

    # ============================================================================
    # Stage 2: document-term matrix
    # ============================================================================
    def build_document_term_matrix(self, minimum_frequency: Optional[int] = None) -> 'TopicPipeline':
        if self.token_sequences is None:
            raise ValueError("No token sequences available. Call preprocess_text() first.")
        minimum_frequency = (minimum_frequency if minimum_frequency is not None
                             else self.config['vocabulary']['minimum_frequency'])

        self.dtm = build_document_term_matrix(self.token_sequences, minimum_frequency)
        self.aligned_documents_df = align_documents(self.documents_df, self.dtm)
        self.topic_model = None
        self.results = None
        log_print(f"Document-term matrix ready: {self.dtm}", level="info", logger=self.logger)
        return self

    # ============================================================================
    # Stage 3: topic count scan (advisory)
    # ============================================================================
    def scan_topic_counts(self,
                          candidate_ks: Optional[List[int]] = None,
                          metrics: Optional[List[str]] = None,
                          seed: Optional[int] = None) -> pd.DataFrame:
        """Score candidate topic counts. The result informs, but never sets, topic_model.n_topics."""
        self._require_dtm()
        scan_cfg = self.config['topic_count_scan']
        self.topic_count_scan = scan(
            self.dtm,
            candidate_ks=candidate_ks if candidate_ks is not None else scan_cfg['candidate_ks'],
            metrics=metrics if metrics is not None else scan_cfg['metrics'],
            seed=seed if seed is not None else self.config['topic_model']['random_seed'],
            iterations=scan_cfg['iterations'],
            alpha=scan_cfg['alpha'],
            eta=scan_cfg['eta'],
            burn_in=scan_cfg['burn_in'],
            keep=scan_cfg['keep'],
            n_workers=scan_cfg['n_workers'],
        )
        return self.topic_count_scan

    # ============================================================================
    # Stage 4: LDA inference
    # ============================================================================
    def fit_topic_model(self,
                        n_topics: Optional[int] = None,
                        alpha: Optional[Union[float, str]] = None,
                        iterations: Optional[int] = None,
                        seed: Optional[int] = None,
                        should_stop: Optional[Callable[[], bool]] = None) -> 'TopicPipeline':
        """
        Fit LDA by collapsed Gibbs sampling. Arguments override the topic_model config section.

        Every call starts a fresh random stream from the seed, so refitting with a
        different alpha but the same seed is directly comparable.
        """
        self._require_dtm()
        model_cfg = self.config['topic_model']
        n_topics = n_topics if n_topics is not None else model_cfg['n_topics']
        alpha = alpha if alpha is not None else model_cfg['alpha']

        sampler = GibbsLDA(
            n_topics=n_topics,
            alpha=alpha,
            eta=model_cfg['eta'],
            iterations=iterations if iterations is not None else model_cfg['iterations'],
            seed=seed if seed is not None else model_cfg['random_seed'],
            burn_in=model_cfg['burn_in'],
            optimize_interval=model_cfg['optimize_interval'],
            progress_every=model_cfg['progress_every'],
            show_progress=model_cfg['show_progress'],
            should_stop=should_stop,
        )
        self.topic_model = sampler.fit(self.dtm)
        self.topic_model.check_alignment(self.dtm)
        self.results = None
        self.logger.info(f"Topic model fitted: {self.topic_model}")
        return self

    # ============================================================================
    # Stage 5: analytics
    # ============================================================================
    def analyze(self,
                topics_per_name: Optional[int] = None,
                filter_topic_index: Optional[int] = None,
                filter_threshold: Optional[float] = None,
                time_bucket: Optional[Union[str, Callable]] = None) -> PipelineResults:
        if self.topic_model is None:
            raise ValueError("No topic model fitted. Call fit_topic_model() first.")
        self.topic_model.check_alignment(self.dtm)

        analysis_cfg = self.config['analysis']
        topics_per_name = topics_per_name if topics_per_name is not None else analysis_cfg['topics_per_name']
        filter_topic_index = (filter_topic_index if filter_topic_index is not None
                              else analysis_cfg['filter_topic_index'])
        filter_threshold = filter_threshold if filter_threshold is not None else analysis_cfg['filter_threshold']
        bucket_function = get_time_bucket_function(time_bucket if time_bucket is not None
                                                   else analysis_cfg['time_bucket'])

        theta = self.topic_model.theta
        beta = self.topic_model.beta
        vocabulary = self.dtm.vocabulary
        by_score = analysis_cfg['name_by_score']

        topic_names = name_topics(beta, vocabulary, topics_per_name, by_score=by_score)
        bucket_keys = bucket_keys_for(self.aligned_documents_df[DocumentSchema.DATE.colname], bucket_function)

        self.results = PipelineResults(
            topic_names=topic_names,
            rank_by_mean=rank_by_mean_proportion(theta),
            rank_by_primary=rank_by_primary_count(theta),
            filter_topic_index=filter_topic_index,
            filter_threshold=filter_threshold,
            filtered_documents=filter_by_threshold(theta, filter_topic_index, filter_threshold),
            time_aggregate=aggregate_by_time_bucket(theta, bucket_keys),
            top_terms=top_terms(beta, vocabulary, max(topics_per_name, 10), by_score=by_score),
        )
        self.logger.info(
            f"Analysis complete: {len(self.results.filtered_documents)} documents pass "
            f"topic {filter_topic_index} >= {filter_threshold}, "
            f"{len(self.results.time_aggregate)} time buckets"
        )
        return self.results

    def run(self, documents, text_key: str = 'raw_text', date_key: str = 'date',
            scan_topic_counts: bool = False) -> PipelineResults:
        """Run every stage with the configured values and return the analytics."""
        self.load_documents(documents, text_key=text_key, date_key=date_key)
        self.preprocess_text()
        self.build_document_term_matrix()
        if scan_topic_counts:
            self.scan_topic_counts()
        self.fit_topic_model()
        return self.analyze()

    # ============================================================================
    # Export
    # ============================================================================
    def export_results(self, output_directory: Union[str, Path]) -> 'TopicPipeline':
        """
        Write every available artifact to output_directory.

        Files: dtm.npz, vocabulary.csv, documents.csv, topic_count_scan.csv,
        theta.csv, beta.csv, topic_model.pkl, time_aggregate.csv, top_terms.csv,
        analysis.json and metadata.json.
        """
        output_directory = str(output_directory)
        os.makedirs(output_directory, exist_ok=True)
        self.logger.info(f"Exporting results to {output_directory}")

        if self.dtm is not None:
            sparse.save_npz(os.path.join(output_directory, 'dtm.npz'), self.dtm.counts)
            pd.DataFrame({'term': self.dtm.vocabulary}).to_csv(
                os.path.join(output_directory, 'vocabulary.csv'), index_label='term_index')
            documents = self.aligned_documents_df.copy()
            documents.insert(0, 'source_index', self.dtm.document_indices)
            documents.drop(columns=[DocumentSchema.RAW_TEXT.colname]).to_csv(
                os.path.join(output_directory, 'documents.csv'), index_label='row')

        if self.topic_count_scan is not None:
            self.topic_count_scan.to_csv(os.path.join(output_directory, 'topic_count_scan.csv'))

        if self.topic_model is not None:
            pd.DataFrame(self.topic_model.theta).to_csv(
                os.path.join(output_directory, 'theta.csv'), index_label='row')
            pd.DataFrame(self.topic_model.beta, columns=self.dtm.vocabulary).to_csv(
                os.path.join(output_directory, 'beta.csv'), index_label='topic')
            write_pickle(os.path.join(output_directory, 'topic_model.pkl'), self.topic_model)

        if self.results is not None:
            self.results.time_aggregate.to_csv(os.path.join(output_directory, 'time_aggregate.csv'))
            self.results.top_terms.to_csv(os.path.join(output_directory, 'top_terms.csv'))
            write_json(os.path.join(output_directory, 'analysis.json'), self.results.to_dict())

        write_json(os.path.join(output_directory, 'metadata.json'), {
            'config': self.config,
            'status': self.get_status(),
            'model_params': self.topic_model.get_model_params() if self.topic_model is not None else None,
            'export_timestamp': dt.datetime.now().isoformat(),
        })
        self.logger.info("Results export completed")
        return self

    # ============================================================================
    # Utility methods
    # ============================================================================
    def _require_dtm(self):
        if self.dtm is None:
            raise ValueError("No document-term matrix available. Call build_document_term_matrix() first.")

    def _setup_logger(self) -> logging.Logger:
        """Setup default logger for topictrends operations."""
        logger = logging.getLogger('topictrends')
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(logging.INFO)
        return logger

    def get_status(self) -> dict:
        """Get current status of pipeline stages."""
        return {
            'documents_loaded': self.documents_df is not None,
            'text_preprocessed': self.token_sequences is not None,
            'dtm_built': self.dtm is not None,
            'topic_counts_scanned': self.topic_count_scan is not None,
            'model_fitted': self.topic_model is not None,
            'analyzed': self.results is not None,
            'num_documents': len(self.documents_df) if self.documents_df is not None else 0,
            'num_surviving_documents': self.dtm.n_documents if self.dtm is not None else 0,
            'vocabulary_size': self.dtm.n_terms if self.dtm is not None else 0,
            'num_topics': self.topic_model.n_topics if self.topic_model is not None else 0,
        }
