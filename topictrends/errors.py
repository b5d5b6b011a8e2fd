"""
Exception types raised by the topictrends pipeline.

Validation failures also derive from ValueError so callers that already catch
ValueError for bad arguments keep working.
"""


class TopicTrendsError(Exception):
    """Base class for all topictrends errors."""


class ConfigurationError(TopicTrendsError, ValueError):
    """A configuration value is missing or outside its valid range."""


class EmptyCorpusError(TopicTrendsError, ValueError):
    """No documents or no vocabulary terms survive preprocessing and pruning."""


class InvalidTopicCountError(TopicTrendsError, ValueError):
    """The requested number of topics is outside [2, number of distinct terms]."""


class InvalidThresholdError(TopicTrendsError, ValueError):
    """A document filter threshold lies outside [0, 1]."""


class DimensionMismatchError(TopicTrendsError):
    """theta, beta or a document-indexed array disagrees with the DTM shape.

    This always signals a broken internal invariant and is never recovered from.
    """


class InferenceCancelledError(TopicTrendsError):
    """A Gibbs sampling run was stopped by its caller between sweeps."""

    def __init__(self, completed_sweeps, total_sweeps):
        self.completed_sweeps = completed_sweeps
        self.total_sweeps = total_sweeps
        super().__init__(
            f"Inference cancelled after {completed_sweeps} of {total_sweeps} sweeps"
        )
