# topictrends/__init__.py
import importlib
from types import ModuleType

__version__ = "1.0.0"

__all__ = [
    "core",
    "errors",
    "dataframe_schema",
    "text_preprocessing",
    "vocabulary",
    "gibbs_lda",
    "model_evaluation",
    "topic_count_advisor",
    "topic_analytics",
    "__version__",
]

# Map attribute -> submodule for lazy loading
_lazy_submodules = {
    "core": "topictrends.core",
    "errors": "topictrends.errors",
    "dataframe_schema": "topictrends.dataframe_schema",
    "text_preprocessing": "topictrends.text_preprocessing",
    "vocabulary": "topictrends.vocabulary",
    "gibbs_lda": "topictrends.gibbs_lda",
    "model_evaluation": "topictrends.model_evaluation",
    "topic_count_advisor": "topictrends.topic_count_advisor",
    "topic_analytics": "topictrends.topic_analytics",
}

def __getattr__(name: str) -> ModuleType:
    if name in _lazy_submodules:
        module = importlib.import_module(_lazy_submodules[name])
        globals()[name] = module  # cache for future
        return module
    raise AttributeError(f"module 'topictrends' has no attribute '{name}'")

def __dir__():
    return sorted(list(globals().keys()) + list(_lazy_submodules.keys()))
