from functools import lru_cache

from app.settings import get_settings
from sqlgrep.pipeline import Pipeline
from sqlgrep.pipeline_factory import pipeline_from_settings


@lru_cache()
def get_pipeline() -> Pipeline:
    """
    Singleton-ish Pipeline for the FastAPI app.

    Uses centralized Settings so configuration (and the YAML BaseConfig) is
    loaded once and injected.
    """
    return pipeline_from_settings(get_settings())
