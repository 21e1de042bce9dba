from .config import TranscribeConfig, load_config
from .outcome_cache import InMemoryOutcomeCache

__all__ = ["TranscribeConfig", "load_config", "InMemoryOutcomeCache"]
