from .logger import FreshnessJSONFormatter, PhaseTimer, setup_structured_logging

__all__ = ["FreshnessJSONFormatter", "PhaseTimer", "setup_structured_logging"]
