"""Token accounting and conversation compaction for long AI transcripts."""

from importlib.metadata import version as _v

from .config import CompactionConfig, ModelPricing, ModelTables, load_config
from .exceptions import ConfigurationError, InputShapeError, MicrocompactError
from .models import Message, coerce_messages
from .services.microcompaction import CompactionResult, MicrocompactionManager, apply_microcompaction
from .services.token_estimator import TokenEstimator, estimate_messages_token_count, estimate_token_count
from .services.usage_tracker import UsageTracker

try:
    __version__ = _v("microcompact")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "CompactionConfig",
    "CompactionResult",
    "ConfigurationError",
    "InputShapeError",
    "Message",
    "MicrocompactError",
    "MicrocompactionManager",
    "ModelPricing",
    "ModelTables",
    "TokenEstimator",
    "UsageTracker",
    "apply_microcompaction",
    "coerce_messages",
    "estimate_messages_token_count",
    "estimate_token_count",
    "load_config",
]
