"""Consecutive short-call drop detection for the Ringba reporting API."""

from .configuration import ConfigurationError, load_runtime_config  # noqa: F401
from .models import CallRecord, DropBatch, RunStatus, RunSummary, RuntimeConfig  # noqa: F401
