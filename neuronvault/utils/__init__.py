"""
NeuronVault Utils - Logging and redaction helpers.
"""

from neuronvault.utils.logger import get_session_logger, log_prefix, setup_logger
from neuronvault.utils.security import redact_sensitive_info

__all__ = [
    "get_session_logger",
    "log_prefix",
    "redact_sensitive_info",
    "setup_logger",
]
