"""
NeuronVault Configuration Constants.

Centralized constants for timeouts, limits, and other magic values.
"""

# Transport defaults
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8080
WS_PATH = "/ws"
WS_SUBPROTOCOL = "neuronvault-protocol"
CLIENT_USER_AGENT = "NeuronVault-Engine"
CONNECT_TIMEOUT_SECONDS = 10.0
PROBE_INTERVAL_SECONDS = 2.0
PROBE_TIMEOUT_SECONDS = 5.0

# Reconnection backoff
RECONNECT_MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_SECONDS = 30.0

# Latency ring buffer and quality tiers (upper bounds, milliseconds)
LATENCY_WINDOW_SIZE = 10
LATENCY_TIER_THRESHOLDS_MS = {
    "excellent": 50.0,
    "good": 150.0,
    "fair": 300.0,
    "poor": 1000.0,
}

# Orchestration
CALL_TIMEOUT_SECONDS = 30.0
RUN_TIMEOUT_SECONDS = 120.0
RUN_HISTORY_LIMIT = 50
DEFAULT_MODEL_WEIGHT = 1.0
DEFAULT_RESULT_CONFIDENCE = 0.8

# Model health (exponential moving average)
HEALTH_EMA_ALPHA = 0.3
HEALTHY_THRESHOLD = 0.8
DEGRADED_THRESHOLD = 0.5
LATENCY_PENALTY_REFERENCE_MS = 5000.0

# Athena
AUTO_APPLY_THRESHOLD = 0.8
MARGINAL_GAIN_CUTOFF = 0.12
MAX_RECOMMENDED_MODELS = 4
PERFORMANCE_BLEND = 0.3  # Share of learned performance in a model's score
RECOMMENDATION_HISTORY_LIMIT = 50
RECENT_CATEGORIES_LIMIT = 20
PERFORMANCE_HISTORY_LIMIT = 100
STRATEGY_SUCCESS_QUALITY = 0.7  # Quality score above which a run counts as success
ENSEMBLE_REDUNDANCY = 0.7  # How much a further model repeats what the selected ones cover
STRATEGY_MIN_SAMPLES = 5  # Runs needed before history can override the strategy table

# Synthesis
CONSENSUS_SIMILARITY_THRESHOLD = 0.35
SUMMARY_SENTENCES = 2

# Decision trace
TRACE_CAPACITY = 500
