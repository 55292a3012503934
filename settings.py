"""
Configuration for the PulsePoint project.
"""

# Model configuration
CLASSIFICATION_MODEL = "claude-haiku-4-5-20251001"  # Single-label classification over a closed set, a small model is enough
SENTIMENT_MODEL = "distilbert/distilbert-base-uncased-finetuned-sst-2-english"  # Binary POSITIVE/NEGATIVE polarity model
SENTIMENT_API_URL = "https://router.huggingface.co/hf-inference/models/{model}"
SENTIMENT_TIMEOUT = 30.0  # seconds

# Storage (defaults, can be overridden via CLI)
DEFAULT_DB_FILE = "feedback.db"
DASHBOARD_LIMIT = 50

# Pipeline retry budget, applied to each step independently
MAX_ATTEMPTS = 3
RETRY_INITIAL_INTERVAL = 1.0  # seconds before the second attempt
RETRY_BACKOFF_FACTOR = 2.0
RETRY_MAX_INTERVAL = 30.0
WORKER_CONCURRENCY = 4

# Triage thresholds. The summary tile and the per-row tier use different cuts.
CRITICAL_TIER_THRESHOLD = 0.4  # Bugs/Billing below this are CRITICAL, otherwise HIGH
FEATURE_REQUEST_MEDIUM_THRESHOLD = 0.3  # FeatureRequests below this are MEDIUM
SUMMARY_CRITICAL_THRESHOLD = 0.3  # "Critical Incidents" tile, any category

# HTTP server
API_HOST = "127.0.0.1"
API_PORT = 8787
