"""
SigKit Configuration - Centralized settings for player script deciphering
"""
import logging
import os


class SigKitConfig:
    """Configuration with production defaults"""

    # === Network Resilience ===
    CONNECT_TIMEOUT = 10.0  # seconds
    READ_TIMEOUT = 30.0
    TOTAL_TIMEOUT = 60.0
    MAX_RETRIES = 3
    RETRY_BACKOFF_BASE = 2.0  # exponential backoff multiplier
    RETRY_JITTER_MAX = 1.0  # random jitter to prevent thundering herd

    # === Circuit Breaker ===
    CIRCUIT_BREAKER_THRESHOLD = 5  # failures before opening circuit
    CIRCUIT_BREAKER_TIMEOUT = 60.0  # seconds before attempting reset
    CIRCUIT_BREAKER_RECOVERY_THRESHOLD = 2  # successes to close circuit

    # === Player Script Cache ===
    PLAYER_CACHE_TTL = float(os.getenv("SIGKIT_PLAYER_CACHE_TTL", "3600"))
    PLAYER_CACHE_SIZE = int(os.getenv("SIGKIT_PLAYER_CACHE_SIZE", "10"))

    # === JS Execution ===
    JS_EXECUTION_TIMEOUT = float(os.getenv("SIGKIT_JS_TIMEOUT", "10.0"))
    MAX_JS_WORKERS = 2  # Duktape worker processes, also sizes the resolve thread pool
    JS_WORKER_START_TIMEOUT = 30.0  # seconds for a worker process to come up

    # Argument names the compiled snippets are invoked with
    DECIPHER_ARGUMENT = "sig"
    N_ARGUMENT = "ncode"

    # === TLS Fingerprints ===
    DEFAULT_IMPERSONATION = "chrome120"
    TLS_IMPERSONATIONS = [
        "chrome120",
        "chrome119",
        "safari17_0",
        "safari17_2"
    ]

    # === Logging ===
    LOG_LEVEL = os.getenv("SIGKIT_LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    @classmethod
    def configure_logging(cls, level=None):
        """Configure root logging once for applications embedding SigKit"""
        logging.basicConfig(
            level=(level or cls.LOG_LEVEL).upper(),
            format=cls.LOG_FORMAT
        )
