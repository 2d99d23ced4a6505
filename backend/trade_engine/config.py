"""
Application configuration.
Loads settings from environment variables with sensible defaults.

Every fraud threshold below is a tunable heuristic, not a ground truth.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration for the Trade Engine."""

    # ── Application ─────────────────────────────────────────
    APP_NAME: str = "Trade Engine & Trade-Network Fraud Analysis"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # ── Neo4j ───────────────────────────────────────────────
    NEO4J_URI: str = "bolt://localhost:7687"
    NEO4J_USER: str = "neo4j"
    NEO4J_PASSWORD: str = "password123"
    NEO4J_DATABASE: str = "neo4j"
    NEO4J_MAX_POOL_SIZE: int = 50

    # ── Redis ───────────────────────────────────────────────
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_TRADE_EVENTS_CHANNEL: str = "trade_events"

    # ── Trade sessions & locks ──────────────────────────────
    TRADE_SESSION_TTL_SEC: int = 420
    TRADE_TERMINAL_RETENTION_SEC: int = 300
    TRADE_LOCK_TTL_SEC: int = 420
    TRADE_OP_LOCK_TTL_SEC: int = 30
    TRADE_PROCESSING_CLAIM_TTL_SEC: int = 120

    # ── Trade value ─────────────────────────────────────────
    CURRENCY_UNIT_VALUE: float = 1.0
    TOKEN_UNIT_VALUE: float = 1000.0
    DEFAULT_ASSET_VALUE: float = 1000.0

    # ── Graph caches ────────────────────────────────────────
    DEFAULT_WINDOW_DAYS: int = 30
    NETWORK_CACHE_TTL_SEC: int = 6 * 3600
    USER_NETWORK_CACHE_TTL_SEC: int = 3600
    PATTERN_CACHE_TTL_SEC: int = 2 * 3600

    # ── Shared detection parameters ─────────────────────────
    RISKY_EDGE_THRESHOLD: float = 0.3
    NEW_ACCOUNT_DAYS: float = 30.0
    SUSPICIOUS_EDGE_THRESHOLD: float = 0.6

    # Funnel (many sources → one sink)
    FUNNEL_MIN_SOURCES: int = 3
    FUNNEL_SUSPICION_THRESHOLD: float = 0.7
    FUNNEL_HIGH_TOTAL_VALUE: float = 500_000.0
    FUNNEL_MANY_SOURCES: int = 5
    FUNNEL_SMALL_AVERAGE_VALUE: float = 50_000.0
    FUNNEL_NEW_SOURCE_SHARE: float = 0.5
    FUNNEL_IMBALANCE_RATIO: float = 3.0
    FUNNEL_IMBALANCED_EDGE_SHARE: float = 0.7

    # Account clusters
    CLUSTER_MIN_SIZE: int = 3
    CLUSTER_SUSPICION_THRESHOLD: float = 0.6
    CLUSTER_CREATION_WINDOW_DAYS: float = 7.0
    CLUSTER_INTERNAL_RATIO: float = 0.8
    CLUSTER_TIMING_MIN_SAMPLES: int = 4
    CLUSTER_TIMING_CV: float = 0.2
    CLUSTER_NEW_MEMBER_SHARE: float = 0.5

    # Circular flows
    CIRCULAR_MAX_PATH_LENGTH: int = 5
    CIRCULAR_SUSPICION_THRESHOLD: float = 0.8
    CIRCULAR_RAPID_HOURS: float = 24.0
    CIRCULAR_HIGH_TOTAL_VALUE: float = 100_000.0
    CIRCULAR_NEW_MEMBER_SHARE: float = 0.5
    CIRCULAR_IMBALANCE_RATIO: float = 3.0

    # ── Relationship risk heuristic ─────────────────────────
    REL_WEIGHT_IMBALANCE: float = 0.4
    REL_WEIGHT_FREQUENCY: float = 0.3
    REL_WEIGHT_ACCOUNT_AGE: float = 0.3
    REL_IMBALANCE_SATURATION: float = 5.0
    REL_HIGH_FREQUENCY_PER_DAY: float = 10.0
    REL_VERY_NEW_ACCOUNT_DAYS: float = 7.0
    REL_FAVORING_MULTIPLIER: float = 1.5
    ALT_CREATION_WINDOW_DAYS: float = 7.0
    RMT_VALUE_THRESHOLD: float = 500_000.0
    RMT_IMBALANCE_RATIO: float = 5.0
    NEWBIE_IMBALANCE_RATIO: float = 3.0

    # ── Fraud gate ──────────────────────────────────────────
    FRAUD_BLOCK_THRESHOLD: float = 0.6
    FRAUD_GATE_NETWORK_CHECK: bool = True
    FRAUD_GATE_HOPS: int = 2
    FRAUD_GATE_WINDOW_DAYS: int = 30

    model_config = {"env_file": ".env", "case_sensitive": True}


settings = Settings()
