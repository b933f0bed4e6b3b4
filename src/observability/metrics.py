from prometheus_client import Counter, Histogram


class Metrics:
    def __init__(self):
        # api metrics
        self.recommendation_requests = Counter(
            "recommendation_requests_total",
            "Total recommendation requests",
            ["endpoint", "user_type"],
        )

        self.recommendation_fallback = Counter(
            "recommendation_fallback_total",
            "Fallbacks to a secondary recommendation policy",
            ["reason"],  # "cold_start", "guest", "degraded"
        )

        self.empty_results = Counter(
            "recommendation_empty_results_total",
            "Requests answered with an empty recommendation list",
            ["endpoint"],
        )

        self.cache_lookups = Counter(
            "recommendation_cache_lookups_total",
            "Redis response cache lookups",
            ["result"],  # "hit", "miss", "error"
        )

        # candidate sources
        self.source_failures = Counter(
            "recommendation_source_failures_total",
            "Candidate sources degraded to an empty list",
            ["source", "kind"],  # kind: "error" or "timeout"
        )

        self.source_duration = Histogram(
            "recommendation_source_duration_seconds",
            "Candidate source fetch latency",
            ["source"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        self.source_candidates = Histogram(
            "recommendation_source_candidates",
            "Number of candidates returned per source",
            ["source"],
            buckets=(0, 1, 5, 10, 25, 50, 100),
        )

        self.items_excluded_history = Counter(
            "items_excluded_history_total",
            "Products excluded from personalized candidates due to purchase history",
        )

        self.unresolved_products = Counter(
            "recommendation_unresolved_products_total",
            "Recommendations dropped because the product no longer resolves",
        )

        # store
        self.store_operation_duration = Histogram(
            "store_operation_duration_seconds",
            "Relational store operation latency",
            ["operation"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        # score maintenance
        self.score_updates = Counter(
            "popularity_score_updates_total",
            "Popularity score recomputations",
            ["status"],  # "updated", "failed", "missing"
        )

        self.score_batch_duration = Histogram(
            "popularity_score_batch_duration_seconds",
            "Duration of a full popularity score refresh",
            buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
        )

        # stream processor metrics
        self.events_processed = Counter(
            "activity_events_processed_total",
            "Activity events processed by the score refresher",
            ["activity_type"],
        )

        self.event_processing_duration = Histogram(
            "activity_event_processing_duration_seconds",
            "Activity event processing latency",
            ["activity_type"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
        )

        self.debounce_hits = Counter(
            "debounce_hits_total",
            "Score refreshes skipped due to debounce",
        )


# singleton instance
metrics = Metrics()


def setup_metrics(app):
    """
    setup prometheus metrics instrumentation for fastapi.
    it auto-instruments all http endpoints with request count/latency.
    """
    from prometheus_fastapi_instrumentator import Instrumentator

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=False,
        excluded_handlers=["/health/live", "/health/ready", "/metrics"],
    )

    instrumentator.instrument(app).expose(app, include_in_schema=False)
