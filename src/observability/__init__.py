from src.observability.metrics import metrics, setup_metrics
from src.observability.tracing import setup_tracing, shutdown_tracing, store_span

__all__ = ["metrics", "setup_metrics", "setup_tracing", "shutdown_tracing", "store_span"]
