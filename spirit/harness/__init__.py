"""Agent harness — runtime infrastructure shared by the model client and tools."""
from spirit.harness.retry import RetryConfig, compute_delay, is_retryable_error, with_retries

__all__ = ["RetryConfig", "compute_delay", "is_retryable_error", "with_retries"]
