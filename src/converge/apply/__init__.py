"""Apply executor, retry policy and results."""

from .executor import ApplyExecutor
from .models import ApplyResult, ApplyStatus, OperationFailure, OperationRecord
from .retry import RetryPolicy, call_with_retry

__all__ = [
    "ApplyExecutor",
    "ApplyResult",
    "ApplyStatus",
    "OperationFailure",
    "OperationRecord",
    "RetryPolicy",
    "call_with_retry",
]
