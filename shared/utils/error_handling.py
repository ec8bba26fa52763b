"""
Error handling helpers shared by the pipeline stages

Stages accumulate failures as one-line strings on their result objects
(describe_error); the decorator and context manager below cover the places
where a whole operation may fail and the caller should carry on.
"""
import functools
from typing import Callable, Any, Optional, Type, Union
from shared.exceptions import BlockCollectorError
from shared.utils.logging import get_logger
from shared.utils.metrics import get_metrics

logger = get_logger(__name__)


def describe_error(error: Exception) -> str:
    """One-line, human-readable form of an error for per-run error lists"""
    message = str(error) or type(error).__name__
    if isinstance(error, BlockCollectorError) and error.details:
        context = ", ".join(f"{k}={v}" for k, v in sorted(error.details.items()))
        return f"{message} ({context})"
    return message


def handle_errors(
    default_return: Any = None,
    exceptions: Union[Type[Exception], tuple] = Exception,
    reraise_as: Optional[Type[BlockCollectorError]] = None,
    stage: Optional[str] = None,
    log_error: bool = True
):
    """
    Decorator that turns a failing call into a logged default return

    Args:
        default_return: Value to return if an error occurs
        exceptions: Exception types to catch
        reraise_as: Application error type to raise instead, chained to the original
        stage: Pipeline stage label for the error counter
        log_error: Whether to log the error
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except exceptions as e:
                if stage:
                    get_metrics().record_error(stage)
                if log_error:
                    logger.error(f"Error in {func.__name__}: {describe_error(e)}", exc_info=True)
                if reraise_as:
                    raise reraise_as(f"Error in {func.__name__}: {e}") from e
                return default_return
        return wrapper
    return decorator


class ErrorHandler:
    """
    Context manager around one unit of work

    The caught exception is kept on ``error`` so the caller can record it on
    its result after the block.
    """

    def __init__(
        self,
        operation_name: str,
        reraise_as: Optional[Type[BlockCollectorError]] = None,
        suppress_errors: bool = False,
        stage: Optional[str] = None,
        log_errors: bool = True
    ):
        self.operation_name = operation_name
        self.reraise_as = reraise_as
        self.suppress_errors = suppress_errors
        self.stage = stage
        self.log_errors = log_errors
        self.error = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            return False

        self.error = exc_val
        if self.stage:
            get_metrics().record_error(self.stage)
        if self.log_errors:
            logger.error(f"Error in {self.operation_name}: {describe_error(exc_val)}", exc_info=True)
        if self.reraise_as:
            raise self.reraise_as(f"Error in {self.operation_name}: {exc_val}") from exc_val
        return self.suppress_errors
