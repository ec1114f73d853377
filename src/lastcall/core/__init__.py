"""Core infrastructure - config, logging, lifecycle, errors, tasks."""

from lastcall.core.config import ConfigManager
from lastcall.core.errors import (
    AllEndpointsFailedError,
    ClaimInProgressError,
    DuplicateTradeError,
    ErrorCategory,
    InsufficientBalanceError,
    LastCallError,
    MissingOrderIdError,
    NetworkError,
    NothingToRedeemError,
    OperationInProgressError,
    OrderRejectedError,
    OrderTooSmallError,
    RateLimitError,
    ReadOnlyModeError,
    RedemptionFailedError,
    ScanInProgressError,
    StopLossInProgressError,
    TransientError,
    retry_transient,
)
from lastcall.core.lifecycle import BaseComponent, ComponentHealth
from lastcall.core.logging import setup_logging
from lastcall.core.tasks import BackgroundTasks, PeriodicTask, TaskRecord, TaskState

__all__ = [
    # Config
    "ConfigManager",
    # Logging
    "setup_logging",
    # Lifecycle
    "BaseComponent",
    "ComponentHealth",
    # Tasks
    "BackgroundTasks",
    "PeriodicTask",
    "TaskRecord",
    "TaskState",
    # Errors
    "ErrorCategory",
    "LastCallError",
    "TransientError",
    "NetworkError",
    "RateLimitError",
    "AllEndpointsFailedError",
    "OrderTooSmallError",
    "OrderRejectedError",
    "InsufficientBalanceError",
    "NothingToRedeemError",
    "RedemptionFailedError",
    "ReadOnlyModeError",
    "DuplicateTradeError",
    "MissingOrderIdError",
    "OperationInProgressError",
    "ScanInProgressError",
    "ClaimInProgressError",
    "StopLossInProgressError",
    "retry_transient",
]
