"""relayq - async task runtime with an anonymous secret-messaging relay built on it"""

# Install Rust-style error handler on import
from .core.errors import install_error_handler as _install_error_handler

_install_error_handler()

from .core.brokers.memory import MemoryBroker
from .core.brokers.postgres import PostgresBroker
from .core.brokers.result_types import BrokerErrorCode, BrokerOperationError
from .core.errors import (
    ConfigurationError,
    ErrorCode,
    MultipleValidationErrors,
    RegistryError,
    UsecaseError,
    UsecaseErrorKind,
    ValidationReport,
)
from .core.models.broker import BrokerConfig, PostgresConfig
from .core.models.config import RelayqConfig
from .core.models.kinds import TaskKind
from .core.models.policy import PolicyTable, TaskPolicy
from .core.queue import TaskQueue
from .core.registry.handlers import HandlerRegistry
from .core.scheduler import Scheduler
from .core.types.status import Lane, TaskStatus
from .core.worker.config import WorkerConfig
from .core.worker.context import TaskContext
from .core.worker.worker import Worker

__all__ = [
    # Runtime
    'TaskQueue',
    'Worker',
    'WorkerConfig',
    'TaskContext',
    'Scheduler',
    'HandlerRegistry',
    # Brokers
    'MemoryBroker',
    'PostgresBroker',
    'BrokerErrorCode',
    'BrokerOperationError',
    # Models
    'RelayqConfig',
    'BrokerConfig',
    'PostgresConfig',
    'TaskKind',
    'TaskPolicy',
    'PolicyTable',
    'Lane',
    'TaskStatus',
    # Errors
    'ConfigurationError',
    'RegistryError',
    'ErrorCode',
    'ValidationReport',
    'MultipleValidationErrors',
    'UsecaseError',
    'UsecaseErrorKind',
]
