from relayq.core.brokers.memory import MemoryBroker
from relayq.core.brokers.postgres import PostgresBroker
from relayq.core.brokers.result_types import (
    BrokerErrorCode,
    BrokerOperationError,
)

__all__ = [
    'MemoryBroker',
    'PostgresBroker',
    'BrokerErrorCode',
    'BrokerOperationError',
]
