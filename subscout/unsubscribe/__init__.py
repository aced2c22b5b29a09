"""
Unsubscribe workflow: strategies, the orchestrator state machine,
confirmation monitoring and the background worker pool.
"""

from .capability import CancellationCapability, HttpCancellationCapability
from .confirmation import ConfirmationMonitor, ConfirmationSource, InboxConfirmationSource
from .orchestrator import UnsubscribeOrchestrator
from .strategies import UnsubscribeStrategy, get_strategy
from .worker import WorkflowWorkerPool

__all__ = [
    'CancellationCapability',
    'HttpCancellationCapability',
    'ConfirmationMonitor',
    'ConfirmationSource',
    'InboxConfirmationSource',
    'UnsubscribeOrchestrator',
    'UnsubscribeStrategy',
    'get_strategy',
    'WorkflowWorkerPool',
]
