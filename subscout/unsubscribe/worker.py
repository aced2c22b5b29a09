"""
Worker pool for background workflow processing.

Each user's due automated actions form one independent workflow. Workflows
for different users run concurrently on a thread pool; actions of one user
run one after another inside that user's workflow.
"""

import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import Config
from ..exceptions import ConflictError, InvalidStateError, NotFoundError
from ..logging import WorkflowLogger
from .confirmation import ConfirmationMonitor
from .orchestrator import UnsubscribeOrchestrator


class WorkflowWorkerPool:
    """Runs due executions and confirmation sweeps."""

    def __init__(self, orchestrator: UnsubscribeOrchestrator, monitor: ConfirmationMonitor,
                 max_workers: Optional[int] = None):
        self.orchestrator = orchestrator
        self.monitor = monitor
        self.max_workers = max_workers or Config.WORKER_COUNT
        self.log = WorkflowLogger('worker_pool')

    def run_due_actions(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Execute every automated action that is due, one workflow per user.

        Returns:
            Dict with counts: {'executed': int, 'skipped': int, 'errors': int}
        """
        now = now or datetime.now()
        workflows: Dict[int, List[int]] = defaultdict(list)
        for user_id, action_id in self.orchestrator.due_automated_actions(now):
            workflows[user_id].append(action_id)

        totals = {'executed': 0, 'skipped': 0, 'errors': 0}
        if not workflows:
            return totals

        self.log.info("Running due actions", {'users': len(workflows),
                                              'actions': sum(len(a) for a in workflows.values())})
        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix='subscout-workflow') as executor:
            futures = {
                executor.submit(self._run_user_workflow, user_id, action_ids, now): user_id
                for user_id, action_ids in workflows.items()
            }
            for future in as_completed(futures):
                try:
                    counts = future.result()
                except Exception as e:
                    self.log.log_exception(e, {'user_id': futures[future]})
                    totals['errors'] += 1
                    continue
                for key, value in counts.items():
                    totals[key] += value

        self.log.info("Due actions finished", totals)
        return totals

    def _run_user_workflow(self, user_id: int, action_ids: List[int], now: datetime) -> Dict[str, int]:
        counts = {'executed': 0, 'skipped': 0, 'errors': 0}
        for action_id in action_ids:
            try:
                self.orchestrator.execute(action_id, now=now)
                counts['executed'] += 1
            except (ConflictError, InvalidStateError, NotFoundError) as e:
                # Claimed elsewhere, already moved on, or the user was deleted
                self.log.debug("Skipping action", {'action_id': action_id, 'reason': str(e)})
                counts['skipped'] += 1
            except Exception as e:
                self.log.log_exception(e, {'user_id': user_id, 'action_id': action_id})
                counts['errors'] += 1
        return counts

    def run_cycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """One pass: execute due actions, then sweep confirmations."""
        now = now or datetime.now()
        executions = self.run_due_actions(now)
        sweep = self.monitor.sweep(now)
        return {'executions': executions, 'sweep': sweep.to_dict()}

    def run_forever(self, interval: Optional[float] = None,
                    stop_event: Optional[threading.Event] = None) -> None:
        """Run cycles until ``stop_event`` is set."""
        interval = interval if interval is not None else Config.SWEEP_INTERVAL
        stop_event = stop_event or threading.Event()
        self.log.info("Worker pool started", {'interval_seconds': interval, 'workers': self.max_workers})

        while not stop_event.is_set():
            try:
                executions = self.run_due_actions()
                self.monitor.sweep(stop_event=stop_event)
                self.log.debug("Cycle finished", executions)
            except Exception as e:
                self.log.log_exception(e, {'stage': 'cycle'})
            stop_event.wait(interval)

        self.log.info("Worker pool stopped")
