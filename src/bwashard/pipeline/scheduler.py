"""In-process worker pool that runs one unit of work per partition.

Each unit is called with the result of its previous attempt (``None`` on
the first try) and returns a result object exposing ``retryable``. Units
whose result is retryable are submitted again until the attempt budget is
spent.
"""

import logging
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)


class WorkerPoolScheduler:
    def __init__(self, max_workers: int = 1, max_attempts: int = 1):
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_workers = max_workers
        self.max_attempts = max_attempts

    def run(self, units: Dict[Hashable, Callable[[Optional[object]], object]]) -> Dict[Hashable, object]:
        """Run every unit, retrying failures, and return the final result per key."""
        results = {}
        if not units:
            return results

        # threads are enough: each unit spends its time waiting on an external process
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="partition") as executor:
            pending = {executor.submit(unit, None): (key, 1) for key, unit in units.items()}
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    key, attempt = pending.pop(future)
                    result = future.result()
                    result.attempts = attempt
                    if result.retryable and attempt < self.max_attempts:
                        logger.warning(f"Unit {key} failed on attempt {attempt}/{self.max_attempts}, retrying")
                        pending[executor.submit(units[key], result)] = (key, attempt + 1)
                    else:
                        results[key] = result
        return results
