"""Run independent overlay/recover jobs (e.g. one per election year) in parallel processes."""

import concurrent.futures
import logging
import time
from typing import Any, Callable, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

Job = Union[dict, tuple]


def _call(fn: Callable, job: Job):
    if isinstance(job, dict):
        return fn(**job)
    return fn(*job)


def run_jobs(fn: Callable, jobs: Sequence[Job], max_workers: Optional[int] = None) -> List[Any]:
    """
    Call ``fn`` once per job and return the results in job order.

    A dict job is passed as keyword arguments, a tuple as positional ones.
    ``fn`` and the jobs must be picklable. With ``max_workers=1`` the jobs
    run one after another in this process. The first failing job's
    exception is re-raised once the pool has shut down.
    """
    jobs = list(jobs)
    t0 = time.time()
    if max_workers == 1 or len(jobs) <= 1:
        results = [_call(fn, job) for job in jobs]
        logger.info(f"Ran {len(jobs)} jobs in {time.time() - t0:.1f}s")
        return results

    results: List[Any] = [None] * len(jobs)
    errors = {}
    with concurrent.futures.ProcessPoolExecutor(max_workers=max_workers) as executor:
        future_to_idx = {
            executor.submit(_call, fn, job): i for i, job in enumerate(jobs)
        }
        for future in concurrent.futures.as_completed(future_to_idx):
            idx = future_to_idx[future]
            try:
                results[idx] = future.result()
            except Exception as e:
                logger.error(f"Job {idx} failed: {e}")
                errors[idx] = e

    if errors:
        raise errors[min(errors)]
    logger.info(f"Ran {len(jobs)} jobs in {time.time() - t0:.1f}s")
    return results
