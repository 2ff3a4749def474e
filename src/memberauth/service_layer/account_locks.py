"""ABOUTME: Per-member serialisation of read-modify-write operations
ABOUTME: Provides striped in-process locks and a retry policy for optimistic version conflicts"""

import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_random

from memberauth.service_layer.exceptions import ConcurrentUpdateError

logger = logging.getLogger(__name__)

# A fixed arena of locks indexed by member id. Two members may share a stripe,
# which only costs some contention. Locks are re-entrant so nested holds for
# the same member from one thread do not deadlock.
STRIPES = 256
_locks = [threading.RLock() for _ in range(STRIPES)]


def _lock_for(member_id: uuid.UUID) -> threading.RLock:
    return _locks[member_id.int % STRIPES]


@contextmanager
def hold(member_id: uuid.UUID) -> Iterator[None]:
    """Serialise all changes to one member's row within this process.

    Across processes the row lock taken by `get_for_update` and the version
    column on the members table do the same job.
    """
    with _lock_for(member_id):
        yield


retry_on_conflict = retry(
    retry=retry_if_exception_type(ConcurrentUpdateError),
    stop=stop_after_attempt(3),
    wait=wait_random(min=0, max=0.05),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
