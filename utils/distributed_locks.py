"""
Cross-process mutual exclusion on top of the Django cache.

Locks are plain cache entries created with ``cache.add`` (``SET NX`` on
Redis), so every worker sharing the cache sees the same lock. The stored
value identifies the holder; only that holder may delete the entry, and
the entry expires on its own if the holder dies mid-operation.
"""

import logging
import time
import uuid
from contextlib import contextmanager

from django.core.cache import cache

logger = logging.getLogger(__name__)

KEY_PREFIX = "lock"


class DistributedLock:
    """
    A named lock held in the shared cache.

    Args:
        key (str): Name of the protected resource
        expires (int): Seconds before an abandoned lock is dropped by the cache
        timeout (float): Seconds ``acquire`` may spend waiting; zero tries once
        poll_interval (float): Seconds between attempts while waiting
        owner (str): Label stored with the lock, reported to waiters
    """

    def __init__(self, key, expires=60, timeout=10, poll_interval=0.1, owner=None):
        self.key = f"{KEY_PREFIX}:{key}"
        self.expires = expires
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.value = f"{owner or 'anonymous'}/{uuid.uuid4().hex}"

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()

    def acquire(self):
        """Take the lock, waiting up to ``timeout`` seconds. Returns success."""
        give_up_at = time.monotonic() + max(self.timeout, 0)

        while not cache.add(self.key, self.value, self.expires):
            left = give_up_at - time.monotonic()
            if left <= 0:
                logger.warning(
                    f"Could not take {self.key} within {self.timeout}s, held by {self.holder()}"
                )
                return False
            time.sleep(min(self.poll_interval, left))

        logger.debug(f"Took {self.key} as {self.value}")
        return True

    def release(self):
        """Drop the lock if this instance still holds it. Returns success."""
        if not self.owned():
            logger.warning(f"Not releasing {self.key}: held by {self.holder()}")
            return False

        cache.delete(self.key)
        logger.debug(f"Released {self.key}")
        return True

    def owned(self):
        return cache.get(self.key) == self.value

    def holder(self):
        """Owner label of the current holder, or None when the lock is free"""
        value = cache.get(self.key)
        if value is None:
            return None
        return value.rsplit("/", 1)[0]


@contextmanager
def distributed_lock(key, expires=60, timeout=10, poll_interval=0.1, owner=None):
    """
    Hold ``key`` for the duration of the block.

    Yields whether the lock was taken; the block decides what to do when it
    was not. A lock that was taken is released on exit, including on error.
    """
    lock = DistributedLock(key, expires, timeout, poll_interval, owner)
    acquired = lock.acquire()
    try:
        yield acquired
    finally:
        if acquired:
            lock.release()
