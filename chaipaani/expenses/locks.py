import threading
import zlib
from contextlib import contextmanager

from django.db import connection, transaction

_registry_guard = threading.Lock()
_process_locks = {}


def lock_key(*parts):
    return ':'.join(str(part) for part in parts)


def _acquire_entry(key):
    with _registry_guard:
        entry = _process_locks.get(key)
        if entry is None:
            entry = _process_locks[key] = [threading.Lock(), 0]
        entry[1] += 1
        return entry


def _release_entry(key, entry):
    with _registry_guard:
        entry[1] -= 1
        if not entry[1]:
            del _process_locks[key]


@contextmanager
def process_lock(key):
    """
    Mutex shared by every thread of this process that uses the same key.

    A key is registered only while some thread holds or waits on it.
    """
    entry = _acquire_entry(key)
    try:
        with entry[0]:
            yield
    finally:
        _release_entry(key, entry)


def advisory_key(key):
    """Signed 64-bit id for ``pg_advisory_xact_lock`` derived from ``key``."""
    digest = zlib.crc32(key.encode('utf-8'))
    value = (digest << 32) | zlib.adler32(key.encode('utf-8'))
    if value >= 2 ** 63:
        value -= 2 ** 64
    return value


@contextmanager
def advisory_lock(*parts):
    """
    Open a transaction that holds an exclusive lock on the tuple ``parts``.

    On PostgreSQL this is a transaction-scoped advisory lock, released at
    commit or rollback, so it serializes callers across processes and
    nodes. Within one process the same key also goes through a local mutex,
    which is the only guarantee on stores without advisory locks.
    """
    key = lock_key(*parts)
    with process_lock(key):
        with transaction.atomic():
            if connection.vendor == 'postgresql':
                with connection.cursor() as cursor:
                    cursor.execute('SELECT pg_advisory_xact_lock(%s)', [advisory_key(key)])
            yield key
