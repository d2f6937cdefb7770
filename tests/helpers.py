"""Test doubles and small utilities shared by the unit tests."""

import os
import threading
import time

from backupd.backup.compression import Archiver


class RecordingArchiver(Archiver):
    """
    Archiver that writes a small placeholder file and records every call.

    Tracks how many archive() calls overlap so tests can assert cycles never
    run concurrently. When ``block`` is True each call waits until
    ``release`` is set.
    """

    extension = 'zip'

    def __init__(self, block: bool = False, fail: bool = False):
        self.block = block
        self.fail = fail
        self.calls = []
        self.started = threading.Event()
        self.release = threading.Event()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _write(self, source, dest_path, compression_level):
        with self._lock:
            self.calls.append(dest_path)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.started.set()
            if self.block:
                self.release.wait(30)
            if self.fail:
                # Leave a partial file behind to check cleanup
                with open(dest_path, 'wb') as f:
                    f.write(b'partial')
                raise OSError("disk full")
            with open(dest_path, 'wb') as f:
                f.write(b'archive data')
        finally:
            with self._lock:
                self.active -= 1


def wait_for(predicate, timeout=10.0, interval=0.02):
    """Poll predicate until it is true or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def seed_archive(directory, name, age_seconds, now=None, content=b'old backup'):
    """Create a file whose modification time is age_seconds before now."""
    now = time.time() if now is None else now
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(str(directory), name)
    with open(path, 'wb') as f:
        f.write(content)
    mtime = now - age_seconds
    os.utime(path, (mtime, mtime))
    return path
