"""
Job registry for the watch service.

Tracks the lifecycle of every playlist identity seen during this run:

    DISCOVERED ─► PROCESSING ─► PROCESSED
                      │
                      └───────► FAILED

PROCESSED and FAILED are terminal: a terminal identity is never admitted
again. At most one identity is PROCESSING at any time, across the whole
service.

All state changes go through a single lock. try_admit() performs the
"is anything running / has this been done" check and the transition to
PROCESSING as one step, so concurrent discovery paths (filesystem events on
the observer thread, periodic scans on the event loop) cannot both start
the same playlist or two playlists at once.
"""

import threading
from enum import Enum
from pathlib import Path


class JobState(Enum):
    DISCOVERED = "discovered"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class Admission(Enum):
    """Answer of JobRegistry.try_admit()."""
    ADMITTED = "admitted"
    ALREADY_ACTIVE = "already_active"
    ALREADY_DONE = "already_done"
    BUSY = "busy"


TERMINAL_STATES = {JobState.PROCESSED, JobState.FAILED}


class JobRegistry:
    """
    Thread-safe identity -> JobState map with atomic admission.

    Example:
        registry = JobRegistry()
        if registry.try_admit(path) is Admission.ADMITTED:
            try:
                ok = process(path)
            finally:
                registry.complete(path, ok)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[Path, JobState] = {}

    def discover(self, identity: Path) -> bool:
        """
        Record an identity as DISCOVERED if it is new.

        Returns:
            True if the identity was not known before.
        """
        with self._lock:
            if identity in self._states:
                return False
            self._states[identity] = JobState.DISCOVERED
            return True

    def try_admit(self, identity: Path) -> Admission:
        """
        Atomically move an identity to PROCESSING if nothing forbids it.

        Returns:
            ADMITTED        the caller now owns the identity and must call
                            complete() or release()
            ALREADY_ACTIVE  this identity is being processed
            ALREADY_DONE    this identity reached a terminal state
            BUSY            another identity is being processed; this one
                            stays DISCOVERED for a later attempt
        """
        with self._lock:
            state = self._states.get(identity)
            if state is JobState.PROCESSING:
                return Admission.ALREADY_ACTIVE
            if state in TERMINAL_STATES:
                return Admission.ALREADY_DONE
            if any(s is JobState.PROCESSING for s in self._states.values()):
                self._states[identity] = JobState.DISCOVERED
                return Admission.BUSY
            self._states[identity] = JobState.PROCESSING
            return Admission.ADMITTED

    def complete(self, identity: Path, succeeded: bool) -> None:
        """Mark a PROCESSING identity as PROCESSED or FAILED."""
        with self._lock:
            if self._states.get(identity) is not JobState.PROCESSING:
                raise ValueError(f"{identity} is not being processed")
            self._states[identity] = JobState.PROCESSED if succeeded else JobState.FAILED

    def release(self, identity: Path) -> None:
        """
        Return a PROCESSING identity to DISCOVERED without a verdict.

        Used when the playlist vanished before it could be read.
        """
        with self._lock:
            if self._states.get(identity) is JobState.PROCESSING:
                self._states[identity] = JobState.DISCOVERED

    def state_of(self, identity: Path) -> JobState | None:
        with self._lock:
            return self._states.get(identity)

    def processing_count(self) -> int:
        with self._lock:
            return sum(1 for s in self._states.values() if s is JobState.PROCESSING)

    def counts(self) -> dict[JobState, int]:
        """Number of identities per state."""
        with self._lock:
            counts = {state: 0 for state in JobState}
            for state in self._states.values():
                counts[state] += 1
            return counts
