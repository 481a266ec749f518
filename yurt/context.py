#!/usr/bin/env python3
"""Cancellation and deadlines shared by everything that polls or waits.

A Context is cancelled explicitly with cancel() or implicitly once its
deadline passes.  Children derived with with_timeout() or with_cancel() are
cancelled along with their parent, and never outlive its deadline.
A parent holds its children weakly and forgets them once they are
cancelled, so short-lived contexts derived from a long-lived one do not
pile up.
"""
import threading
import time
import weakref

from yurt.errors import Cancelled, DeadlineExceeded


class Context(object):
    def __init__(self, deadline=None, parent=None):
        if parent is not None and parent.deadline is not None:
            if deadline is None or parent.deadline < deadline:
                deadline = parent.deadline
        self.deadline = deadline
        self.parent = parent
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._children = weakref.WeakSet()
        if parent is not None:
            parent._add_child(self)

    @classmethod
    def background(cls):
        return cls()

    @classmethod
    def with_deadline_in(cls, seconds):
        return cls.background().with_timeout(seconds)

    def with_timeout(self, seconds):
        return Context(deadline=time.monotonic() + seconds, parent=self)

    def with_cancel(self):
        return Context(parent=self)

    def _add_child(self, child):
        with self._lock:
            self._children.add(child)
        if self._cancelled.is_set():
            child.cancel()

    def _remove_child(self, child):
        with self._lock:
            self._children.discard(child)

    def cancel(self):
        self._cancelled.set()
        with self._lock:
            children = list(self._children)
            self._children.clear()
        for child in children:
            child.cancel()
        if self.parent is not None:
            self.parent._remove_child(self)

    def remaining(self):
        """Seconds left before the deadline, or None if there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def err(self):
        if self._cancelled.is_set():
            return Cancelled()
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return DeadlineExceeded()
        return None

    def done(self):
        return self.err() is not None

    def sleep(self, seconds):
        """Sleeps for up to 'seconds', waking early on cancellation or deadline.

        Returns True if the context is still live afterwards.
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._cancelled.wait(seconds)
        return not self.done()

    def __enter__(self):
        return self

    def __exit__(self, type_, value, traceback):
        self.cancel()
