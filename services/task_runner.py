"""Run sync jobs off the request thread.

Jobs are plain functions taking ids, never ORM objects, because they run in
their own application context with their own database session.
"""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from flask import Flask, current_app

EXTENSION_KEY = "sync_tasks"


class BackgroundTaskRunner:
    def __init__(self, app: Optional[Flask] = None):
        self.app: Optional[Flask] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self.run_inline = False
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.app = app
        self.run_inline = bool(app.config.get("SYNC_RUN_INLINE"))
        if not self.run_inline:
            self._executor = ThreadPoolExecutor(
                max_workers=int(app.config.get("SYNC_WORKERS", 4)),
                thread_name_prefix="sync",
            )
        app.extensions[EXTENSION_KEY] = self

    def _run(self, func: Callable, args, kwargs) -> None:
        try:
            func(*args, **kwargs)
        except Exception:
            logging.exception("Background job %s failed", getattr(func, "__name__", func))

    def _run_in_context(self, func: Callable, args, kwargs) -> None:
        with self.app.app_context():
            self._run(func, args, kwargs)

    def submit(self, func: Callable, *args, **kwargs) -> Optional[Future]:
        """Schedule ``func``. Inline mode runs it before returning."""
        if self.run_inline or self._executor is None:
            self._run(func, args, kwargs)
            return None
        return self._executor.submit(self._run_in_context, func, args, kwargs)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None


def get_task_runner() -> BackgroundTaskRunner:
    return current_app.extensions[EXTENSION_KEY]


def schedule(func: Callable, *args, **kwargs) -> Optional[Future]:
    return get_task_runner().submit(func, *args, **kwargs)
