# Overview: Background, coalescing trigger for the ranking rebuild; runs after stock commits.

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable

from flask import Flask, current_app


class _RefreshState:
    """Per-app refresher bookkeeping, kept in app.extensions."""

    def __init__(self):
        self.lock = threading.Lock()
        self.running = False
        self.pending = False
        self.idle = threading.Event()
        self.idle.set()
        self.listeners: list[Callable[[datetime], None]] = []
        self.last_refreshed_at: datetime | None = None
        self.last_error: Exception | None = None


class RankingRefresher:
    """
    Keeps the ranking aggregates eventually consistent with the ledger.

    - trigger() never blocks the caller and never raises refresh failures.
    - While a rebuild is running, further triggers collapse into one follow-up
      rebuild (the rebuild reads the whole ledger, so one pass covers them all).
    - Failures are logged; the aggregates stay stale until the next trigger.
    - With RANKING_REFRESH_ASYNC = False the rebuild runs inline after commit.
    """

    extension_key = "ranking_refresher"

    def __init__(self, app: Flask | None = None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.extensions[self.extension_key] = _RefreshState()

    def _state(self, app: Flask | None = None) -> _RefreshState:
        app = app or current_app._get_current_object()
        return app.extensions[self.extension_key]

    def add_listener(self, listener: Callable[[datetime], None]) -> None:
        """Register a callback receiving the completion time of every successful rebuild."""
        self._state().listeners.append(listener)

    def remove_listener(self, listener: Callable[[datetime], None]) -> None:
        state = self._state()
        if listener in state.listeners:
            state.listeners.remove(listener)

    @property
    def last_refreshed_at(self) -> datetime | None:
        return self._state().last_refreshed_at

    @property
    def last_error(self) -> Exception | None:
        return self._state().last_error

    def trigger(self) -> None:
        app = current_app._get_current_object()
        if not app.config.get("RANKING_REFRESH_ASYNC", True):
            self._refresh_once(app)
            return

        state = self._state(app)
        with state.lock:
            if state.running:
                state.pending = True
                return
            state.running = True
            state.idle.clear()

        worker = threading.Thread(target=self._worker, args=(app,), name="ranking-refresh", daemon=True)
        try:
            worker.start()
        except RuntimeError:
            with state.lock:
                state.running = False
                state.idle.set()
            raise

    def _worker(self, app: Flask) -> None:
        state = self._state(app)
        finished = False
        try:
            while True:
                with app.app_context():
                    self._refresh_once(app)
                with state.lock:
                    if not state.pending:
                        state.running = False
                        state.idle.set()
                        finished = True
                        return
                    state.pending = False
        finally:
            if not finished:
                # Worker died; the next trigger must be able to start a new one
                app.logger.error("Ranking refresh worker stopped unexpectedly")
                with state.lock:
                    state.running = False
                    state.pending = False
                    state.idle.set()

    def _refresh_once(self, app: Flask) -> bool:
        state = self._state(app)
        try:
            refreshed_at = self._rebuild()
        except Exception as exc:
            state.last_error = exc
            app.logger.exception("Ranking refresh failed; aggregates stay stale until the next trigger")
            return False
        state.last_error = None
        state.last_refreshed_at = refreshed_at
        self._notify(app, refreshed_at)
        return True

    def _notify(self, app: Flask, refreshed_at: datetime) -> None:
        for listener in list(self._state(app).listeners):
            try:
                listener(refreshed_at)
            except Exception:
                app.logger.exception("Ranking refresh listener failed")

    @staticmethod
    def _rebuild() -> datetime:
        from .ranking_service import rebuild_rankings
        return rebuild_rankings()

    def refresh_now(self) -> datetime:
        """Synchronous rebuild in the current app context. Unlike trigger(), failures raise."""
        app = current_app._get_current_object()
        state = self._state(app)
        refreshed_at = self._rebuild()
        state.last_error = None
        state.last_refreshed_at = refreshed_at
        self._notify(app, refreshed_at)
        return refreshed_at

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no background rebuild is running or pending."""
        return self._state().idle.wait(timeout)
