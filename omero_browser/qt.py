from __future__ import annotations

from typing import Callable

from PyQt5.QtCore import QObject, Qt, pyqtSignal

from omero_browser.events import Dispatcher


class QtDispatcher(QObject, Dispatcher):
    """Hands callables to the thread that owns this object.

    Create it on the GUI thread; emitting from a worker thread queues the
    call on the GUI event loop.
    """

    _invoke = pyqtSignal(object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._invoke.connect(self._run, Qt.QueuedConnection)

    def call(self, fn: Callable[[], None]) -> None:
        self._invoke.emit(fn)

    def _run(self, fn: Callable[[], None]) -> None:
        fn()
