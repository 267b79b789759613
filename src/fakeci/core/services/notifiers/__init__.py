from .core import (
    NOTIFIERS,
    FileNotifier,
    LogNotifier,
    Notifier,
    NotifierDispatcher,
)

__all__ = [
    "NOTIFIERS",
    "FileNotifier",
    "LogNotifier",
    "Notifier",
    "NotifierDispatcher",
]
