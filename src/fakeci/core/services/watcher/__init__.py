from .core import Launcher, Watcher, WatcherState

__all__ = ["Launcher", "Watcher", "WatcherState"]
