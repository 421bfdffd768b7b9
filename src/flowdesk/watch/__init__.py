"""Change detection for a workspace's ``.flow/`` directory."""

from flowdesk.watch.broadcaster import NotificationBroadcaster, Surface
from flowdesk.watch.classifier import ChangeClassifier, normalize_relative_path
from flowdesk.watch.debounce import DebounceRouter
from flowdesk.watch.watcher import DirectoryWatcher

__all__ = [
    "ChangeClassifier",
    "DebounceRouter",
    "DirectoryWatcher",
    "NotificationBroadcaster",
    "Surface",
    "normalize_relative_path",
]
