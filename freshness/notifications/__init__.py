from .notifier import ChangeNotifier, build_notifications, build_push_messages
from .push import EXPO_PUSH_URL, ExpoPushClient, PushClient

__all__ = [
    "ChangeNotifier",
    "build_notifications",
    "build_push_messages",
    "PushClient",
    "ExpoPushClient",
    "EXPO_PUSH_URL",
]
