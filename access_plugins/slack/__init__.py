"""Reference Slack plugin built on the watcher and plugin data core."""

from .bot import SlackAccessBot
from .client import SlackClient
from .messages import APPROVE_ACTION_ID, DENY_ACTION_ID, build_request_message

__all__ = [
    "SlackAccessBot",
    "SlackClient",
    "APPROVE_ACTION_ID",
    "DENY_ACTION_ID",
    "build_request_message",
]
