"""Thin wrapper utilities around the Slack WebClient."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from access_plugins.errors import ConnectionProblem


class SlackClient:
    """Encapsulate Slack WebClient interactions for easier testing."""

    def __init__(self, *, token: str | None = None, client: WebClient | None = None) -> None:
        if client is None and token is None:
            raise ValueError("Either an instantiated client or a bot token must be provided.")

        self._client = client or WebClient(token=token)

    @property
    def client(self) -> WebClient:
        """Expose the underlying WebClient for advanced use cases."""

        return self._client

    def post_message(
        self,
        *,
        channel: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]],
    ) -> Mapping[str, Any]:
        """Post a message with Block Kit content to a Slack channel."""

        try:
            return self._client.chat_postMessage(channel=channel, text=text, blocks=list(blocks))
        except OSError as exc:
            raise ConnectionProblem(f"slack is unreachable: {exc}") from exc

    def update_message(
        self,
        *,
        channel: str,
        ts: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]],
    ) -> Mapping[str, Any]:
        """Update an existing Slack message."""

        try:
            return self._client.chat_update(channel=channel, ts=ts, text=text, blocks=list(blocks))
        except OSError as exc:
            raise ConnectionProblem(f"slack is unreachable: {exc}") from exc

    def user_email(self, user_id: str) -> str:
        """Return the e-mail on the user's profile, or an empty string."""

        try:
            response = self._client.users_info(user=user_id)
        except SlackApiError:
            return ""
        except OSError as exc:
            raise ConnectionProblem(f"slack is unreachable: {exc}") from exc
        profile = (response.get("user") or {}).get("profile") or {}
        return profile.get("email") or ""
