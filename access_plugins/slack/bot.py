"""Slack plugin logic: announce access requests and relay reviewer decisions."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, List, Sequence

import structlog
from slack_sdk.errors import SlackApiError

from access_plugins.authority import AccessRequestAuthority, get_access_request
from access_plugins.cache import CacheEntry, MessageLocator, RequestCache
from access_plugins.context import Context
from access_plugins.errors import BadParameter, NotFound
from access_plugins.models import DeleteEvent, Event, PutEvent, Request, RequestState
from access_plugins.plugindata import (
    GenericPluginData,
    PluginDataClient,
    ResolutionTag,
    decode_plugin_data,
    encode_plugin_data,
)

from .client import SlackClient
from .messages import APPROVE_ACTION_ID, DENY_ACTION_ID, build_request_message

_ACTION_STATES = {
    APPROVE_ACTION_ID: (RequestState.APPROVED, ResolutionTag.APPROVED),
    DENY_ACTION_ID: (RequestState.DENIED, ResolutionTag.DENIED),
}


class SlackAccessBot:
    """Handle watcher events and Slack button clicks for one plugin instance."""

    def __init__(
        self,
        *,
        authority: AccessRequestAuthority,
        slack: SlackClient,
        plugin_data: PluginDataClient,
        channels: Sequence[str],
        cache: RequestCache | None = None,
        cluster_name: str = "",
        logger: Any | None = None,
    ) -> None:
        if not channels:
            raise ValueError("At least one notification channel is required.")
        self._authority = authority
        self._slack = slack
        self._plugin_data = plugin_data
        self._channels = list(channels)
        self._cache = cache
        self.cluster_name = cluster_name
        self._log = logger or structlog.get_logger().bind(component="slack_bot")

    def on_event(self, ctx: Context, event: Event) -> None:
        """Watcher job handler."""

        if isinstance(event, PutEvent):
            request = event.request
            if not request.state.is_pending:
                self._log.warning("non_pending_request_event", request_id=request.id, state=request.state.value)
                return
            self.on_pending_request(ctx, request)
        elif isinstance(event, DeleteEvent):
            self.on_deleted_request(ctx, event.request_id)
        else:
            raise BadParameter(f"unexpected event type {event.type.value}")

    def on_pending_request(self, ctx: Context, request: Request) -> None:
        log = self._log.bind(request_id=request.id)
        existing = decode_plugin_data(self._plugin_data.get(ctx, request.id))
        if existing.sent_messages:
            log.info("request_already_announced", messages=len(existing.sent_messages))
            return

        messages = self._post(request)
        data = GenericPluginData(
            user=request.user,
            roles=list(request.roles),
            request_reason=request.request_reason,
            sent_messages=messages,
        )

        def claim(current: GenericPluginData | None) -> GenericPluginData | None:
            if current is not None and current.sent_messages:
                return None
            return data

        if not self._plugin_data.modify(ctx, request.id, claim, decode=decode_plugin_data, encode=encode_plugin_data):
            log.warning("request_announced_concurrently", messages=len(messages))
        if self._cache is not None:
            self._cache.put(CacheEntry(request=request, messages=messages))
        log.info("request_announced", channels=[message.channel_id for message in messages])

    def on_deleted_request(self, ctx: Context, request_id: str) -> None:
        log = self._log.bind(request_id=request_id)
        entry = self._cache.pop(request_id) if self._cache is not None else None
        data = decode_plugin_data(self._plugin_data.get(ctx, request_id))

        if data.resolved:
            log.debug("deleted_request_already_resolved", resolution=data.resolution_tag.value)
            return
        if not data.sent_messages and entry is not None:
            data = GenericPluginData(
                user=entry.request.user,
                roles=list(entry.request.roles),
                request_reason=entry.request.request_reason,
                sent_messages=list(entry.messages),
            )
        if not data.sent_messages:
            log.warning("cannot_expire_unknown_request")
            return

        self._update(request_id, replace(data, resolution_tag=ResolutionTag.EXPIRED))
        log.info("request_marked_expired")

    def handle_action(self, ctx: Context, *, action_id: str, request_id: str, user_id: str) -> ResolutionTag:
        """Apply a reviewer's button click and return the resulting status."""

        log = self._log.bind(request_id=request_id, slack_user=user_id)
        if action_id not in _ACTION_STATES:
            raise BadParameter(f"unknown action id {action_id!r}")

        try:
            request = get_access_request(self._authority, ctx, request_id)
        except NotFound:
            log.info("action_on_expired_request")
            self.on_deleted_request(ctx, request_id)
            return ResolutionTag.EXPIRED

        if not request.state.is_pending:
            raise BadParameter(f"cannot process request in state {request.state.value}")

        state, tag = _ACTION_STATES[action_id]
        delegator = self._slack.user_email(user_id) or user_id
        self._authority.set_access_request_state(
            ctx,
            request.id,
            state,
            f"{self._plugin_data.plugin_name}:{delegator}",
        )
        log.info("request_resolved_by_reviewer", resolution=tag.value, delegator=delegator)

        def resolve(current: GenericPluginData | None) -> GenericPluginData | None:
            if current is None or current.resolved:
                return None
            return replace(current, resolution_tag=tag, reviews_count=current.reviews_count + 1)

        self._plugin_data.modify(ctx, request.id, resolve, decode=decode_plugin_data, encode=encode_plugin_data)
        data = decode_plugin_data(self._plugin_data.get(ctx, request.id))
        entry = self._cache.pop(request.id) if self._cache is not None else None
        if not data.sent_messages and entry is not None:
            data = GenericPluginData(
                user=request.user,
                roles=list(request.roles),
                request_reason=request.request_reason,
                sent_messages=list(entry.messages),
            )
        self._update(request.id, replace(data, resolution_tag=tag))
        return tag

    def _post(self, request: Request) -> List[MessageLocator]:
        data = GenericPluginData(user=request.user, roles=list(request.roles), request_reason=request.request_reason)
        payload = build_request_message(request_id=request.id, data=data, cluster_name=self.cluster_name)
        messages: List[MessageLocator] = []
        for channel in self._channels:
            response = self._slack.post_message(channel=channel, text=payload["text"], blocks=payload["blocks"])
            channel_id, ts = response.get("channel"), response.get("ts")
            if not channel_id or not ts:
                self._log.warning("slack_response_missing_identifiers", request_id=request.id, channel=channel)
                continue
            messages.append(MessageLocator(channel_id=channel_id, message_id=ts))
        return messages

    def _update(self, request_id: str, data: GenericPluginData) -> None:
        payload = build_request_message(request_id=request_id, data=data, cluster_name=self.cluster_name)
        for message in data.sent_messages:
            try:
                self._slack.update_message(
                    channel=message.channel_id,
                    ts=message.message_id,
                    text=payload["text"],
                    blocks=payload["blocks"],
                )
            except SlackApiError as exc:
                error_code = exc.response.get("error") if getattr(exc, "response", None) else str(exc)
                self._log.error(
                    "slack_update_failed",
                    request_id=request_id,
                    channel=message.channel_id,
                    error=error_code,
                )
