"""Block Kit message builders for access requests."""

from __future__ import annotations

from typing import Any, Dict, List

from access_plugins.plugindata import AccessRequestData, ResolutionTag

APPROVE_ACTION_ID = "approve_request"
DENY_ACTION_ID = "deny_request"
ACTIONS_BLOCK_ID = "access_request_actions"

_STATUS_EMOJI = {
    ResolutionTag.UNRESOLVED: ":hourglass_flowing_sand:",
    ResolutionTag.APPROVED: ":white_check_mark:",
    ResolutionTag.DENIED: ":x:",
    ResolutionTag.EXPIRED: ":hourglass:",
}


def _status_label(tag: ResolutionTag) -> str:
    return tag.value or "PENDING"


def _details_section(request_id: str, data: AccessRequestData, cluster_name: str) -> Dict[str, Any]:
    lines = [
        f"*Request ID:* {request_id}",
        f"*User:* {data.user or '_unknown_'}",
        f"*Roles:* {', '.join(data.roles) if data.roles else '_none_'}",
    ]
    if cluster_name:
        lines.insert(0, f"*Cluster:* {cluster_name}")
    if data.request_reason:
        lines.append(f"*Reason:* {data.request_reason}")
    return {"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}}


def _decision_buttons(request_id: str) -> Dict[str, Any]:
    return {
        "type": "actions",
        "block_id": ACTIONS_BLOCK_ID,
        "elements": [
            {
                "type": "button",
                "text": {"type": "plain_text", "text": "Approve", "emoji": True},
                "style": "primary",
                "action_id": APPROVE_ACTION_ID,
                "value": request_id,
            },
            {
                "type": "button",
                "text": {"type": "plain_text", "text": "Deny", "emoji": True},
                "style": "danger",
                "action_id": DENY_ACTION_ID,
                "value": request_id,
            },
        ],
    }


def build_request_message(
    *,
    request_id: str,
    data: AccessRequestData,
    cluster_name: str = "",
    include_actions: bool | None = None,
) -> Dict[str, Any]:
    """Return ``text`` and ``blocks`` describing the request and its status."""

    tag = data.resolution_tag
    status = f"{_STATUS_EMOJI[tag]} *Status:* {_status_label(tag)}"
    if data.resolution_reason:
        status += f"\n*Resolution reason:* {data.resolution_reason}"

    blocks: List[Dict[str, Any]] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*{data.user or 'Someone'}* requested roles"}},
        _details_section(request_id, data, cluster_name),
        {"type": "context", "elements": [{"type": "mrkdwn", "text": status}]},
    ]
    if include_actions if include_actions is not None else tag is ResolutionTag.UNRESOLVED:
        blocks.append(_decision_buttons(request_id))

    text = f"Access request {request_id} by {data.user or 'unknown user'}: {_status_label(tag)}"
    return {"text": text, "blocks": blocks}
