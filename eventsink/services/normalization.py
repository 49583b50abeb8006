"""
Source-specific webhook payload normalizers.
Each normalizer reduces a raw provider payload plus its headers to a canonical
EventRecord. Missing optional fields become None; only a missing required
top-level shape raises MalformedPayloadError.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional

from eventsink.schemas.event_records import (
    AnyEventRecord,
    EventRecord,
    GitHubEventRecord,
    LinearEventRecord,
    SlackEventRecord,
    WebhookSource,
)
from eventsink.utils.errors import MalformedPayloadError

logger = logging.getLogger(__name__)

GITHUB_BRANCH_REF_PREFIX = "refs/heads/"

Normalizer = Callable[[dict, dict, Optional[str], Optional[str]], EventRecord]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def _obj(value: Any) -> dict:
    """Return value if it is a JSON object, else an empty dict."""
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _resolve_event_id(*candidates: Optional[str]) -> str:
    for candidate in candidates:
        if candidate:
            return str(candidate)
    return str(uuid.uuid4())


def slack_ts_to_ms(ts: Any) -> Optional[int]:
    """Convert a Slack `ts` ("1690000000.000100") to epoch milliseconds.

    Sub-millisecond digits are truncated. Returns None when ts is absent or
    not numeric.
    """
    if ts is None or isinstance(ts, bool):
        return None
    try:
        return int(Decimal(str(ts)) * 1000)
    except (InvalidOperation, ValueError, OverflowError):
        return None


def _ms_to_datetime(ms: int) -> Optional[datetime]:
    """Epoch milliseconds to an aware datetime; None when outside the platform's range."""
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or epoch milliseconds) into an aware datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return _ms_to_datetime(int(value))
        except (OverflowError, ValueError):
            return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------

def _github_pull_request(payload: dict) -> dict:
    pr = _obj(payload.get("pull_request"))
    return {
        "pull_request_number": _as_int(pr.get("number")),
        "pull_request_title": _as_str(pr.get("title")),
        "pull_request_state": _as_str(pr.get("state")),
    }


def _github_issues(payload: dict) -> dict:
    issue = _obj(payload.get("issue"))
    return {
        "issue_number": _as_int(issue.get("number")),
        "issue_title": _as_str(issue.get("title")),
        "issue_state": _as_str(issue.get("state")),
    }


def _github_push(payload: dict) -> dict:
    head_commit = _obj(payload.get("head_commit"))
    ref = _as_str(payload.get("ref"))
    branch = None
    if ref is not None:
        branch = ref[len(GITHUB_BRANCH_REF_PREFIX):] if ref.startswith(GITHUB_BRANCH_REF_PREFIX) else ref
    return {
        "commit_sha": _as_str(head_commit.get("id")),
        "commit_message": _as_str(head_commit.get("message")),
        "branch_name": branch,
    }


def _github_ref(payload: dict) -> dict:
    ref_type = payload.get("ref_type")
    ref = _as_str(payload.get("ref"))
    if ref_type == "tag":
        return {"tag_name": ref}
    if ref_type == "branch":
        return {"branch_name": ref}
    return {}


def _github_release(payload: dict) -> dict:
    release = _obj(payload.get("release"))
    return {"tag_name": _as_str(release.get("tag_name"))}


GITHUB_EXTRACTORS: dict[str, Callable[[dict], dict]] = {
    "pull_request": _github_pull_request,
    "issues": _github_issues,
    "push": _github_push,
    "create": _github_ref,
    "delete": _github_ref,
    "release": _github_release,
}


def normalize_github(
    payload: dict,
    headers: dict,
    signature: Optional[str] = None,
    delivery_id_hint: Optional[str] = None,
) -> GitHubEventRecord:
    event_type = _header(headers, "X-GitHub-Event")
    if not event_type:
        raise MalformedPayloadError("github", "missing X-GitHub-Event header")

    delivery_id = delivery_id_hint or _header(headers, "X-GitHub-Delivery")
    repository = _obj(payload.get("repository"))
    sender = _obj(payload.get("sender"))
    organization = _obj(payload.get("organization"))

    extractor = GITHUB_EXTRACTORS.get(event_type)
    extracted = extractor(payload) if extractor else {}

    return GitHubEventRecord(
        event_id=_resolve_event_id(delivery_id),
        event_type=event_type,
        action=_as_str(payload.get("action")),
        repository_name=_as_str(repository.get("name")),
        repository_full_name=_as_str(repository.get("full_name")),
        repository_id=_as_int(repository.get("id")),
        sender_login=_as_str(sender.get("login")),
        sender_id=_as_int(sender.get("id")),
        organization=_as_str(organization.get("login")),
        payload=payload,
        headers=headers,
        signature=signature,
        delivery_id=delivery_id,
        # Not every GitHub event carries its own timestamp
        event_timestamp=_now(),
        **extracted,
    )


# ---------------------------------------------------------------------------
# Linear
# ---------------------------------------------------------------------------

def _extract_linear(event_type: str, data: dict) -> dict:
    fields: dict = {}

    team = _obj(data.get("team"))
    if team:
        fields["team_id"] = _as_str(team.get("id"))
        fields["team_name"] = _as_str(team.get("name"))

    project = _obj(data.get("project"))
    if project:
        fields["project_id"] = _as_str(project.get("id"))
        fields["project_name"] = _as_str(project.get("name"))

    if event_type == "Issue" and data.get("id"):
        fields["issue_id"] = _as_str(data.get("id"))
        fields["issue_identifier"] = _as_str(data.get("identifier"))
        fields["issue_title"] = _as_str(data.get("title"))
        fields["issue_state"] = _as_str(_obj(data.get("state")).get("name"))
        fields["issue_priority"] = _as_int(data.get("priority"))

        assignee = _obj(data.get("assignee"))
        if assignee:
            fields["assignee_id"] = _as_str(assignee.get("id"))
            fields["assignee_name"] = _as_str(assignee.get("name"))

        creator = _obj(data.get("creator"))
        if creator:
            fields["creator_id"] = _as_str(creator.get("id"))
            fields["creator_name"] = _as_str(creator.get("name"))

    if event_type == "Comment":
        fields["comment_id"] = _as_str(data.get("id"))
        fields["comment_body"] = _as_str(data.get("body"))

        issue = _obj(data.get("issue"))
        if issue:
            fields["issue_id"] = _as_str(issue.get("id"))
            fields["issue_identifier"] = _as_str(issue.get("identifier"))
            fields["issue_title"] = _as_str(issue.get("title"))

        user = _obj(data.get("user"))
        if user:
            fields["creator_id"] = _as_str(user.get("id"))
            fields["creator_name"] = _as_str(user.get("name"))

    return fields


def normalize_linear(
    payload: dict,
    headers: dict,
    signature: Optional[str] = None,
    delivery_id_hint: Optional[str] = None,
) -> LinearEventRecord:
    event_type = _as_str(payload.get("type"))
    if not event_type:
        raise MalformedPayloadError("linear", "missing type")

    delivery_id = delivery_id_hint or _header(headers, "Linear-Delivery")
    event_timestamp = _parse_timestamp(payload.get("createdAt")) or _now()

    return LinearEventRecord(
        event_id=_resolve_event_id(delivery_id, _as_str(payload.get("webhookId"))),
        event_type=event_type,
        action=_as_str(payload.get("action")),
        payload=payload,
        headers=headers,
        signature=signature,
        delivery_id=delivery_id,
        event_timestamp=event_timestamp,
        **_extract_linear(event_type, _obj(payload.get("data"))),
    )


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------

def _extract_slack(payload: dict, event: dict) -> dict:
    fields: dict = {
        "team_id": _as_str(payload.get("team_id")),
        "team_domain": _as_str(payload.get("team_domain")),
    }

    # channel/user are ids on message events and objects on e.g. channel_created
    channel = event.get("channel")
    if isinstance(channel, dict):
        fields["channel_id"] = _as_str(channel.get("id"))
        fields["channel_name"] = _as_str(channel.get("name"))
    else:
        fields["channel_id"] = _as_str(channel)
    fields["channel_type"] = _as_str(event.get("channel_type"))

    user = event.get("user")
    if isinstance(user, dict):
        fields["user_id"] = _as_str(user.get("id"))
        fields["user_name"] = _as_str(user.get("name"))
    else:
        fields["user_id"] = _as_str(user)
    fields["bot_id"] = _as_str(event.get("bot_id"))

    fields["message_text"] = _as_str(event.get("text"))
    fields["message_ts"] = _as_str(event.get("ts"))
    fields["thread_ts"] = _as_str(event.get("thread_ts"))

    file = _obj(event.get("file"))
    if file:
        fields["file_id"] = _as_str(file.get("id"))
        fields["file_name"] = _as_str(file.get("name"))
        fields["file_type"] = _as_str(file.get("filetype"))

    return fields


def normalize_slack(
    payload: dict,
    headers: dict,
    signature: Optional[str] = None,
    delivery_id_hint: Optional[str] = None,
) -> SlackEventRecord:
    event = payload.get("event")
    if not isinstance(event, dict):
        raise MalformedPayloadError("slack", "missing event object")

    event_type = _as_str(event.get("type")) or _as_str(payload.get("type"))
    if not event_type:
        raise MalformedPayloadError("slack", "missing event type")

    ts_ms = slack_ts_to_ms(event.get("ts"))
    event_timestamp = (_ms_to_datetime(ts_ms) if ts_ms is not None else None) or _now()

    return SlackEventRecord(
        event_id=_resolve_event_id(delivery_id_hint, _as_str(payload.get("event_id"))),
        event_type=event_type,
        event_subtype=_as_str(event.get("subtype")),
        payload=payload,
        headers=headers,
        signature=signature,
        delivery_id=delivery_id_hint,
        event_timestamp=event_timestamp,
        **_extract_slack(payload, event),
    )


NORMALIZERS: dict[WebhookSource, Normalizer] = {
    WebhookSource.GITHUB: normalize_github,
    WebhookSource.LINEAR: normalize_linear,
    WebhookSource.SLACK: normalize_slack,
}


def normalize(
    source: WebhookSource | str,
    payload: Any,
    headers: Optional[Mapping[str, Any]] = None,
    signature: Optional[str] = None,
    delivery_id_hint: Optional[str] = None,
) -> AnyEventRecord:
    """Normalize a raw webhook into the canonical record for its source.

    Raises:
        ValueError: unknown source.
        MalformedPayloadError: the payload lacks the source's required shape.
    """
    source = WebhookSource(source)
    if not isinstance(payload, dict):
        raise MalformedPayloadError(source.value, "payload is not a JSON object")

    record = NORMALIZERS[source](payload, dict(headers or {}), signature, delivery_id_hint)
    logger.debug(
        "Normalized %s event %s (%s)",
        source.value, record.event_id[:8], record.event_type,
        extra={"source": source.value, "event_id": record.event_id},
    )
    return record
