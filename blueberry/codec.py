"""JSON encoding of conversation snapshots.

Snapshots are a JSON array of message objects. Decoding matches field names
case-insensitively so that hand-edited files and snapshots written by older
clients (``"Role"``, ``"Text"``, ``"Contents"``) still load.
"""

import json

from .messages import Message, Role
from .report import SnapshotDecodeError

# Fields that can carry the message text, in lookup order.
_TEXT_KEYS = ("content", "text")
_LEGACY_PARTS_KEY = "contents"


def encode(messages: list[Message]) -> str:
    return json.dumps([m.to_dict() for m in messages], indent=2, ensure_ascii=False)


def _find_key(data: dict, name: str) -> str | None:
    for key in data:
        if isinstance(key, str) and key.lower() == name:
            return key
    return None


def _parts_text(parts) -> str:
    """Join the text of a list of content parts (OpenAI or legacy shape)."""
    texts = []
    for part in parts:
        if isinstance(part, str):
            texts.append(part)
        elif isinstance(part, dict):
            key = _find_key(part, "text")
            if key is not None and isinstance(part[key], str):
                texts.append(part[key])
    return "".join(texts)


def _decode_role(value, index: int) -> Role:
    if isinstance(value, dict):
        # {"value": "user"} wrapper used by some serializers
        key = _find_key(value, "value")
        value = value[key] if key is not None else None
    if not isinstance(value, str):
        raise SnapshotDecodeError(f"message {index}: role must be a string")
    try:
        return Role(value.strip().lower())
    except ValueError:
        raise SnapshotDecodeError(f"message {index}: unknown role {value!r}") from None


def _decode_message(item, index: int) -> Message:
    if not isinstance(item, dict):
        raise SnapshotDecodeError(
            f"message {index}: expected object, got {type(item).__name__}"
        )

    role_key = _find_key(item, "role")
    if role_key is None:
        raise SnapshotDecodeError(f"message {index}: missing role")
    role = _decode_role(item[role_key], index)

    consumed = {role_key}
    content = ""
    for name in _TEXT_KEYS:
        key = _find_key(item, name)
        if key is None:
            continue
        value = item[key]
        if value is None:
            consumed.add(key)
            continue
        if isinstance(value, str):
            content = value
        elif isinstance(value, list):
            content = _parts_text(value)
            # keep structured parts so they are written back unchanged
            break
        else:
            raise SnapshotDecodeError(f"message {index}: {key!r} must be text")
        consumed.add(key)
        break
    else:
        key = _find_key(item, _LEGACY_PARTS_KEY)
        if key is not None and isinstance(item[key], list):
            content = _parts_text(item[key])

    extra = {k: v for k, v in item.items() if k not in consumed}
    return Message(role, content, extra)


def decode(text: str) -> list[Message]:
    """Parse snapshot text. Raises SnapshotDecodeError on any structural problem."""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise SnapshotDecodeError(f"invalid JSON: {e}") from e
    except RecursionError as e:
        raise SnapshotDecodeError("invalid JSON: nested too deeply") from e

    if data is None:
        return []
    if not isinstance(data, list):
        raise SnapshotDecodeError(
            f"expected a JSON array of messages, got {type(data).__name__}"
        )
    return [_decode_message(item, i) for i, item in enumerate(data)]
