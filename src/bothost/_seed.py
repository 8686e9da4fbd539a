"""Enrollment seed decoding.

A seed is the base64 encoding of the JSON credential object a protocol
client writes after pairing.  Line breaks and other whitespace are
ignored and the URL-safe alphabet is accepted, since seeds are often
pasted from wrapped terminal output or URLs; any other stray character
rejects the seed.  It must carry an identity (``me.id``) and
a device (``deviceId``); everything else is passed through untouched.

Decoding is pure: it either returns a :class:`CredentialState` or
raises :class:`InvalidSeed`, never touching storage or the registry.
"""

from __future__ import annotations

import base64
import binascii
import json

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bothost._errors import InvalidSeed
from bothost._models import CredentialState

_URLSAFE_TO_STANDARD = str.maketrans("-_", "+/")


class SeedIdentity(BaseModel):
    """The ``me`` object of a seed."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)


class EnrollmentSeed(BaseModel):
    """Schema every decoded seed must satisfy."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    me: SeedIdentity
    device_id: str = Field(alias="deviceId", min_length=1)


def decode_seed(seed: str) -> CredentialState:
    """Decode and validate an enrollment seed.

    Raises:
        InvalidSeed: If *seed* is not base64 (standard or URL-safe),
            not UTF-8 JSON, not an object, or lacks ``me.id`` /
            ``deviceId``.
    """
    text = "".join(seed.split()) if isinstance(seed, str) else ""
    if not text:
        raise InvalidSeed("Invalid session ID: empty")

    text = text.translate(_URLSAFE_TO_STANDARD).rstrip("=")
    text += "=" * (-len(text) % 4)
    try:
        raw = base64.b64decode(text, validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidSeed("Invalid session ID: must be valid Base64-encoded JSON") from exc

    if not isinstance(payload, dict):
        raise InvalidSeed("Invalid session ID: must encode a JSON object")

    try:
        EnrollmentSeed.model_validate(payload)
    except ValidationError as exc:
        raise InvalidSeed(
            "Invalid session ID: missing required fields (me.id, deviceId)"
        ) from exc

    return CredentialState(creds=payload)


def encode_seed(creds: dict[str, object]) -> str:
    """Encode a credential object as a seed; the inverse of :func:`decode_seed`."""
    return base64.b64encode(json.dumps(creds).encode("utf-8")).decode("ascii")
