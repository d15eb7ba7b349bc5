"""Hybrid encryption envelopes for session field groups.

Each field group is serialized to JSON and encrypted with a fresh AES-256-GCM
key and nonce. The AES key is wrapped with the recipient's RSA public key using
OAEP/SHA-256. The wire form is ``{ciphertext, wrappedKey, iv, version}`` with
base64 byte fields, where ``ciphertext`` is the GCM output (ciphertext followed
by the 16-byte tag).
"""

import base64
import json
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ConfigDict, Field

from sessionhub.errors import EncryptionKeyUnavailable
from sessionhub.sync.models import EncryptionMode, KeyMaterial

logger = logging.getLogger(__name__)

AES_KEY_BITS = 256
NONCE_BYTES = 12
ENVELOPE_VERSION = 1
MIN_PUBLIC_KEY_LENGTH = 100

# Field groups that are sealed independently, keyed by their request field.
FIELD_GROUPS = {
    "interactions": "encrypted_interactions",
    "todo_snapshots": "encrypted_todo_snapshots",
    "plans": "encrypted_plans",
    "sub_sessions": "encrypted_sub_sessions",
    "attachment_urls": "encrypted_attachment_urls",
}


def _oaep() -> padding.OAEP:
    return padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class EncryptionEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    ciphertext: str
    wrapped_key: str = Field(alias="wrappedKey")
    iv: str
    version: int = ENVELOPE_VERSION

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_wire(cls, raw: str) -> "EncryptionEnvelope":
        return cls.model_validate_json(raw)


def load_public_key(encoded: str) -> rsa.RSAPublicKey:
    """Load a base64 SPKI (DER) or PEM RSA public key."""
    text = encoded.strip()
    if text.startswith("-----BEGIN"):
        key = serialization.load_pem_public_key(text.encode("ascii"))
    else:
        key = serialization.load_der_public_key(base64.b64decode(text, validate=True))
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("not an RSA public key")
    return key


def is_valid_public_key(encoded: str | None) -> bool:
    """A key is usable if present, plausibly long, and loads as RSA."""
    if not encoded or len(encoded) < MIN_PUBLIC_KEY_LENGTH:
        return False
    try:
        load_public_key(encoded)
    except (ValueError, UnsupportedAlgorithm) as exc:
        logger.warning("Invalid public key format: %s", exc)
        return False
    return True


def seal(payload: Any, public_key: rsa.RSAPublicKey) -> EncryptionEnvelope:
    """Encrypt a JSON-serializable payload for the holder of ``public_key``."""
    plaintext = json.dumps(payload).encode("utf-8")
    content_key = AESGCM.generate_key(bit_length=AES_KEY_BITS)
    nonce = os.urandom(NONCE_BYTES)
    ciphertext = AESGCM(content_key).encrypt(nonce, plaintext, None)
    wrapped_key = public_key.encrypt(content_key, _oaep())
    return EncryptionEnvelope(
        ciphertext=_b64(ciphertext),
        wrapped_key=_b64(wrapped_key),
        iv=_b64(nonce),
    )


def open_envelope(envelope: EncryptionEnvelope | str, private_key: rsa.RSAPrivateKey) -> Any:
    """Decrypt an envelope back to its JSON payload."""
    if isinstance(envelope, str):
        envelope = EncryptionEnvelope.from_wire(envelope)
    content_key = private_key.decrypt(base64.b64decode(envelope.wrapped_key), _oaep())
    plaintext = AESGCM(content_key).decrypt(
        base64.b64decode(envelope.iv), base64.b64decode(envelope.ciphertext), None
    )
    return json.loads(plaintext)


def seal_field_groups(
    groups: Mapping[str, Sequence[Any]], public_key: rsa.RSAPublicKey
) -> dict[str, str]:
    """One envelope per non-empty group, keyed by the encrypted request field."""
    sealed = {}
    for name, items in groups.items():
        if name not in FIELD_GROUPS:
            raise KeyError(f"unknown field group: {name}")
        if items:
            sealed[FIELD_GROUPS[name]] = seal(list(items), public_key).to_wire()
    return sealed


class KeySource(Protocol):
    def resolve(self, team_id: str | None = None) -> KeyMaterial | None: ...


@dataclass
class SealedFields:
    key_version: int
    envelopes: dict[str, str] = field(default_factory=dict)


class EnvelopeBuilder:
    """Decide between the plaintext path and sealed field groups."""

    def __init__(self, keys: KeySource):
        self.keys = keys

    def build(
        self,
        mode: EncryptionMode,
        groups: Mapping[str, Sequence[Any]],
        team_id: str | None = None,
    ) -> SealedFields | None:
        """Return None for plaintext projects; sealed envelopes otherwise.

        Raises EncryptionKeyUnavailable when an end-to-end project has no
        usable key. There is no plaintext fallback in that case.
        """
        if not mode.requires_e2e:
            return None

        key = self.keys.resolve(team_id)
        if key is None or not is_valid_public_key(key.public_key):
            raise EncryptionKeyUnavailable(mode.value)

        envelopes = seal_field_groups(groups, load_public_key(key.public_key))
        logger.info("Sealed %d field group(s) with key version %d", len(envelopes), key.key_version)
        return SealedFields(key_version=key.key_version, envelopes=envelopes)
