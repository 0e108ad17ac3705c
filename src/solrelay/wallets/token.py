"""Resumption token codec.

The token carries the ephemeral wallet's identity and key material between
the quote and confirm calls. It is a Fernet token, so the payload is both
encrypted and authenticated: a forged or modified token never decodes.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

import base58
from cryptography.fernet import Fernet, InvalidToken

from solrelay.crypto import fernet_from_secret
from solrelay.errors import TokenExpired, TokenInvalid

logger = logging.getLogger(__name__)

TOKEN_VERSION = 1

# Fixed salt so every process derives the same key from one passphrase
TOKEN_KEY_SALT = b"solrelay-resumption-token-v1"


@dataclass
class TokenPayload:
    """Decoded contents of a resumption token."""

    address: str
    secret_key: bytes
    created_at: float
    expires_at: float


class TokenCodec:
    """Mint and decode resumption tokens."""

    def __init__(self, secret: str, validity_seconds: int = 1800):
        self._fernet: Fernet = fernet_from_secret(secret, TOKEN_KEY_SALT)
        self.validity_seconds = validity_seconds

    def mint(
        self,
        address: str,
        secret_key: bytes,
        created_at: float,
        expires_at: Optional[float] = None,
    ) -> str:
        if expires_at is None:
            expires_at = created_at + self.validity_seconds
        payload = {
            "v": TOKEN_VERSION,
            "address": address,
            "secret_key": base58.b58encode(bytes(secret_key)).decode(),
            "created_at": created_at,
            "expires_at": expires_at,
        }
        return self._fernet.encrypt(json.dumps(payload).encode()).decode()

    def decode(
        self, token: str, now: Optional[float] = None, verify_expiry: bool = True
    ) -> TokenPayload:
        """Decode and check a token.

        ``verify_expiry=False`` is for operator recovery of stranded funds only.

        Raises:
            TokenInvalid: Malformed, forged or tampered token
            TokenExpired: Token is past its embedded expiry
        """
        if not isinstance(token, str) or not token:
            raise TokenInvalid("Resumption token is missing")

        try:
            raw = self._fernet.decrypt(token.encode())
        except (InvalidToken, ValueError, TypeError) as e:
            raise TokenInvalid("Resumption token failed authentication") from e

        try:
            data = json.loads(raw)
            if data.get("v") != TOKEN_VERSION:
                raise ValueError(f"unsupported token version {data.get('v')!r}")
            payload = TokenPayload(
                address=str(data["address"]),
                secret_key=base58.b58decode(data["secret_key"]),
                created_at=float(data["created_at"]),
                expires_at=float(data["expires_at"]),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise TokenInvalid(f"Resumption token payload is malformed: {e}") from e

        if len(payload.secret_key) != 64:
            raise TokenInvalid("Resumption token key material has the wrong length")

        now = time.time() if now is None else now
        if verify_expiry and now > payload.expires_at:
            raise TokenExpired(
                "Resumption token has expired",
                details={"address": payload.address, "expired_at": payload.expires_at},
            )

        return payload
