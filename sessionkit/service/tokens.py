from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sessionkit.config import Settings
from sessionkit.logging import get_logger
from sessionkit.service.errors import ExpiredCredential, MalformedCredential

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    issued_at: int
    expires_at: int
    token_type: str
    jti: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_at: int
    refresh_expires_at: int
    token_type: str = "bearer"


class TokenSigner:
    """HS256 signer/verifier for access and refresh tokens.

    Holds no state beyond the settings it was built with, so one instance can be
    shared by every request.
    """

    def __init__(
        self, settings: Settings, *, clock: Callable[[], float] = time.time
    ) -> None:
        self.settings = settings
        self._clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return self.settings.access_token_ttl_minutes * 60

    @property
    def refresh_ttl_seconds(self) -> int:
        return self.settings.refresh_token_ttl_minutes * 60

    def issue_access_token(self, user_id: str) -> str:
        return self._issue(user_id, ACCESS, self.access_ttl_seconds)[0]

    def issue_refresh_token(self, user_id: str) -> str:
        return self._issue(user_id, REFRESH, self.refresh_ttl_seconds)[0]

    def issue_pair(self, user_id: str) -> TokenPair:
        access, access_exp = self._issue(user_id, ACCESS, self.access_ttl_seconds)
        refresh, refresh_exp = self._issue(user_id, REFRESH, self.refresh_ttl_seconds)
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            expires_at=access_exp,
            refresh_expires_at=refresh_exp,
        )

    def verify(self, token: str, *, token_type: str = ACCESS) -> TokenClaims:
        """Validate signature, structure and expiry.

        Raises ``ExpiredCredential`` only when everything but the expiry checks out.
        """
        claims = self.verify_ignoring_expiry(token, token_type=token_type)
        if claims.expires_at <= self._clock():
            raise ExpiredCredential("token has expired")
        return claims

    def verify_ignoring_expiry(
        self, token: str, *, token_type: str = ACCESS
    ) -> TokenClaims:
        payload = self._decode_jwt(token)
        if payload is None:
            raise MalformedCredential("invalid token")
        claims = self._claims_from_payload(payload)
        if claims is None or claims.token_type != token_type:
            raise MalformedCredential("invalid token")
        return claims

    def remaining_lifetime(
        self, claims: TokenClaims, now: Optional[float] = None
    ) -> float:
        """Seconds until ``claims`` expire, clamped at zero."""
        return self.seconds_until(claims.expires_at, now)

    def seconds_until(self, timestamp: float, now: Optional[float] = None) -> float:
        current = self._clock() if now is None else now
        return max(0.0, timestamp - current)

    def _issue(self, user_id: str, token_type: str, ttl_seconds: int) -> tuple[str, int]:
        now = int(self._clock())
        exp = now + ttl_seconds
        payload = {
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "sub": user_id,
            "iat": now,
            "exp": exp,
            "token_type": token_type,
            # Unique per token so two tokens minted in the same second never collide
            "jti": uuid.uuid4().hex,
        }
        return self._encode_jwt(payload), exp

    @staticmethod
    def _claims_from_payload(payload: dict[str, Any]) -> Optional[TokenClaims]:
        sub = payload.get("sub")
        token_type = payload.get("token_type")
        jti = payload.get("jti")
        if not isinstance(sub, str) or not sub:
            return None
        if not isinstance(token_type, str) or not isinstance(jti, str):
            return None
        try:
            issued_at = int(payload["iat"])
            expires_at = int(payload["exp"])
        except (KeyError, TypeError, ValueError):
            return None
        return TokenClaims(
            subject=sub,
            issued_at=issued_at,
            expires_at=expires_at,
            token_type=token_type,
            jti=jti,
        )

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(
                self.settings.jwt_secret.encode(),
                signing_input.encode(),
                hashlib.sha256,
            ).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> Optional[dict[str, Any]]:
        if not isinstance(token, str):
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Reject anything but HS256 to rule out algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
            if not isinstance(header, dict) or header.get("alg") != "HS256":
                logger.warning(
                    "jwt_invalid_algorithm",
                    alg=header.get("alg") if isinstance(header, dict) else None,
                )
                return None
        except (ValueError, UnicodeDecodeError):
            logger.warning("jwt_header_decode_failed")
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.settings.jwt_issuer:
            return None
        aud = payload.get("aud")
        if isinstance(aud, str):
            valid_aud = aud == self.settings.jwt_audience
        elif isinstance(aud, list):
            valid_aud = self.settings.jwt_audience in aud
        else:
            valid_aud = False
        if not valid_aud:
            return None
        return payload
