import base64
import hashlib
import hmac
import json
from datetime import UTC, datetime, timedelta
from uuid import UUID


def _segment(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def sign_operator_token(
    operator_id: UUID,
    secret: str,
    *,
    expires_in: timedelta = timedelta(minutes=30),
    version: int = 1,
) -> tuple[str, datetime]:
    """Build an operator token the way the credential service issues them."""
    now = datetime.now(UTC)
    expires_at = now + expires_in
    payload = {
        "v": version,
        "oid": str(operator_id),
        "exp": int(expires_at.timestamp()),
        "iat": int(now.timestamp()),
    }
    payload_segment = _segment(
        json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    )
    signature = hmac.new(
        secret.encode("utf-8"), payload_segment.encode("utf-8"), hashlib.sha256
    ).digest()
    return f"{payload_segment}.{_segment(signature)}", expires_at
