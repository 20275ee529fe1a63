import hashlib
import hmac
import secrets
import time

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(number: int) -> str:
    digits = []
    while True:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
        if number == 0:
            break
    return "".join(reversed(digits))


def _checksum(timestamp: str, random: str, secret: str) -> str:
    message = f"{timestamp}-{random}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()[:6]


def generate_signature_token(secret: str) -> str:
    """
    Audit token printed on signed records.
    Format: SIG-<base36 millis>-<16 hex>-<6 hex checksum>, uppercased.
    """
    timestamp = _to_base36(int(time.time() * 1000))
    random = secrets.token_hex(8)
    return f"SIG-{timestamp}-{random}-{_checksum(timestamp, random, secret)}".upper()


def token_checksum_matches(token: str, secret: str) -> bool:
    parts = (token or "").split("-")
    if len(parts) != 4 or parts[0].upper() != "SIG":
        return False
    _, timestamp, random, checksum = (p.lower() for p in parts)
    return secrets.compare_digest(_checksum(timestamp, random, secret), checksum)
