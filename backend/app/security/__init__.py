import hashlib

from fastapi import Request


def client_ip(request: Request) -> str:
    # If later behind a proxy, parse X-Forwarded-For here.
    client = request.client
    return client.host if client and client.host else "0.0.0.0"


def fingerprint_ip(ip: str) -> str:
    """One-way SHA-256 fingerprint of an IP, so raw addresses are never stored."""
    return hashlib.sha256((ip or "").encode("utf-8")).hexdigest()


__all__ = ["client_ip", "fingerprint_ip"]
