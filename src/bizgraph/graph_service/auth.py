from __future__ import annotations

import secrets

from fastapi import Header, HTTPException

from bizgraph.settings import settings


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Gate /v1/graph behind `settings.api_key`; open when no key is configured."""
    expected = settings.api_key
    if not expected:
        return
    if not x_api_key:
        raise HTTPException(
            status_code=401,
            detail="missing X-API-Key header",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    if not secrets.compare_digest(x_api_key.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail="invalid API key")
