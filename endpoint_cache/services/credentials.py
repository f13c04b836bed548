from __future__ import annotations

from typing import Optional

import structlog

from endpoint_cache.schemas import Credential
from endpoint_cache.storage import Storage

log = structlog.get_logger(__name__)


class CredentialResolver:
    """Picks the bearer credential for a server URL, if any.

    Authentication is opportunistic: plenty of endpoints need no token, so a
    failed lookup is logged and treated as "no credential".
    """

    def __init__(self, storage: Storage):
        self._storage = storage

    async def resolve(self, server_url: str) -> Optional[Credential]:
        try:
            credentials = await self._storage.get_credentials_by_server_url(server_url)
        except Exception as exc:
            log.warning("credentials.lookup.failed", server_url=server_url, error=str(exc))
            return None
        # Storage returns active rows newest-first
        return credentials[0] if credentials else None
