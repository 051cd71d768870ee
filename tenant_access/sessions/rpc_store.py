"""
Session store backed by the remote session procedures.

    POST /rpc/register_session          {account_id, tenant_id, session_id, max_sessions} -> {evicted: [...]}
    POST /rpc/update_session_heartbeat  {account_id, session_id}                          -> {updated: bool}
    POST /rpc/remove_session            {account_id, session_id}                          -> {removed: bool}
    POST /rpc/list_sessions             {account_id}                                      -> {sessions: [...]}

The remote side performs eviction atomically; this client only relays.
Empty responses are accepted for the write procedures (older deployments
return 204).
"""

import logging
from datetime import datetime
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tenant_access.models.base import as_utc
from tenant_access.platform.rpc import RpcClient, RpcResponseError, RpcTransportError
from tenant_access.sessions.errors import SessionStoreError
from tenant_access.sessions.models import SessionRecord
from tenant_access.sessions.store import SessionStore

logger = logging.getLogger(__name__)


class RegisterSessionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    evicted: List[str] = Field(default_factory=list)


class HeartbeatResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    updated: bool = True


class RemoveSessionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    removed: bool = True


class SessionRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: str
    account_id: str
    tenant_id: str
    created_at: datetime
    last_heartbeat_at: datetime
    sequence: Optional[int] = None

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            session_id=self.session_id,
            account_id=self.account_id,
            tenant_id=self.tenant_id,
            created_at=as_utc(self.created_at),
            last_heartbeat_at=as_utc(self.last_heartbeat_at),
            sequence=self.sequence,
        )


class ListSessionsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessions: List[SessionRow] = Field(default_factory=list)


class HttpSessionStore(SessionStore):
    """SessionStore over HTTP. Pass client= to inject a transport in tests."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._rpc = RpcClient(base_url, api_key=api_key, timeout_seconds=timeout_seconds, client=client)

    async def _call(self, procedure: str, payload: dict, model):
        try:
            body = await self._rpc.call(procedure, payload)
        except (RpcTransportError, RpcResponseError) as e:
            raise SessionStoreError(procedure, e.detail, cause=e) from e

        try:
            return model.model_validate(body if body is not None else {})
        except ValidationError as e:
            raise SessionStoreError(
                procedure, f"malformed response: {e.error_count()} validation error(s)", cause=e
            ) from e

    async def register_session(
        self,
        account_id: str,
        tenant_id: str,
        session_id: str,
        max_sessions: int,
    ) -> List[str]:
        parsed = await self._call(
            "register_session",
            {
                "account_id": account_id,
                "tenant_id": tenant_id,
                "session_id": session_id,
                "max_sessions": max_sessions,
            },
            RegisterSessionResponse,
        )
        return parsed.evicted

    async def update_session_heartbeat(self, account_id: str, session_id: str) -> bool:
        parsed = await self._call(
            "update_session_heartbeat",
            {"account_id": account_id, "session_id": session_id},
            HeartbeatResponse,
        )
        return parsed.updated

    async def remove_session(self, account_id: str, session_id: str) -> bool:
        parsed = await self._call(
            "remove_session",
            {"account_id": account_id, "session_id": session_id},
            RemoveSessionResponse,
        )
        return parsed.removed

    async def list_sessions(self, account_id: str) -> List[SessionRecord]:
        parsed = await self._call("list_sessions", {"account_id": account_id}, ListSessionsResponse)
        records = [row.to_record() for row in parsed.sessions]
        return sorted(records, key=SessionRecord.eviction_key)

    async def close(self):
        await self._rpc.close()
