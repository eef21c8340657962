"""
Cached session context.

Remembers who is signed in and which branch they work for, so that
records can be stamped with ``created_by``/``branch_id`` while offline.
The context is written to a small YAML file next to the local database:

```yaml
user_id: "b7c1..."
email: "clerk@example.com"
role: "staff"
branch_id: "3f2a..."
```
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
import yaml

from ..entities.records import EntityTable
from ..exceptions import AuthenticationRequiredError, RemoteServiceError, ValidationError
from ..remote.base import RemoteService, eq
from .store import LocalStore

logger = logging.getLogger(__name__)

USER_ROLES_TABLE = "user_roles"


@dataclass
class SessionContext:
    """Who is signed in on this device."""

    user_id: str
    email: str | None = None
    full_name: str | None = None
    role: str | None = None
    branch_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionContext:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class ContextCache:
    """YAML file holding the last known session context."""

    def __init__(self, path: Path):
        self.path = path
        self._context: SessionContext | None = None
        self._loaded = False

    async def load(self) -> SessionContext | None:
        """Load the cached context; a missing or corrupt file means none."""
        if self._loaded:
            return self._context

        self._loaded = True
        if not await aiofiles.os.path.exists(self.path):
            return None

        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(await f.read()) or {}
            if data.get("user_id"):
                self._context = SessionContext.from_dict(data)
        except (OSError, yaml.YAMLError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable session context {self.path}: {e}")
            self._context = None

        return self._context

    async def save(self, context: SessionContext) -> None:
        self._context = context
        self._loaded = True
        try:
            await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
            async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
                await f.write(yaml.safe_dump(context.to_dict(), default_flow_style=False))
        except OSError as e:
            # Keep the in-memory copy; the next save retries the file
            logger.warning(f"Could not persist session context: {e}")

    async def clear(self) -> None:
        """Forget the context (sign-out)."""
        self._context = None
        self._loaded = True
        if await aiofiles.os.path.exists(self.path):
            await aiofiles.os.remove(self.path)


class ContextResolver:
    """Resolves the current user and branch without blocking on the network.

    Branch resolution order:
    1. branch id stored in the cached context
    2. the remote ``user_roles`` row, raced against a short timeout
    3. the only local branch (or the first one for admins)
    """

    def __init__(
        self,
        cache: ContextCache,
        store: LocalStore,
        remote: RemoteService | None = None,
        lookup_timeout: float = 1.5,
    ):
        self.cache = cache
        self.store = store
        self.remote = remote
        self.lookup_timeout = lookup_timeout

    async def current_user(self) -> SessionContext:
        context = await self.cache.load()
        if context is None or not context.user_id:
            raise AuthenticationRequiredError("Not signed in (offline mode)")
        return context

    async def current_user_id(self) -> str:
        return (await self.current_user()).user_id

    async def resolve_branch_id(self) -> str:
        context = await self.current_user()
        if context.branch_id:
            return context.branch_id

        branch_id = await self._lookup_remote_branch(context)
        if branch_id:
            context.branch_id = branch_id
            await self.cache.save(context)
            return branch_id

        branches = await self.store.get_all(EntityTable.BRANCHES)
        if len(branches) == 1 or (branches and context.is_admin):
            branches.sort(key=lambda b: (b.get("created_at") or "", b["id"]))
            return branches[0]["id"]

        raise ValidationError("branch_id", "no branch assigned to the current user")

    async def _lookup_remote_branch(self, context: SessionContext) -> str | None:
        if self.remote is None or not self.remote.is_authenticated():
            return None

        try:
            rows = await asyncio.wait_for(
                self.remote.select(USER_ROLES_TABLE, [eq("user_id", context.user_id)], limit=1),
                timeout=self.lookup_timeout,
            )
        except asyncio.TimeoutError:
            logger.debug("Branch lookup timed out, using local data")
            return None
        except RemoteServiceError as e:
            logger.debug(f"Branch lookup failed, using local data: {e}")
            return None

        if rows and rows[0].get("branch_id"):
            if rows[0].get("role") and not context.role:
                context.role = rows[0]["role"]
            return rows[0]["branch_id"]
        return None
