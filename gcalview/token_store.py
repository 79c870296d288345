from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from .cache import CacheStore
from .errors import CacheError
from .models import Account
from .serialization import deserialize_account, serialize_account

logger = logging.getLogger(__name__)

ACCOUNT_PREFIX = "account-"
ACCOUNT_SUFFIX = ".json"


class TokenStore:
    """Persists one Account (and its credential) per identity."""

    def __init__(self, store: CacheStore, icons_dir: Path) -> None:
        self.store = store
        self.icons_dir = Path(icons_dir)

    @staticmethod
    def key(name: str) -> str:
        return f"{ACCOUNT_PREFIX}{name}{ACCOUNT_SUFFIX}"

    def load(self, name: str) -> Optional[Account]:
        key = self.key(name)
        if not self.store.exists(key):
            return None
        raw = self.store.load_json(key)
        if not isinstance(raw, dict):
            raise CacheError(f"account file {key!r} is not an object")
        account = deserialize_account(raw)
        account.name = account.name or name
        return account

    def load_all(self) -> List[Account]:
        accounts: List[Account] = []
        for key in self.store.keys(prefix=ACCOUNT_PREFIX, suffix=ACCOUNT_SUFFIX):
            name = key[len(ACCOUNT_PREFIX) : -len(ACCOUNT_SUFFIX)]
            account = self.load(name)
            if account is not None:
                logger.debug("[account] loaded %s", account.name)
                accounts.append(account)
        return accounts

    def save(self, account: Account) -> None:
        if not account.name:
            raise ValueError("cannot save an account without an identity")
        self.store.store_json(self.key(account.name), serialize_account(account))
        logger.info("[account] saved %r", account.name)

    def delete(self, name: str) -> bool:
        removed = self.store.remove(self.key(name))
        for avatar in self.icons_dir.glob(f"{name}.*"):
            avatar.unlink(missing_ok=True)
        if removed:
            logger.info("[account] deleted %r", name)
        return removed

    def avatar_path(self, account: Account) -> Path:
        suffix = Path(account.avatar_url or "").suffix or ".jpg"
        if len(suffix) > 5 or "?" in suffix:
            suffix = ".jpg"
        return self.icons_dir / f"{account.name}{suffix}"
