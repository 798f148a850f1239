"""TextBuilder Settings Service

Per-account preferences, API keys and notification settings, all stored
on the account document.
"""

from datetime import datetime, timezone
from typing import Dict, Any, List
import logging
import uuid

from database import database
from textbuilder.errors import AccountNotFoundError
from textbuilder.models.account import API_KEY_PREFIX, DEFAULT_NOTIFICATION_SETTINGS, ApiKey
from textbuilder.services.account_service import account_service

logger = logging.getLogger(__name__)


def generate_api_key() -> str:
    """tb_ followed by 32 random hex characters."""
    return f"{API_KEY_PREFIX}_{uuid.uuid4().hex}"


def _api_key_view(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": record.get("name"),
        "key": record.get("key"),
        "createdAt": record.get("created_at"),
    }


class SettingsService:

    def _get_db(self):
        return database.get_db()

    async def _set(self, account_id: str, update: Dict[str, Any]) -> None:
        db = self._get_db()
        update["updated_at"] = datetime.now(timezone.utc)
        result = await db.accounts.update_one({"account_id": account_id}, {"$set": update})
        if result.matched_count == 0:
            raise AccountNotFoundError(account_id)

    async def get_preferences(self, account_id: str) -> Dict[str, Any]:
        account = await account_service.get_account(account_id)
        return account.get("preferences") or {}

    async def update_preferences(self, account_id: str, preferences: Dict[str, Any]) -> Dict[str, Any]:
        await self._set(account_id, {"preferences": preferences})
        return preferences

    async def list_api_keys(self, account_id: str) -> List[Dict[str, Any]]:
        account = await account_service.get_account(account_id)
        return [_api_key_view(k) for k in account.get("api_keys") or []]

    async def create_api_key(self, account_id: str, name: str) -> Dict[str, Any]:
        db = self._get_db()
        record = ApiKey(name=name, key=generate_api_key()).model_dump()
        result = await db.accounts.update_one(
            {"account_id": account_id},
            {
                "$push": {"api_keys": record},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
        )
        if result.matched_count == 0:
            raise AccountNotFoundError(account_id)
        logger.info(f"API key '{name}' created for account {account_id}")
        return _api_key_view(record)

    async def delete_api_key(self, account_id: str, key: str) -> bool:
        """Remove a key. False when the account has no such key."""
        db = self._get_db()
        result = await db.accounts.update_one(
            {"account_id": account_id, "api_keys.key": key},
            {
                "$pull": {"api_keys": {"key": key}},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
        )
        if result.modified_count == 0:
            return False
        logger.info(f"API key revoked for account {account_id}")
        return True

    async def get_notification_settings(self, account_id: str) -> Dict[str, Any]:
        account = await account_service.get_account(account_id)
        return {**DEFAULT_NOTIFICATION_SETTINGS, **(account.get("notification_settings") or {})}

    async def update_notification_settings(self, account_id: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        await self._set(account_id, {"notification_settings": settings})
        return {**DEFAULT_NOTIFICATION_SETTINGS, **settings}


# Global service instance
settings_service = SettingsService()
