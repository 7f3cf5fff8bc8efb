"""DynamoDB-backed store with an in-memory TTL cache for access-key lookups."""

import asyncio
import time
import uuid

from gemrelay.store.base import Store, StoreError
from gemrelay.store.models import AccessKey, AttemptRecord, Credential, utc_now


class DynamoDBStore(Store):
    """Four tables: credentials, access keys (GSI on secret), settings, call logs."""

    CACHE_TTL = 300  # 5 minutes

    def __init__(
        self,
        credentials_table: str,
        access_keys_table: str,
        settings_table: str,
        logs_table: str,
        region: str = "us-east-1",
    ):
        self._table_names = {
            "credentials": credentials_table,
            "access_keys": access_keys_table,
            "settings": settings_table,
            "logs": logs_table,
        }
        self._region = region
        self._resource = None
        self._tables: dict = {}
        self._cache: dict[str, tuple[str, float]] = {}

    def _get_table(self, name: str):
        """Lazy-init boto3 Table resources."""
        if name not in self._tables:
            if self._resource is None:
                import boto3

                self._resource = boto3.resource("dynamodb", region_name=self._region)
            self._tables[name] = self._resource.Table(self._table_names[name])
        return self._tables[name]

    async def _run(self, fn, *args, **kwargs):
        """Run a blocking boto3 call off the event loop, wrapping failures."""
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"DynamoDB error: {e}") from e

    @staticmethod
    def _to_credential(item: dict) -> Credential:
        return Credential(
            credential_id=item["credential_id"],
            api_key=item["api_key"],
            is_active=bool(item.get("is_active", True)),
            is_valid=bool(item.get("is_valid", True)),
            request_count=int(item.get("request_count", 0)),
            last_used_at=item.get("last_used_at"),
            created_at=item.get("created_at", ""),
        )

    def _scan_all(self, table_name: str, **kwargs) -> list[dict]:
        table = self._get_table(table_name)
        items: list[dict] = []
        resp = table.scan(**kwargs)
        items.extend(resp.get("Items", []))
        while "LastEvaluatedKey" in resp:
            resp = table.scan(ExclusiveStartKey=resp["LastEvaluatedKey"], **kwargs)
            items.extend(resp.get("Items", []))
        return items

    def _update_if_exists(self, table_name: str, key: dict, expression: str, values: dict) -> bool:
        """Conditional update; False when no item has this key."""
        from botocore.exceptions import ClientError

        try:
            self._get_table(table_name).update_item(
                Key=key,
                UpdateExpression=expression,
                ExpressionAttributeValues=values,
                ConditionExpression=f"attribute_exists({next(iter(key))})",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            raise
        return True

    def _delete_if_exists(self, table_name: str, key: dict) -> bool:
        resp = self._get_table(table_name).delete_item(Key=key, ReturnValues="ALL_OLD")
        return "Attributes" in resp

    # --- CredentialStore ---

    def _scan_eligible(self) -> list[dict]:
        from boto3.dynamodb.conditions import Attr

        return self._scan_all(
            "credentials",
            FilterExpression=Attr("is_active").eq(True) & Attr("is_valid").eq(True),
        )

    async def list_active_and_valid(self) -> list[Credential]:
        items = await self._run(self._scan_eligible)
        return [self._to_credential(item) for item in items]

    async def list_all(self) -> list[Credential]:
        items = await self._run(self._scan_all, "credentials")
        return [self._to_credential(item) for item in items]

    def _update_credential(self, credential_id: str, expression: str, values: dict) -> None:
        self._get_table("credentials").update_item(
            Key={"credential_id": credential_id},
            UpdateExpression=expression,
            ExpressionAttributeValues=values,
        )

    async def set_invalid(self, credential_id: str) -> None:
        await self._run(
            self._update_credential, credential_id,
            "SET is_valid = :f, last_used_at = :now",
            {":f": False, ":now": utc_now()},
        )

    async def set_valid(self, credential_id: str) -> None:
        await self._run(
            self._update_credential, credential_id,
            "SET is_valid = :t",
            {":t": True},
        )

    async def set_active(self, credential_id: str, is_active: bool) -> bool:
        return await self._run(
            self._update_if_exists, "credentials", {"credential_id": credential_id},
            "SET is_active = :a", {":a": is_active},
        )

    async def delete_credential(self, credential_id: str) -> bool:
        return await self._run(self._delete_if_exists, "credentials", {"credential_id": credential_id})

    async def increment_usage(self, credential_id: str) -> None:
        # ADD is applied server-side, so concurrent increments never race
        await self._run(
            self._update_credential, credential_id,
            "ADD request_count :one SET last_used_at = :now",
            {":one": 1, ":now": utc_now()},
        )

    def _put_credentials(self, credentials: list[Credential]) -> None:
        table = self._get_table("credentials")
        with table.batch_writer() as batch:
            for credential in credentials:
                batch.put_item(Item={
                    "credential_id": credential.credential_id,
                    "api_key": credential.api_key,
                    "is_active": credential.is_active,
                    "is_valid": credential.is_valid,
                    "request_count": credential.request_count,
                    "created_at": credential.created_at,
                })

    async def add_credentials(self, api_keys: list[str]) -> list[Credential]:
        existing = {c.api_key for c in await self.list_all()}
        added = []
        for api_key in api_keys:
            if api_key in existing:
                continue
            added.append(Credential(credential_id=uuid.uuid4().hex, api_key=api_key))
            existing.add(api_key)
        if added:
            await self._run(self._put_credentials, added)
        return added

    async def reset_stats(self) -> None:
        for credential in await self.list_all():
            await self._run(
                self._update_credential, credential.credential_id,
                "SET request_count = :zero REMOVE last_used_at",
                {":zero": 0},
            )

    # --- AccessKeyStore ---

    async def lookup_by_secret(self, secret: str) -> str | None:
        # Check cache first
        if secret in self._cache:
            key_id, expires_at = self._cache[secret]
            if time.monotonic() < expires_at:
                return key_id
            # Expired: remove and re-query
            del self._cache[secret]

        key_id = await self._run(self._query_by_secret, secret)

        # Only cache hits: don't cache None (avoids stale denial for new keys)
        if key_id is not None:
            self._cache[secret] = (key_id, time.monotonic() + self.CACHE_TTL)

        return key_id

    def _query_by_secret(self, secret: str) -> str | None:
        """Query GSI for an access key by its secret."""
        from boto3.dynamodb.conditions import Key

        resp = self._get_table("access_keys").query(
            IndexName="secret_index",
            KeyConditionExpression=Key("secret").eq(secret),
            Limit=1,
        )

        items = resp.get("Items", [])
        if not items or not items[0].get("is_active", True):
            return None
        return items[0]["key_id"]

    def _secret_taken(self, secret: str) -> bool:
        from boto3.dynamodb.conditions import Key

        resp = self._get_table("access_keys").query(
            IndexName="secret_index",
            KeyConditionExpression=Key("secret").eq(secret),
            Limit=1,
        )
        return bool(resp.get("Items"))

    def _forget_key(self, key_id: str) -> None:
        """Drop cached lookups for a key whose state changed."""
        self._cache = {secret: entry for secret, entry in self._cache.items() if entry[0] != key_id}

    async def list_access_keys(self) -> list[AccessKey]:
        items = await self._run(self._scan_all, "access_keys")
        return [
            AccessKey(
                key_id=item["key_id"],
                secret=item["secret"],
                is_active=bool(item.get("is_active", True)),
                created_at=item.get("created_at", ""),
            )
            for item in items
        ]

    async def create_access_key(self, secret: str) -> AccessKey | None:
        if await self._run(self._secret_taken, secret):
            return None
        access_key = AccessKey(key_id=uuid.uuid4().hex, secret=secret)
        await self._run(self._put_item, "access_keys", vars(access_key).copy())
        return access_key

    async def set_access_key_active(self, key_id: str, is_active: bool) -> bool:
        updated = await self._run(
            self._update_if_exists, "access_keys", {"key_id": key_id},
            "SET is_active = :a", {":a": is_active},
        )
        self._forget_key(key_id)
        return updated

    async def delete_access_key(self, key_id: str) -> bool:
        deleted = await self._run(self._delete_if_exists, "access_keys", {"key_id": key_id})
        self._forget_key(key_id)
        return deleted

    def _put_item(self, table_name: str, item: dict) -> None:
        self._get_table(table_name).put_item(Item=item)

    # --- SettingsStore ---

    def _get_setting(self, key: str) -> str | None:
        resp = self._get_table("settings").get_item(Key={"setting_key": key})
        item = resp.get("Item")
        return item["setting_value"] if item else None

    async def get_setting(self, key: str) -> str | None:
        return await self._run(self._get_setting, key)

    async def put_setting(self, key: str, value: str) -> None:
        await self._run(
            self._put_item, "settings",
            {"setting_key": key, "setting_value": value, "updated_at": utc_now()},
        )

    # --- CallLogStore ---

    async def append_log(self, record: AttemptRecord) -> None:
        item = {"log_id": uuid.uuid4().hex, **record.to_dict()}
        # DynamoDB rejects floats; durations are stored as whole milliseconds
        item["duration_ms"] = int(record.duration_ms)
        item = {k: v for k, v in item.items() if v is not None}
        await self._run(self._put_item, "logs", item)

    async def recent_logs(self, limit: int = 50) -> list[dict]:
        items = await self._run(self._scan_all, "logs")
        items.sort(key=lambda item: item.get("timestamp", ""), reverse=True)
        return items[:limit]

    def _count_logs(self, since: str | None, access_key_id: str | None) -> int:
        from boto3.dynamodb.conditions import Attr

        conditions = []
        if since is not None:
            conditions.append(Attr("timestamp").gte(since))
        if access_key_id is not None:
            conditions.append(Attr("access_key_id").eq(access_key_id))

        kwargs: dict = {"Select": "COUNT"}
        if conditions:
            expression = conditions[0]
            for condition in conditions[1:]:
                expression = expression & condition
            kwargs["FilterExpression"] = expression

        table = self._get_table("logs")
        resp = table.scan(**kwargs)
        total = resp.get("Count", 0)
        while "LastEvaluatedKey" in resp:
            resp = table.scan(ExclusiveStartKey=resp["LastEvaluatedKey"], **kwargs)
            total += resp.get("Count", 0)
        return total

    async def count_logs(self, since: str | None = None, access_key_id: str | None = None) -> int:
        return await self._run(self._count_logs, since, access_key_id)

    def _delete_logs(self) -> int:
        items = self._scan_all("logs", ProjectionExpression="log_id")
        with self._get_table("logs").batch_writer() as batch:
            for item in items:
                batch.delete_item(Key={"log_id": item["log_id"]})
        return len(items)

    async def clear_logs(self) -> int:
        return await self._run(self._delete_logs)
