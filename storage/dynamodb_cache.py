"""DynamoDB-backed cache for materialized schedules."""
import json
import logging
import time
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.errors import CacheCapacityError, CacheEntryTooLargeError
from processor.models import WriteResult

logger = logging.getLogger(__name__)

SCHEDULE_PREFIX = 'schedule:'
METADATA_KEY = 'batch:metadata'
PERSON_LIST_KEY = 'batch:personList'
LOCK_KEY = 'batch:lock'


def schedule_key(person_name: str) -> str:
    return f"{SCHEDULE_PREFIX}{person_name}"


class DynamoDBCache:
    """
    Size-bounded, time-expiring key/value store on a DynamoDB table.

    Items are {cache_key, payload, size_bytes, updated_at, ttl}. `ttl` is
    also the table's TTL attribute, but DynamoDB deletes expired items
    lazily, so reads check it themselves.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(
        self,
        table_name: str,
        max_entry_bytes: int,
        max_total_bytes: int,
        max_ttl_seconds: int,
        region_name: Optional[str] = None
    ):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            max_entry_bytes: Largest serialized value accepted per key
            max_total_bytes: Largest total accepted by one put_many call
            max_ttl_seconds: Upper bound applied to every TTL
            region_name: AWS region (defaults to the environment's)
        """
        self.table_name = table_name
        self.max_entry_bytes = max_entry_bytes
        self.max_total_bytes = max_total_bytes
        self.max_ttl_seconds = max_ttl_seconds
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBCache for table: {table_name}")

    def get(self, key: str) -> Optional[dict]:
        """
        Read and decode one value.

        Returns:
            Decoded JSON value, or None on a miss or expired entry
        """
        try:
            response = self.table.get_item(Key={'cache_key': key})
        except ClientError as e:
            logger.error(f"Error reading cache key '{key}': {e}")
            raise

        item = response.get('Item')
        if not item or self._expired(item):
            return None
        return self._decode(item)

    def put(self, key: str, value: dict, ttl_seconds: int) -> int:
        """
        Write one value.

        Returns:
            Serialized size in bytes

        Raises:
            CacheEntryTooLargeError: If the value exceeds the per-entry limit
        """
        payload = self._encode(key, value)
        self.table.put_item(Item=self._item(key, payload, ttl_seconds))
        return len(payload.encode('utf-8'))

    def put_many(self, entries: Dict[str, dict], ttl_seconds: int) -> WriteResult:
        """
        Write many values in batches of 25 items.

        Oversized values and values past the aggregate limit are refused
        individually; the rest are still written.

        Args:
            entries: Key to value mapping, written in iteration order
            ttl_seconds: TTL applied uniformly to every entry

        Returns:
            WriteResult with written keys, per-key errors and total bytes
        """
        if not entries:
            return WriteResult(written=[], errors=[], size_bytes=0)

        logger.info(f"Writing {len(entries)} entries to cache")
        errors = []
        accepted = []
        total_bytes = 0

        for key, value in entries.items():
            try:
                payload = self._encode(key, value)
                size = len(payload.encode('utf-8'))
                if total_bytes + size > self.max_total_bytes:
                    raise CacheCapacityError(
                        f"Cache total would reach {total_bytes + size} bytes "
                        f"(limit {self.max_total_bytes})"
                    )
            except (CacheEntryTooLargeError, CacheCapacityError, TypeError, ValueError) as e:
                logger.error(f"Not caching '{key}': {e}")
                errors.append(f"{key}: {e}")
                continue
            total_bytes += size
            accepted.append((key, payload, size))

        written = []
        written_bytes = 0
        for i in range(0, len(accepted), self.BATCH_SIZE):
            batch = accepted[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for key, payload, _ in batch:
                        writer.put_item(Item=self._item(key, payload, ttl_seconds))
                written.extend(key for key, _, _ in batch)
                written_bytes += sum(size for _, _, size in batch)

            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                errors.extend(f"{key}: {e}" for key, _, _ in batch)
                # Continue processing remaining batches
                continue

        logger.info(
            f"Successfully wrote {len(written)} entries ({written_bytes} bytes)"
        )
        return WriteResult(written=written, errors=errors, size_bytes=written_bytes)

    def delete_many(self, keys: List[str]) -> int:
        """
        Delete keys in batches of 25 items.

        Returns:
            Count of successfully deleted keys
        """
        if not keys:
            return 0

        logger.info(f"Deleting {len(keys)} cache entries")
        success_count = 0

        for i in range(0, len(keys), self.BATCH_SIZE):
            batch = keys[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for key in batch:
                        writer.delete_item(Key={'cache_key': key})
                        success_count += 1

            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                continue

        logger.info(f"Successfully deleted {success_count} entries")
        return success_count

    def get_all_schedules(self) -> Dict[str, dict]:
        """
        Scan every unexpired schedule entry.

        Returns:
            Mapping of person name to decoded schedule
        """
        logger.info("Scanning cache table for all schedules")
        schedules = {}

        try:
            response = self.table.scan()
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error scanning cache table: {e}")
            raise

        for item in items:
            key = item['cache_key']
            if not key.startswith(SCHEDULE_PREFIX) or self._expired(item):
                continue
            value = self._decode(item)
            if value is not None:
                schedules[key[len(SCHEDULE_PREFIX):]] = value

        logger.info(f"Retrieved {len(schedules)} schedules from cache")
        return schedules

    def acquire_lock(self, owner: str, ttl_seconds: int) -> bool:
        """
        Take the run lock if it is free or its holder's lease has expired.

        Returns:
            True if the lock is now held by `owner`
        """
        now = int(time.time())
        try:
            self.table.put_item(
                Item={
                    'cache_key': LOCK_KEY,
                    'owner': owner,
                    'acquired_at': now,
                    'ttl': now + ttl_seconds
                },
                ConditionExpression='attribute_not_exists(cache_key) OR #ttl < :now',
                ExpressionAttributeNames={'#ttl': 'ttl'},
                ExpressionAttributeValues={':now': now}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.info("Run lock is held by another materialization")
                return False
            raise
        logger.info(f"Acquired run lock for {owner}")
        return True

    def release_lock(self, owner: str) -> None:
        """Release the run lock if `owner` still holds it."""
        try:
            self.table.delete_item(
                Key={'cache_key': LOCK_KEY},
                ConditionExpression='#owner = :owner',
                ExpressionAttributeNames={'#owner': 'owner'},
                ExpressionAttributeValues={':owner': owner}
            )
            logger.info(f"Released run lock for {owner}")
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.warning(f"Run lock no longer held by {owner}")
                return
            raise

    def is_locked(self) -> bool:
        """True while an unexpired run lock exists."""
        response = self.table.get_item(Key={'cache_key': LOCK_KEY})
        item = response.get('Item')
        return bool(item) and not self._expired(item)

    def _encode(self, key: str, value) -> str:
        payload = json.dumps(value, separators=(',', ':'), sort_keys=True)
        size = len(payload.encode('utf-8'))
        if size > self.max_entry_bytes:
            raise CacheEntryTooLargeError(
                f"'{key}' is {size} bytes (limit {self.max_entry_bytes})"
            )
        return payload

    def _item(self, key: str, payload: str, ttl_seconds: int) -> dict:
        now = int(time.time())
        return {
            'cache_key': key,
            'payload': payload,
            'size_bytes': len(payload.encode('utf-8')),
            'updated_at': now,
            'ttl': now + min(ttl_seconds, self.max_ttl_seconds)
        }

    def _expired(self, item: dict) -> bool:
        return int(item.get('ttl', 0)) <= int(time.time())

    def _decode(self, item: dict):
        try:
            return json.loads(item['payload'])
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to decode cache item '{item.get('cache_key')}': {e}")
            return None
