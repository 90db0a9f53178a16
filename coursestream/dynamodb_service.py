# coursestream/dynamodb_service.py
import logging
import time
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import boto3
from botocore.exceptions import ClientError

from .errors import StorageError
from .store import KeyValueStore

logger = logging.getLogger(__name__)


class DynamoDBStore(KeyValueStore):
    """Keyed store backed by a single DynamoDB table.

    Table layout: partition key ``pk`` (string), the record under ``data``,
    set members under ``members`` (string set), and ``expires_at`` (epoch
    seconds) configured as the table's TTL attribute. DynamoDB deletes
    expired items lazily, so reads filter on ``expires_at`` as well.
    """

    def __init__(self, table_name: str, region: str = 'ap-southeast-2', table=None,
                 clock: Callable[[], float] = time.time):
        self.region = region
        self.table_name = table_name
        self.clock = clock
        if table is None:
            dynamodb = boto3.resource('dynamodb', region_name=region)
            table = dynamodb.Table(table_name)
        self.table = table

    def _convert_floats_to_decimal(self, obj):
        """Convert float values to Decimal for DynamoDB compatibility"""
        if isinstance(obj, float):
            return Decimal(str(obj))
        elif isinstance(obj, dict):
            return {k: self._convert_floats_to_decimal(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._convert_floats_to_decimal(item) for item in obj]
        else:
            return obj

    def _convert_decimals(self, obj):
        """Inverse of _convert_floats_to_decimal for values read back"""
        if isinstance(obj, Decimal):
            return int(obj) if obj == obj.to_integral_value() else float(obj)
        elif isinstance(obj, dict):
            return {k: self._convert_decimals(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._convert_decimals(item) for item in obj]
        else:
            return obj

    def _expires_at(self, ttl: Optional[int]) -> Optional[int]:
        return int(self.clock() + ttl) if ttl else None

    def _is_expired(self, item: Dict[str, Any]) -> bool:
        expires_at = item.get('expires_at')
        return expires_at is not None and int(expires_at) <= self.clock()

    def _get_item(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.table.get_item(Key={'pk': key})
        except ClientError as e:
            logger.error("❌ Error reading %s: %s", key, e)
            raise StorageError(f"Failed to read {key}") from e
        item = response.get('Item')
        if item is None or self._is_expired(item):
            return None
        return item

    def put(self, key, value, ttl=None):
        item = {'pk': key, 'data': self._convert_floats_to_decimal(value)}
        expires_at = self._expires_at(ttl)
        if expires_at is not None:
            item['expires_at'] = expires_at
        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            logger.error("❌ Error writing %s: %s", key, e)
            raise StorageError(f"Failed to write {key}") from e

    def get(self, key):
        item = self._get_item(key)
        if item is None or 'data' not in item:
            return None
        return self._convert_decimals(item['data'])

    def delete(self, key):
        try:
            self.table.delete_item(Key={'pk': key})
        except ClientError as e:
            logger.error("❌ Error deleting %s: %s", key, e)
            raise StorageError(f"Failed to delete {key}") from e

    def add_to_set(self, key, member, ttl=None):
        update_expression = "ADD members :member"
        expression_values = {':member': {member}}
        expires_at = self._expires_at(ttl)
        if expires_at is not None:
            update_expression += " SET expires_at = :expires_at"
            expression_values[':expires_at'] = expires_at
        try:
            self.table.update_item(
                Key={'pk': key},
                UpdateExpression=update_expression,
                ExpressionAttributeValues=expression_values
            )
        except ClientError as e:
            logger.error("❌ Error adding to set %s: %s", key, e)
            raise StorageError(f"Failed to update {key}") from e

    def remove_from_set(self, key, member):
        try:
            self.table.update_item(
                Key={'pk': key},
                UpdateExpression="DELETE members :member",
                ExpressionAttributeValues={':member': {member}}
            )
        except ClientError as e:
            logger.error("❌ Error removing from set %s: %s", key, e)
            raise StorageError(f"Failed to update {key}") from e

    def members(self, key):
        item = self._get_item(key)
        if item is None:
            return set()
        return set(item.get('members', ()))
