"""Thin DynamoDB access layer with environment-prefixed table names.

Tables are named ``<prefix>-<table>`` where the prefix is
``DYNAMODB_TABLE_PREFIX`` or ``fulfillment-<ENVIRONMENT>``.
"""

import os
from typing import Any

import boto3
from botocore.exceptions import ClientError

_dynamodb_service_instance: "DynamoDBService | None" = None


def get_dynamodb_service(environment: str | None = None) -> "DynamoDBService":
    """Shared DynamoDBService, created on first use.

    ``environment`` only matters on the first call.
    """
    global _dynamodb_service_instance
    if _dynamodb_service_instance is None:
        _dynamodb_service_instance = DynamoDBService(environment)
    return _dynamodb_service_instance


def reset_dynamodb_service() -> None:
    """Drop the shared instance so the next call builds a new boto3 resource.

    Tests call this after entering a moto context.
    """
    global _dynamodb_service_instance
    _dynamodb_service_instance = None


class DynamoDBService:
    """Key-based reads and expression updates on prefixed tables."""

    def __init__(self, environment: str | None = None) -> None:
        self.environment = environment or os.getenv("ENVIRONMENT", "dev")
        self.name_prefix = os.getenv("DYNAMODB_TABLE_PREFIX") or f"fulfillment-{self.environment}"
        self._resource = boto3.resource("dynamodb")
        self._tables: dict[str, Any] = {}

    def table_name(self, table: str) -> str:
        return f"{self.name_prefix}-{table}"

    def _table(self, table: str) -> Any:
        if table not in self._tables:
            self._tables[table] = self._resource.Table(self.table_name(table))
        return self._tables[table]

    def get_item(
        self,
        table: str,
        key: dict[str, Any],
        consistent_read: bool = False,
    ) -> dict[str, Any] | None:
        """Fetch one item, or None when the key is absent."""
        response = self._table(table).get_item(Key=key, ConsistentRead=consistent_read)
        item: dict[str, Any] | None = response.get("Item")
        return item

    def update_item(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        """Apply an update expression and return the item as written.

        Creates the item if it does not exist (DynamoDB upsert semantics).

        Args:
            table: Table name without prefix
            key: Primary key
            update_expression: SET / REMOVE / ADD expression
            expression_attribute_values: ``:placeholder`` values
            expression_attribute_names: ``#placeholder`` names, for reserved words
            condition_expression: Guard evaluated atomically with the write

        Returns:
            All attributes after the update, or None if the condition failed.

        Raises:
            ClientError: For any failure other than a failed condition.
        """
        request: dict[str, Any] = {
            "Key": key,
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": expression_attribute_values,
            "ReturnValues": "ALL_NEW",
        }
        if expression_attribute_names:
            request["ExpressionAttributeNames"] = expression_attribute_names
        if condition_expression:
            request["ConditionExpression"] = condition_expression

        try:
            response = self._table(table).update_item(**request)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return None
            raise
        attrs: dict[str, Any] | None = response.get("Attributes")
        return attrs
