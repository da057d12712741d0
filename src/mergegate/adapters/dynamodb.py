"""
DynamoDB adapter for mergegate.

Requires the `dynamodb` extra: pip install mergegate[dynamodb]

Several workers may share one table. Each save is a conditional put keyed
on the stored history length, so two workers that loaded the same
proposal cannot both append a transition; the loser gets
ConcurrentModification and the service reports a failed result.

Usage:
    from mergegate.adapters.dynamodb import DynamoDBRepository
    from mergegate import LifecycleService

    repo = DynamoDBRepository(table_name="merge-proposals")
    service = LifecycleService(repository=repo)
"""

import logging
from typing import Any, Optional

from mergegate.config import Settings
from mergegate.errors import ConcurrentModification
from mergegate.repository import expected_stored_history
from mergegate.states import ChangeProposal

logger = logging.getLogger(__name__)

try:
    import boto3
    from botocore.exceptions import ClientError
except ImportError:
    raise ImportError("boto3 is required for the DynamoDB adapter. Install it with: pip install mergegate[dynamodb]")

CONDITION_FAILED = "ConditionalCheckFailedException"


def write_condition(proposal: ChangeProposal) -> dict[str, Any]:
    """put_item arguments that only let this proposal replace the copy it was loaded from."""
    expected = expected_stored_history(proposal)
    if expected is None:
        return {"ConditionExpression": "attribute_not_exists(proposal_id)"}
    return {
        "ConditionExpression": "size(#h) = :seen",
        "ExpressionAttributeNames": {"#h": "history"},
        "ExpressionAttributeValues": {":seen": expected},
    }


class DynamoDBRepository:
    """
    DynamoDB-backed registry of ChangeProposals.

    Table schema:
        Partition key: proposal_id (S)

    Optional GSI for queue scans by state:
        GSI name: state-index
        Partition key: state (S)
        Sort key: updated_at (S)
    """

    STATE_INDEX = "state-index"

    def __init__(
        self,
        table_name: Optional[str] = None,
        region_name: Optional[str] = None,
        client: Optional[Any] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or Settings.from_env()
        self._table_name = table_name or settings.table_name
        self._region_name = region_name or settings.region_name
        self._client = client
        self._table = None

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def table(self) -> Any:
        if self._table is None:
            if self._client is None:
                kwargs = {}
                if self._region_name:
                    kwargs["region_name"] = self._region_name
                self._client = boto3.resource("dynamodb", **kwargs)
            self._table = self._client.Table(self._table_name)
        return self._table

    def save(self, proposal: ChangeProposal) -> ChangeProposal:
        try:
            self.table.put_item(Item=proposal.to_dict(), **write_condition(proposal))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == CONDITION_FAILED:
                conflict = ConcurrentModification(proposal.proposal_id, expected_stored_history(proposal))
                logger.warning(f"[mergegate] DynamoDB rejected stale write: {conflict}")
                raise conflict from e
            logger.error(f"[mergegate] DynamoDB save failed for {proposal.proposal_id}: {e}")
            raise
        return proposal

    def get(self, proposal_id: str) -> Optional[ChangeProposal]:
        # Strongly consistent, so the history length we condition on is current
        try:
            response = self.table.get_item(Key={"proposal_id": proposal_id}, ConsistentRead=True)
        except ClientError as e:
            logger.error(f"[mergegate] DynamoDB get failed for {proposal_id}: {e}")
            raise
        item = response.get("Item")
        return ChangeProposal.from_dict(item) if item is not None else None

    def delete(self, proposal_id: str) -> bool:
        try:
            response = self.table.delete_item(Key={"proposal_id": proposal_id}, ReturnValues="ALL_OLD")
        except ClientError as e:
            logger.error(f"[mergegate] DynamoDB delete failed for {proposal_id}: {e}")
            raise
        return "Attributes" in response

    def list_by_state(self, state: str, limit: int = 100) -> list[ChangeProposal]:
        """Newest-updated first, from the state index."""
        try:
            response = self.table.query(
                IndexName=self.STATE_INDEX,
                KeyConditionExpression="#s = :state",
                ExpressionAttributeNames={"#s": "state"},
                ExpressionAttributeValues={":state": str(getattr(state, "value", state))},
                Limit=limit,
                ScanIndexForward=False,
            )
        except ClientError as e:
            logger.error(f"[mergegate] DynamoDB list_by_state failed for {state}: {e}")
            raise
        return [ChangeProposal.from_dict(item) for item in response.get("Items", [])]
