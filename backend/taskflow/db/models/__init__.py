"""ORM models exposed for metadata discovery."""
from taskflow.db.models.oauth_account import OAuthAccount
from taskflow.db.models.workflow_job import TaskWorkflowJob

__all__ = [
    "OAuthAccount",
    "TaskWorkflowJob",
]
