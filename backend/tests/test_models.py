from taskflow.db.base import Base
from taskflow.db import models  # noqa: F401  ensure models are loaded


def test_metadata_contains_core_tables() -> None:
    table_names = set(Base.metadata.tables.keys())
    expected = {
        "task_workflow_jobs",
        "oauth_accounts",
    }

    assert expected.issubset(table_names)


def test_workflow_table_has_history_index() -> None:
    table = Base.metadata.tables["task_workflow_jobs"]

    assert {index.name for index in table.indexes} == {"ix_task_workflow_jobs_user_created_at"}
    assert {column.name for column in table.primary_key.columns} == {"workflow_id"}
