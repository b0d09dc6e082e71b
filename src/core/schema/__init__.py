from src.core.schema.adapter import (
    LogicalSchema,
    SchemaAdapter,
    get_schema_adapter,
    probe_schema,
    schema_adapter,
)
from src.core.schema.views import (
    assignment_view,
    enrollment_view,
    ledger_view,
    room_view,
)

__all__ = [
    "LogicalSchema",
    "SchemaAdapter",
    "get_schema_adapter",
    "probe_schema",
    "schema_adapter",
    "assignment_view",
    "enrollment_view",
    "ledger_view",
    "room_view",
]
