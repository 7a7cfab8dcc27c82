from app.services.schedule_service import (
    create_schedule_definition,
    deactivate_schedule_definition,
    list_schedule_definitions,
    update_schedule_definition,
)

__all__ = [
    "create_schedule_definition",
    "deactivate_schedule_definition",
    "list_schedule_definitions",
    "update_schedule_definition",
]
