from uuid import UUID

from chatqueue.domain.enums import Department

GLOBAL_CHANNEL = "operators:all"


def operator_channel(operator_id: UUID) -> str:
    return f"operator:{operator_id}"


def department_channel(department: Department) -> str:
    return f"department:{department.value}"
