from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatqueue.domain.enums import Department, OperatorProfile
from chatqueue.infra.db.models import Operator

DEFAULT_OPERATORS: list[dict[str, str | None]] = [
    {
        "name": "Admin",
        "email": "admin@example.com",
        "department": None,
        "profile": OperatorProfile.ADMIN.value,
    },
    {
        "name": "Carla Mendes",
        "email": "carla.mendes@example.com",
        "department": Department.FISCAL.value,
        "profile": OperatorProfile.SUPERVISOR.value,
    },
    {
        "name": "Bruno Lima",
        "email": "bruno.lima@example.com",
        "department": Department.FISCAL.value,
        "profile": OperatorProfile.OPERATOR.value,
    },
    {
        "name": "Ana Souza",
        "email": "ana.souza@example.com",
        "department": Department.FISCAL.value,
        "profile": OperatorProfile.OPERATOR.value,
    },
    {
        "name": "Diego Rocha",
        "email": "diego.rocha@example.com",
        "department": Department.ACCOUNTING.value,
        "profile": OperatorProfile.OPERATOR.value,
    },
]


async def seed_default_operators(session: AsyncSession) -> list[Operator]:
    existing_rows = await session.execute(select(Operator.email))
    existing_emails = {
        email.strip().lower() for email in existing_rows.scalars().all() if email
    }

    inserts: list[Operator] = []
    for item in DEFAULT_OPERATORS:
        email = str(item["email"]).strip().lower()
        if email in existing_emails:
            continue

        department = item["department"]
        inserts.append(
            Operator(
                name=str(item["name"]),
                email=email,
                department=Department(department) if department else None,
                profile=OperatorProfile(str(item["profile"])),
                is_active=True,
            )
        )

    if inserts:
        session.add_all(inserts)
        await session.flush()
    return inserts
