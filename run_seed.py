import asyncio

from chatqueue.core.db import close_engine, get_session_factory, init_engine
from chatqueue.infra.db.seed import seed_default_operators


async def main() -> None:
    engine = init_engine()
    try:
        session_factory = get_session_factory()
        async with session_factory() as session:
            await seed_default_operators(session)
            await session.commit()
    finally:
        print("Seeded default operators")
        await close_engine(engine)


if __name__ == "__main__":
    asyncio.run(main())
