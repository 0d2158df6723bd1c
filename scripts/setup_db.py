"""
Database setup script - creates tables, a local user and a starter dispatch template
"""
import asyncio
import secrets
import sys

from sqlalchemy import select

from dispatch_api.config import get_settings
from dispatch_api.database import engine, Base, AsyncSessionLocal
from dispatch_api.models import User, Note

settings = get_settings()

STARTER_TEMPLATE = "\n".join([
    "{{if:day=weekday}}",
    "- [ ] Review inbox",
    "- [ ] Plan tomorrow >{{date:YYYY-MM-DD}}",
    "{{endif}}",
    "{{if:day=sat}}- [ ] Weekly review",
    "{{if:dom=1}}",
    "- [ ] Pay rent >{{date:YYYY-MM-DD}}",
    "{{endif}}",
])


async def setup_database(email: str):
    """Create tables and seed a user with a template note"""
    print("Creating database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Tables created")

    async with AsyncSessionLocal() as session:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user:
            print(f"User {email} already exists")
        else:
            user = User(email=email, full_name="Local User", api_key=secrets.token_urlsafe(32))
            session.add(user)
            await session.flush()
            session.add(Note(
                user_id=user.id,
                title=settings.TEMPLATE_NOTE_TITLE,
                content=STARTER_TEMPLATE,
            ))
            await session.commit()
            print("Seed data created")

    print("\nDatabase setup complete!")
    print(f"\nUser: {user.email}")
    print(f"API key: {user.api_key}")


if __name__ == "__main__":
    asyncio.run(setup_database(sys.argv[1] if len(sys.argv) > 1 else "me@localhost"))
