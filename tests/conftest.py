import os

# Configure before any storefront import reads settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import re  # noqa: E402

import fakeredis.aioredis  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import storefront.models  # noqa: E402,F401
from storefront.database import Base, get_db  # noqa: E402
from storefront.main import create_app  # noqa: E402
from storefront.models.user import User, UserRole  # noqa: E402
from storefront.redis_client import get_redis  # noqa: E402
from storefront.services.auth_service import AuthService  # noqa: E402
from storefront.services.otp_vault import OTPPurpose, OTPVault  # noqa: E402
from storefront.utils.email import get_notification_sender  # noqa: E402
from storefront.utils.security import hash_password  # noqa: E402

PASSWORD = "Pw1!Pw1!"


class RecordingSender:
    """Notification sender that keeps every OTP instead of emailing it."""

    def __init__(self):
        self.sent: list[dict] = []

    async def send_otp(self, to_email: str, name: str, otp_code: str, purpose: str) -> None:
        self.sent.append({"email": to_email, "name": name, "otp": otp_code, "purpose": purpose})

    def last_otp(self, email: str, purpose: str = "email-verification") -> str:
        for message in reversed(self.sent):
            if message["email"] == email and message["purpose"] == purpose:
                return message["otp"]
        raise AssertionError(f"no {purpose} OTP sent to {email}")

    def count(self, email: str, purpose: str) -> int:
        return sum(1 for m in self.sent if m["email"] == email and m["purpose"] == purpose)


def wrong_otp(code: str) -> str:
    return "100000" if code != "100000" else "100001"


async def vault_has_state(vault: OTPVault, email: str, purpose: OTPPurpose) -> bool:
    """True while any key for email+purpose (pending registration included) exists."""
    fields = vault._FIELDS + (("pending",) if purpose is OTPPurpose.EMAIL_VERIFICATION else ())
    return bool(await vault.redis.exists(*(vault._key(email, purpose, f) for f in fields)))


def refresh_cookie_from(response) -> str | None:
    for header in response.headers.get_list("set-cookie"):
        match = re.match(r"refreshToken=([^;]*)", header)
        if match:
            return match.group(1)
    return None


# ─── Stores ───────────────────────────────────────────────────────────────────
@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    await client.flushall()
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def vault(redis):
    return OTPVault(redis)


@pytest.fixture
def auth_service(db, vault, sender):
    return AuthService(db, vault, sender)


@pytest.fixture
async def verified_user(db):
    user = User(
        name="Existing Shopper",
        email="shopper@example.com",
        passwordHash=hash_password(PASSWORD),
        role=UserRole.USER,
        isVerified=True,
    )
    db.add(user)
    await db.commit()
    return user


# ─── HTTP ─────────────────────────────────────────────────────────────────────
@pytest.fixture
def app(session_factory, redis, sender):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_notification_sender] = lambda: sender
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://test") as client:
        yield client
