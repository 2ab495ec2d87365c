"""
Pytest configuration and fixtures for consent engine tests
"""

import os
import sys
from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH119, PTH120

# Configure the environment BEFORE the engine module is imported
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

from consent_engine.database import Base  # noqa: E402
from consent_engine.models import FormTemplate, Organization, Submission, User  # noqa: E402
from consent_engine.services.consent_store import ConsentStore, dump_renewal_history  # noqa: E402
from consent_engine.services.notification_ledger import NotificationLedger  # noqa: E402
from utils.fakes import FakeConsentStore, FakeGateway, FakeLedger  # noqa: E402


@pytest.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Fresh SQLite database per test.

    A file database (rather than :memory:) gives every session its own
    connection, matching how the store opens one session per operation.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'consent.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def consent_store(session_factory) -> ConsentStore:
    return ConsentStore(session_factory)


@pytest.fixture
def notification_ledger(session_factory) -> NotificationLedger:
    return NotificationLedger(session_factory)


@pytest.fixture
def seed(session_factory):
    """
    Insert an organization, template, patient and submission in one go.

    Returns an async callable; keyword arguments override submission columns,
    and `template`/`user` dicts override those rows (`user=False` seeds an
    anonymous submission). `renewal_history` may be a list of entries or the
    raw stored text.
    """

    async def _seed(
        template: dict | None = None,
        user: dict | None = None,
        organization: str = "Riverside Clinic",
        **submission_fields,
    ) -> int:
        async with session_factory() as session:
            org = Organization(name=organization)
            session.add(org)
            await session.flush()

            form_template = FormTemplate(
                title="Intake Form",
                organization_id=org.id,
                **(template or {}),
            )
            session.add(form_template)

            patient = None
            if user is not False:
                patient = User(**{"name": "Pat Patient", **(user or {})})
                session.add(patient)
            await session.flush()

            history = submission_fields.pop("renewal_history", None)
            if history and not isinstance(history, str):
                history = dump_renewal_history(history)
            submission = Submission(
                form_template_id=form_template.id,
                user_id=patient.id if patient else None,
                renewal_history=history or None,
                **submission_fields,
            )
            session.add(submission)
            await session.commit()
            return submission.id

    return _seed


@pytest.fixture
def fake_store() -> FakeConsentStore:
    return FakeConsentStore()


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()
