import os

os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./.pytest-unused.db"
os.environ["RECLAIMER_ENABLED"] = "false"
os.environ["OUTBOX_RELAY_ENABLED"] = "false"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_dummy"

import json
import uuid
from datetime import timedelta
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.main import app
from app.core.base import Base, utcnow
from app.core.config import settings
from app.core.db import get_session, import_models
from app.core.security import Principal
from app.modules.directory.repository import DirectoryRepository
from app.modules.payments.router import payment_gateway
from app.modules.schedules.repository import ScheduleRepository, DoctorScheduleRepository
from app.platform.ports.payment_gateway import GatewayError, GatewayEvent, GatewaySession, SignatureInvalid

DOCTOR_EMAIL = "farhana.rahman@nexusclinic.com"
PATIENT_EMAIL = "arif.chowdhury@example.com"


class FakeGateway:
    """In-memory checkout gateway; webhook payloads are accepted when signed "valid"."""

    def __init__(self):
        self.sessions: dict[str, GatewaySession] = {}
        self.requests: list[dict] = []
        self.fail = False

    async def create_checkout_session(self, **kwargs) -> GatewaySession:
        if self.fail:
            raise GatewayError("gateway unavailable")
        self.requests.append(kwargs)
        sid = f"cs_test_{len(self.requests)}"
        raw = {"id": sid, "object": "checkout.session", "payment_status": "unpaid",
               "amount_total": kwargs["amount_minor"], "metadata": dict(kwargs["metadata"])}
        session = GatewaySession(id=sid, url=f"https://checkout.test/pay/{sid}", payment_status="unpaid",
                                 metadata=dict(kwargs["metadata"]), raw=raw)
        self.sessions[sid] = session
        return session

    def mark_paid(self, sid: str) -> GatewaySession:
        session = self.sessions[sid]
        session.payment_status = "paid"
        session.raw = {**session.raw, "payment_status": "paid"}
        return session

    async def retrieve_checkout_session(self, session_id: str) -> GatewaySession:
        if session_id not in self.sessions:
            raise GatewayError(f"No such checkout.session: {session_id}")
        return self.sessions[session_id]

    def construct_event(self, payload: bytes, signature: str | None) -> GatewayEvent:
        if signature != "valid":
            raise SignatureInvalid("No signatures found matching the expected signature for payload")
        data = json.loads(payload)
        obj = data["data"]["object"]
        session = GatewaySession(id=obj["id"], url=None, payment_status=obj.get("payment_status"),
                                 metadata=obj.get("metadata") or {}, raw=obj)
        return GatewayEvent(id=data["id"], type=data["type"], session=session)


def completed_event(session: GatewaySession, event_id: str = "evt_test_1", payment_status: str = "paid") -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {"id": session.id, "object": "checkout.session", "payment_status": payment_status,
                            "metadata": session.metadata}},
    }


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'nexus.db'}", connect_args={"timeout": 30})
    import_models()
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s

@pytest.fixture
def gateway():
    return FakeGateway()


async def add_slot(session, doctor_id, start, minutes: int = 30):
    schedule = await ScheduleRepository(session).create(start, start + timedelta(minutes=minutes))
    await DoctorScheduleRepository(session).add_many(doctor_id, [schedule.id])
    await session.commit()
    return schedule

@pytest.fixture
async def clinic(session):
    directory = DirectoryRepository(session)
    doctor = await directory.create_doctor(name="Dr. Farhana Rahman", email=DOCTOR_EMAIL, designation="Cardiology", appointment_fee=500)
    free_doctor = await directory.create_doctor(name="Dr. Nusrat Jahan", email="nusrat.jahan@nexusclinic.com", appointment_fee=0)
    patient = await directory.create_patient(name="Arif Chowdhury", email=PATIENT_EMAIL, contact_number="+8801711000001")
    other = await directory.create_patient(name="Sadia Islam", email="sadia.islam@example.com")
    await session.commit()

    start = (utcnow() + timedelta(days=1)).replace(hour=9, minute=0, second=0, microsecond=0)
    schedule = await add_slot(session, doctor.id, start)
    second = await add_slot(session, doctor.id, start + timedelta(minutes=30))
    free_slot = await add_slot(session, free_doctor.id, start + timedelta(hours=1))
    return SimpleNamespace(
        doctor=doctor, free_doctor=free_doctor, patient=patient, other_patient=other,
        schedule=schedule, second_schedule=second, free_schedule=free_slot,
    )


def principal(role: str, email: str) -> Principal:
    return Principal(user_id=uuid.uuid4(), email=email, role=role)

@pytest.fixture
def patient_principal():
    return principal("PATIENT", PATIENT_EMAIL)

@pytest.fixture
def doctor_principal():
    return principal("DOCTOR", DOCTOR_EMAIL)

@pytest.fixture
def admin_principal():
    return principal("ADMIN", "admin@nexusclinic.com")


def token_for(role: str, email: str) -> str:
    return jwt.encode({"sub": str(uuid.uuid4()), "email": email, "role": role}, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def auth(role: str, email: str) -> dict:
    return {"Authorization": f"Bearer {token_for(role, email)}"}

@pytest.fixture
async def client(session_factory, gateway):
    async def _session():
        async with session_factory() as s:
            yield s
    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[payment_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()
