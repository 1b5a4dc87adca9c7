"""Shared test fixtures for AFT-Engine."""

import base64
import hashlib
import os
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient

from aft_engine.aft_requests.service import RequestService
from aft_engine.aft_requests.store import RequestStore
from aft_engine.audit.service import AuditService
from aft_engine.common.config import AFTSettings
from aft_engine.common.database import DatabaseManager
from aft_engine.signatures.service import SignatureService
from aft_engine.signatures.verifier import SignatureVerifier
from aft_engine.users.service import RoleResolver, UserService
from aft_engine.workflow.orchestrator import LifecycleOrchestrator


HMAC_KEY = "test-hmac-key-for-unit-tests"
API_KEY = "test-admin-api-key"
SECRET_KEY = "test-secret-key"

SIGNATURE_MATERIAL = base64.b64encode(b"pkcs7-detached-signature-bytes").decode()

# Users created by the ``users`` fixture, keyed by the name tests refer to.
USER_SEEDS = {
    "admin": "admin",
    "requestor": "requestor",
    "other_requestor": "requestor",
    "dao": "dao",
    "dao2": "dao",
    "approver": "approver",
    "cpso": "cpso",
    "dta": "dta",
    "dta2": "dta",
    "sme": "sme",
    "custodian": "media_custodian",
}


def make_settings(**overrides) -> AFTSettings:
    defaults = {
        "hmac_key": HMAC_KEY,
        "api_key": API_KEY,
        "secret_key": SECRET_KEY,
        "db_url": "sqlite+aiosqlite://",
    }
    defaults.update(overrides)
    return AFTSettings(**defaults)


def thumbprint_for(seed: str) -> str:
    """Deterministic SHA-1 style thumbprint per signer."""
    return hashlib.sha1(seed.encode()).hexdigest()


def signature_for(seed: str, **overrides) -> dict:
    """Well-formed signature payload whose certificate is unique to ``seed``."""
    sig = {
        "signature_material": SIGNATURE_MATERIAL,
        "certificate_thumbprint": thumbprint_for(seed),
        "certificate_subject": f"CN={seed}",
        "signed_data": f"aft-request-signed-by-{seed}",
    }
    sig.update(overrides)
    return sig


def build_services(db: DatabaseManager, settings: AFTSettings, store: RequestStore | None = None):
    """Wire the services the way deps.py does, around a test database."""
    store = store or RequestStore()
    resolver = RoleResolver()
    audit = AuditService(settings)
    signatures = SignatureService()
    verifier = SignatureVerifier(signatures)
    return SimpleNamespace(
        db=db,
        settings=settings,
        users=UserService(),
        resolver=resolver,
        store=store,
        audit=audit,
        signatures=signatures,
        verifier=verifier,
        requests=RequestService(settings, store, resolver, audit),
        orchestrator=LifecycleOrchestrator(db, store, resolver, verifier, signatures, audit),
    )


async def create_users(db: DatabaseManager, users: UserService) -> dict[str, str]:
    ids = {}
    async with db.get_session() as session:
        for name, role in USER_SEEDS.items():
            user = await users.create_user(
                session,
                email=f"{name}@aft.test",
                first_name=name.title(),
                last_name="Tester",
                primary_role=role,
            )
            ids[name] = user.id
    return ids


@pytest.fixture
def hmac_key():
    return HMAC_KEY


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def svc(db, settings):
    return build_services(db, settings)


@pytest.fixture
async def users(svc):
    return await create_users(svc.db, svc.users)


@pytest.fixture
def app():
    """Create a test app with in-memory DB."""
    os.environ["AFT_DB_URL"] = "sqlite+aiosqlite://"
    os.environ["AFT_HMAC_KEY"] = HMAC_KEY
    os.environ["AFT_API_KEY"] = API_KEY
    os.environ["AFT_SECRET_KEY"] = SECRET_KEY

    # Clear caches and singletons so new env vars take effect
    from aft_engine.common.config import get_settings
    get_settings.cache_clear()

    from aft_engine.deps import reset_singletons
    reset_singletons()

    from aft_engine.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from aft_engine.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def api_headers():
    return {"X-AFT-Api-Key": API_KEY}


@pytest.fixture
def actor_headers():
    """Headers for acting as a given user id through the API."""
    def _headers(actor_id: str) -> dict[str, str]:
        return {"X-AFT-Api-Key": API_KEY, "X-AFT-Actor-Id": actor_id}
    return _headers


@pytest.fixture
async def api_users(client, api_headers):
    """The seeded users, created through the API; returns {name: id}."""
    ids = {}
    for name, role in USER_SEEDS.items():
        resp = await client.post("/users", json={
            "email": f"{name}@aft.test",
            "first_name": name.title(),
            "last_name": "Tester",
            "primary_role": role,
        }, headers=api_headers)
        assert resp.status_code == 201, resp.text
        ids[name] = resp.json()["id"]
    return ids
