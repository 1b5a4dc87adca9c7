"""Dependency injection singletons for AFT-Engine."""

from aft_engine.common.config import get_settings
from aft_engine.common.database import DatabaseManager
from aft_engine.aft_requests.service import RequestService
from aft_engine.aft_requests.store import RequestStore
from aft_engine.audit.service import AuditService
from aft_engine.signatures.service import SignatureService
from aft_engine.signatures.verifier import SignatureVerifier
from aft_engine.users.service import RoleResolver, UserService
from aft_engine.workflow.orchestrator import LifecycleOrchestrator

_db: DatabaseManager | None = None
_users: UserService | None = None
_resolver: RoleResolver | None = None
_store: RequestStore | None = None
_requests: RequestService | None = None
_signatures: SignatureService | None = None
_verifier: SignatureVerifier | None = None
_audit: AuditService | None = None
_orchestrator: LifecycleOrchestrator | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_user_service() -> UserService:
    global _users
    if _users is None:
        _users = UserService()
    return _users


def get_role_resolver() -> RoleResolver:
    global _resolver
    if _resolver is None:
        _resolver = RoleResolver()
    return _resolver


def get_request_store() -> RequestStore:
    global _store
    if _store is None:
        _store = RequestStore()
    return _store


def get_audit_service() -> AuditService:
    global _audit
    if _audit is None:
        _audit = AuditService(get_settings())
    return _audit


def get_request_service() -> RequestService:
    global _requests
    if _requests is None:
        _requests = RequestService(
            get_settings(),
            get_request_store(),
            get_role_resolver(),
            get_audit_service(),
        )
    return _requests


def get_signature_service() -> SignatureService:
    global _signatures
    if _signatures is None:
        _signatures = SignatureService()
    return _signatures


def get_verifier() -> SignatureVerifier:
    global _verifier
    if _verifier is None:
        _verifier = SignatureVerifier(get_signature_service())
    return _verifier


def get_orchestrator() -> LifecycleOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = LifecycleOrchestrator(
            get_db(),
            get_request_store(),
            get_role_resolver(),
            get_verifier(),
            get_signature_service(),
            get_audit_service(),
        )
    return _orchestrator


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _users, _resolver, _store, _requests
    global _signatures, _verifier, _audit, _orchestrator
    _db = None
    _users = None
    _resolver = None
    _store = None
    _requests = None
    _signatures = None
    _verifier = None
    _audit = None
    _orchestrator = None
