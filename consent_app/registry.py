# consent_app/registry.py
"""
Access grant registry: the request -> grant -> revoke/expire lifecycle.

Stored state is one of Pending, Granted or Revoked (``is_granted`` /
``is_revoked``); Expired is derived from ``expiry_time`` by ``policy`` at read
time. Granting is idempotent-with-refresh: every grant, including one on a
revoked or expired request, recomputes the expiry from now, clears the revoked
flag and re-resolves the bound document.

Grant and revoke on the same request id are serialized through a per-id lock;
calls on different ids do not contend. Every mutation commits before the call
returns and rolls back entirely on failure.
"""
import threading
from contextlib import contextmanager
from typing import Callable, List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from consent_app import models, policy, utils
from consent_app.db import session_scope
from consent_app.errors import Forbidden, InvalidArgument, InvalidRole, NoDocument, NotFound, Unauthorized
from consent_app.settings import settings
from consent_app.storage import BlobStore, next_seq


class RequestLocks:
    """One mutex per request id, dropped once no caller holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    @contextmanager
    def hold(self, request_id: str):
        with self._guard:
            entry = self._locks.setdefault(request_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[request_id]


_locks = RequestLocks()
_create_lock = threading.Lock()

# expiry_time is a signed 64-bit column of epoch milliseconds
MAX_EXPIRY_MS = 2**63 - 1


class AccessRegistry:
    def __init__(self, db: Session, blobs: BlobStore, clock: Callable[[], int] = utils.now_ms,
                 locks: RequestLocks = None, validate_student: Optional[bool] = None,
                 max_duration_seconds: Optional[int] = None):
        self.db = db
        self.blobs = blobs
        self.clock = clock
        self.locks = locks if locks is not None else _locks
        if validate_student is None:
            validate_student = settings.VALIDATE_STUDENT_ON_REQUEST
        self.validate_student = validate_student
        if max_duration_seconds is None:
            max_duration_seconds = settings.MAX_DURATION_HOURS * 3600
        self.max_duration_seconds = max_duration_seconds

    # --- helpers

    def _load(self, request_id: str) -> models.AccessRequest:
        request = self.db.get(models.AccessRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFound("Request not found")
        return request

    def _audit(self, actor, action, target, **meta):
        self.db.add(models.Audit(actor=actor, action=action, target=target,
                                 ts=utils.ms_to_datetime(self.clock()),
                                 meta=meta))

    def _require_student(self, request: models.AccessRequest, caller: str):
        if request.student != caller:
            logger.warning("{} tried to act on request {} owned by {}", caller, request.id, request.student)
            raise Unauthorized("Not your request")

    def _resolve_document(self, request: models.AccessRequest) -> Optional[models.Document]:
        # newest upload first; first category match wins
        for doc in self.blobs.list_by_owner(request.student):
            if doc.category == request.category:
                return doc
        return None

    # --- lifecycle

    def request_access(self, student: str, requester: str, category: str, duration_seconds: int,
                       note: str = "", requester_name: Optional[str] = None) -> models.AccessRequest:
        org = self.db.get(models.User, requester) if requester else None
        if org is None or org.role != models.ROLE_ORG:
            raise InvalidRole("Only organizations can request access")
        if not student:
            raise InvalidArgument("Student address is required")
        category = (category or "").strip()
        if not category:
            raise InvalidArgument("Category is required")
        if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int) or duration_seconds <= 0:
            raise InvalidArgument("Duration must be a positive number of seconds")
        if duration_seconds > self.max_duration_seconds:
            raise InvalidArgument(f"Duration may not exceed {self.max_duration_seconds} seconds")
        if self.validate_student:
            subject = self.db.get(models.User, student)
            if subject is None or subject.role != models.ROLE_STUDENT:
                raise NotFound(f"Student {student} not found")

        now = self.clock()
        with _create_lock:
            with session_scope(self.db):
                request = models.AccessRequest(
                    id=models.gen_uuid(),
                    student=student,
                    requester=requester,
                    requester_name=requester_name or org.name or "Organization",
                    category=category,
                    note=note or "",
                    duration_seconds=duration_seconds,
                    expiry_time=0,
                    is_granted=False,
                    is_revoked=False,
                    bound_cid=None,
                    created_at=utils.ms_to_datetime(now),
                    seq=next_seq(self.db, models.AccessRequest.seq),
                )
                self.db.add(request)
                self._audit(requester, "request_access", request.id, student=student, category=category)
            self.db.refresh(request)
        logger.info("request {}: {} asks {} for {} ({}s)", request.id, requester, student, category, duration_seconds)
        return request

    def grant_consent(self, request_id: str, caller: str) -> models.AccessRequest:
        with self.locks.hold(request_id):
            request = self._load(request_id)
            self._require_student(request, caller)
            logger.info("grant attempt: student {} for {}", request.student, request.category)

            expiry = self.clock() + request.duration_seconds * 1000
            if expiry > MAX_EXPIRY_MS:
                raise InvalidArgument("Requested duration runs past the representable expiry time")

            with session_scope(self.db):
                doc = self._resolve_document(request)
                if doc is not None:
                    request.bound_cid = doc.cid
                    logger.info("matched file {} ({})", doc.cid, doc.category)
                else:
                    # keep any earlier binding; the org sees "awaiting data sync" until a re-grant
                    logger.warning("no matching file for student {} and category {}",
                                   request.student, request.category)
                request.is_granted = True
                request.is_revoked = False
                request.expiry_time = expiry
                self._audit(caller, "grant_consent", request.id, bound_cid=request.bound_cid,
                            expiry_time=expiry)
            self.db.refresh(request)
        return request

    def revoke_consent(self, request_id: str, caller: str) -> models.AccessRequest:
        with self.locks.hold(request_id):
            request = self._load(request_id)
            self._require_student(request, caller)
            with session_scope(self.db):
                request.is_revoked = True
                self._audit(caller, "revoke_consent", request.id)
            self.db.refresh(request)
        logger.info("request {} revoked by {}", request_id, caller)
        return request

    def is_access_valid(self, request: models.AccessRequest) -> bool:
        return policy.is_access_valid(request, self.clock())

    def view_bound_document(self, request_id: str, caller: str):
        """
        Bound document and its bytes for the requesting organization. The view
        is audited only once the bytes have been read.
        """
        request = self._load(request_id)
        ok, reason = policy.evaluate_access(request, caller, self.clock())
        if not ok:
            messages = {
                "requester_mismatch": "Not your request",
                "not_granted": "Access not granted yet",
                "consent_revoked": "Access has been revoked",
                "consent_expired": "Access has expired",
            }
            logger.info("view of {} by {} denied: {}", request_id, caller, reason)
            raise Forbidden(messages.get(reason, "Access invalid"), reason=reason)
        doc = self.blobs.get(request.bound_cid)
        if doc is None:
            raise NoDocument("Awaiting data sync: no matching document has been shared yet")
        data = self.blobs.fetch(doc.cid)
        with session_scope(self.db):
            self._audit(caller, "view_document", request.id, cid=doc.cid)
        return doc, data

    # --- queries

    def get_request(self, request_id: str) -> models.AccessRequest:
        return self._load(request_id)

    def list_requests_for_student(self, address: str) -> List[models.AccessRequest]:
        """All requests naming ``address`` as student, in creation order."""
        return (
            self.db.query(models.AccessRequest)
            .filter(models.AccessRequest.student == address)
            .order_by(models.AccessRequest.seq, models.AccessRequest.id)
            .all()
        )

    def list_requests_for_organization(self, address: str) -> List[models.AccessRequest]:
        return (
            self.db.query(models.AccessRequest)
            .filter(models.AccessRequest.requester == address)
            .order_by(models.AccessRequest.seq, models.AccessRequest.id)
            .all()
        )
