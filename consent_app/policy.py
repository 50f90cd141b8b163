# consent_app/policy.py
"""
Access validity rules. Everything here is a pure function of the request
snapshot and ``now`` (epoch ms), so the server gate and a client rendering
status from the same JSON agree. Expiry is derived here and never stored.

A snapshot is either an ``AccessRequest`` row or a mapping using the wire
names (``isGranted``, ``isRevoked``, ``expiryTime``, ``requester``).
"""

_FIELDS = {
    "is_granted": "isGranted",
    "is_revoked": "isRevoked",
    "expiry_time": "expiryTime",
    "requester": "requester",
}

def _field(request, name):
    if isinstance(request, dict):
        if name in request:
            return request[name]
        return request.get(_FIELDS[name])
    return getattr(request, name)

def is_expired(request, now):
    expiry = _field(request, "expiry_time") or 0
    return bool(expiry) and now > expiry

def is_access_valid(request, now) -> bool:
    if request is None:
        return False
    if not _field(request, "is_granted"):
        return False
    if _field(request, "is_revoked"):
        return False
    return not is_expired(request, now)

def access_state(request, now) -> str:
    """Display status: pending, granted, revoked or expired."""
    if _field(request, "is_revoked"):
        return "revoked"
    if not _field(request, "is_granted"):
        return "pending"
    if is_expired(request, now):
        return "expired"
    return "granted"

def evaluate_access(request, requester, now):
    """
    Simple PDP for document reads: requester must match, consent must be
    granted, not revoked and not expired. Returns (ok, reason).
    """
    if _field(request, "requester") != requester:
        return False, "requester_mismatch"
    if _field(request, "is_revoked"):
        return False, "consent_revoked"
    if not _field(request, "is_granted"):
        return False, "not_granted"
    if is_expired(request, now):
        return False, "consent_expired"
    return True, "ok"
