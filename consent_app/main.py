# consent_app/main.py
from fastapi import FastAPI, UploadFile, File, Form, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from datetime import datetime
from typing import Optional
from urllib.parse import quote
from loguru import logger
from sqlalchemy.orm import Session
from consent_app.db import SessionLocal, init_db
from consent_app import identity, models, policy, schemas, utils
from consent_app.errors import ConsentError, InvalidArgument, Unauthorized
from consent_app.registry import AccessRegistry
from consent_app.settings import settings
from consent_app.storage import BlobStore
import sys
import time

logger.remove()
logger.add(sys.stderr, level=settings.LOG_LEVEL.upper())

app = FastAPI(title="Student Data Consent Service")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize DB
init_db()

VIEWABLE_MIME_TYPES = {
    "image/jpeg", "image/png", "image/gif", "image/webp", "image/svg+xml",
    "application/pdf", "text/plain", "text/html", "text/css", "application/javascript",
}

bearer = HTTPBearer(auto_error=False)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_clock():
    return utils.now_ms

def get_blobs(db: Session = Depends(get_db)) -> BlobStore:
    return BlobStore(db)

def get_registry(db: Session = Depends(get_db), blobs: BlobStore = Depends(get_blobs),
                 clock=Depends(get_clock)) -> AccessRegistry:
    return AccessRegistry(db, blobs, clock=clock)

def current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
                 db: Session = Depends(get_db)) -> models.User:
    if creds is None:
        raise Unauthorized("Sign in required", authenticated=False)
    return identity.resolve_session(db, creds.credentials)

@app.exception_handler(ConsentError)
async def consent_error(request: Request, exc: ConsentError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info("{} {} {} {:.1f}ms", request.method, request.url.path, response.status_code, elapsed)
    return response

def file_out(doc: models.Document) -> dict:
    return {
        "cid": doc.cid,
        "field_name": doc.category,
        "original_name": doc.original_name,
        "size": doc.size,
        "mime_type": doc.mime_type,
        "uploaded_at": doc.uploaded_at.isoformat() + "Z",
    }

def request_out(req: models.AccessRequest, now: int) -> dict:
    """Wire form of a request, decorated with the bound file's display name/type."""
    doc = req.bound_document
    return {
        "id": req.id,
        "student": req.student,
        "requester": req.requester,
        "requester_name": req.requester_name,
        "field_name": req.category,
        "note": req.note,
        "duration": req.duration_seconds,
        "expiry_time": req.expiry_time,
        "is_granted": req.is_granted,
        "is_revoked": req.is_revoked,
        "data_cid": req.bound_cid,
        "original_name": doc.original_name if doc else None,
        "mime_type": doc.mime_type if doc else None,
        "created_at": req.created_at.isoformat() + "Z",
        "status": policy.access_state(req, now),
        "is_access_valid": policy.is_access_valid(req, now),
    }

# --- Health
@app.get("/api/health")
def health():
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat() + "Z"}

# --- Registration and login
@app.post("/api/register", response_model=schemas.RegisterOut)
def register(payload: schemas.CredentialsIn, db: Session = Depends(get_db)):
    user = identity.register(db, payload.name, payload.password, payload.role)
    return {"success": True, "user": {"address": user.address, "name": user.name, "role": user.role}}

@app.post("/api/login", response_model=schemas.LoginOut)
def login(payload: schemas.CredentialsIn, db: Session = Depends(get_db)):
    user = identity.authenticate(db, payload.name, payload.password, payload.role)
    return {
        "success": True,
        "user": {"address": user.address, "name": user.name, "role": user.role},
        "token": identity.issue_session(user),
    }

# --- Upload: student stores a document under a category
@app.post("/api/upload", response_model=schemas.UploadOut)
async def upload(file: Optional[UploadFile] = File(None), fieldName: str = Form(""),
                 userAddress: Optional[str] = Form(None),
                 user: models.User = Depends(current_user), blobs: BlobStore = Depends(get_blobs)):
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if user.role != models.ROLE_STUDENT:
        raise Unauthorized("Only students can upload documents")
    if userAddress and userAddress != user.address:
        raise Unauthorized("userAddress does not match the signed-in student")
    contents = await file.read()
    doc = blobs.store(contents, user.address, fieldName, file.filename, file.content_type)
    return {"success": True, "message": "File uploaded successfully", "data": file_out(doc)}

@app.get("/api/files/{address}", response_model=schemas.FilesOut)
def list_files(address: str, blobs: BlobStore = Depends(get_blobs)):
    return {"files": [file_out(d) for d in blobs.list_by_owner(address)]}

@app.get("/api/students", response_model=schemas.StudentsOut)
def list_students(db: Session = Depends(get_db)):
    return {"students": [{"address": s.address, "name": s.name} for s in identity.list_students(db)]}

# --- Access requests
@app.post("/api/requests", response_model=schemas.RequestOut)
def create_request(payload: schemas.AccessRequestIn, user: models.User = Depends(current_user),
                   registry: AccessRegistry = Depends(get_registry)):
    if payload.requester_address and payload.requester_address != user.address:
        raise Unauthorized("requesterAddress does not match the signed-in organization")
    if payload.duration_hours > settings.MAX_DURATION_HOURS:
        raise InvalidArgument(f"durationHours may not exceed {settings.MAX_DURATION_HOURS}")
    duration_seconds = int(round(payload.duration_hours * 3600))
    req = registry.request_access(payload.student_address, user.address, payload.field_name,
                                  duration_seconds, payload.note, requester_name=payload.requester_name)
    return {"success": True, "request": request_out(req, registry.clock())}

@app.get("/api/requests/student/{address}", response_model=schemas.RequestsOut)
def requests_for_student(address: str, registry: AccessRegistry = Depends(get_registry)):
    now = registry.clock()
    return {"requests": [request_out(r, now) for r in registry.list_requests_for_student(address)]}

@app.get("/api/requests/org/{address}", response_model=schemas.RequestsOut)
def requests_for_org(address: str, registry: AccessRegistry = Depends(get_registry)):
    now = registry.clock()
    return {"requests": [request_out(r, now) for r in registry.list_requests_for_organization(address)]}

@app.get("/api/requests/{request_id}", response_model=schemas.RequestOut)
def get_request(request_id: str, registry: AccessRegistry = Depends(get_registry)):
    return {"success": True, "request": request_out(registry.get_request(request_id), registry.clock())}

@app.post("/api/requests/{request_id}/grant", response_model=schemas.RequestOut)
def grant(request_id: str, user: models.User = Depends(current_user),
          registry: AccessRegistry = Depends(get_registry)):
    req = registry.grant_consent(request_id, user.address)
    return {"success": True, "request": request_out(req, registry.clock())}

@app.post("/api/requests/{request_id}/revoke", response_model=schemas.RequestOut)
def revoke(request_id: str, user: models.User = Depends(current_user),
           registry: AccessRegistry = Depends(get_registry)):
    req = registry.revoke_consent(request_id, user.address)
    return {"success": True, "request": request_out(req, registry.clock())}

# --- View the bound document (organization, while access is valid)
@app.get("/api/view/{request_id}")
def view(request_id: str, user: models.User = Depends(current_user),
         registry: AccessRegistry = Depends(get_registry)):
    doc, data = registry.view_bound_document(request_id, user.address)
    mime_type = doc.mime_type or "application/octet-stream"
    if doc.original_name.lower().endswith(".pdf"):
        mime_type = "application/pdf"
    disposition = "inline" if mime_type in VIEWABLE_MIME_TYPES else "attachment"
    headers = {"Content-Disposition": f'{disposition}; filename="{quote(doc.original_name)}"'}
    if mime_type == "application/pdf":
        headers["Accept-Ranges"] = "bytes"
    logger.info("serving {} ({}, {} bytes) for request {}", doc.original_name, mime_type, len(data), request_id)
    return Response(content=data, media_type=mime_type, headers=headers)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("consent_app.main:app", host=settings.HOST, port=settings.PORT)
