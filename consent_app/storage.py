# consent_app/storage.py
"""
Content-addressed blob store for student uploads.

Metadata lives in the ``documents`` table, bytes live as files under the
upload directory. The registry only ever calls ``list_by_owner`` (to bind a
document at grant time) and ``fetch`` (to serve it).
"""
import os
import threading
import uuid
from datetime import datetime
from typing import List, Optional

from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session

from consent_app import models, utils
from consent_app.db import session_scope
from consent_app.errors import Conflict, InvalidArgument, NotFound
from consent_app.settings import settings

DEFAULT_CATEGORY = "Document"

_seq_lock = threading.Lock()


def next_seq(db: Session, column) -> int:
    current = db.query(func.max(column)).scalar()
    return (current or 0) + 1


class BlobStore:
    def __init__(self, db: Session, upload_dir: Optional[str] = None, max_bytes: Optional[int] = None):
        self.db = db
        self.upload_dir = upload_dir or settings.UPLOAD_DIR
        self.max_bytes = settings.MAX_UPLOAD_BYTES if max_bytes is None else max_bytes
        os.makedirs(self.upload_dir, exist_ok=True)

    def _path(self, doc: models.Document) -> str:
        return os.path.join(os.path.abspath(self.upload_dir), doc.stored_name)

    def store(self, data: bytes, owner: str, category: str, original_name: str,
              mime_type: Optional[str] = None) -> models.Document:
        if not data:
            raise InvalidArgument("No file uploaded")
        if len(data) > self.max_bytes:
            raise InvalidArgument(f"File exceeds {self.max_bytes} bytes")
        category = (category or "").strip() or DEFAULT_CATEGORY
        cid = utils.generate_cid(data)

        with _seq_lock, session_scope(self.db):
            doc = self.db.get(models.Document, cid)
            if doc is not None and doc.owner != owner:
                raise Conflict("Identical file already uploaded by another user")
            if doc is None:
                _, ext = os.path.splitext(original_name or "")
                stored_name = f"{utils.now_ms()}-{uuid.uuid4()}{ext}"
                doc = models.Document(cid=cid, owner=owner, stored_name=stored_name)
                self.db.add(doc)
            path = self._path(doc)
            if not os.path.exists(path):
                with open(path, "wb") as fh:
                    fh.write(data)
            # a re-upload of the same bytes becomes the newest document in its category
            doc.category = category
            doc.original_name = original_name or cid
            doc.mime_type = mime_type or "application/octet-stream"
            doc.size = len(data)
            doc.uploaded_at = datetime.utcnow()
            doc.seq = next_seq(self.db, models.Document.seq)
            self.db.add(models.Audit(actor=owner, action="upload", target=cid,
                                     meta={"category": category, "size": len(data)}))
        self.db.refresh(doc)
        logger.info("stored {} for {} as {} ({} bytes)", doc.original_name, owner, cid, doc.size)
        return doc

    def get(self, cid: Optional[str]) -> Optional[models.Document]:
        if not cid:
            return None
        return self.db.get(models.Document, cid)

    def fetch(self, cid: str) -> bytes:
        doc = self.get(cid)
        if doc is None:
            raise NotFound(f"Metadata for CID {cid} not found")
        path = self._path(doc)
        if not os.path.exists(path):
            logger.error("physical file missing for {}: {}", cid, path)
            raise NotFound("Physical file not found on server")
        with open(path, "rb") as fh:
            return fh.read()

    def list_by_owner(self, owner: str) -> List[models.Document]:
        """Documents owned by ``owner``, newest upload first."""
        return (
            self.db.query(models.Document)
            .filter(models.Document.owner == owner)
            .order_by(models.Document.seq.desc())
            .all()
        )
