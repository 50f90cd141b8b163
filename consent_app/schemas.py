# consent_app/schemas.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

class WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(populate_by_name=True)

class CredentialsIn(BaseModel):
    name: str = ""
    password: str = ""
    role: str = ""

class UserOut(BaseModel):
    address: str
    name: str
    role: str

class RegisterOut(BaseModel):
    success: bool = True
    user: UserOut

class LoginOut(RegisterOut):
    token: str

class FileOut(WireModel):
    cid: str
    field_name: str = Field(alias="fieldName")
    original_name: str = Field(alias="originalName")
    size: int
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    uploaded_at: str = Field(alias="uploadedAt")

class FilesOut(BaseModel):
    files: List[FileOut]

class UploadOut(BaseModel):
    success: bool = True
    message: str
    data: FileOut

class StudentOut(BaseModel):
    address: str
    name: str

class StudentsOut(BaseModel):
    students: List[StudentOut]

class AccessRequestIn(WireModel):
    student_address: str = Field(alias="studentAddress")
    field_name: str = Field(alias="fieldName")
    duration_hours: float = Field(alias="durationHours", allow_inf_nan=False)
    note: str = ""
    # optional; when present it must match the authenticated organization
    requester_address: Optional[str] = Field(default=None, alias="requesterAddress")
    requester_name: Optional[str] = Field(default=None, alias="requesterName")

class AccessRequestOut(WireModel):
    id: str
    student: str
    requester: str
    requester_name: str = Field(alias="requesterName")
    field_name: str = Field(alias="fieldName")
    note: str
    duration: int
    expiry_time: int = Field(alias="expiryTime")
    is_granted: bool = Field(alias="isGranted")
    is_revoked: bool = Field(alias="isRevoked")
    data_cid: Optional[str] = Field(default=None, alias="dataCid")
    original_name: Optional[str] = Field(default=None, alias="originalName")
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    created_at: str = Field(alias="createdAt")
    status: str
    is_access_valid: bool = Field(alias="isAccessValid")

class RequestOut(BaseModel):
    success: bool = True
    request: AccessRequestOut

class RequestsOut(BaseModel):
    requests: List[AccessRequestOut]
