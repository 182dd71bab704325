import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from database import close_database, create_document, ensure_indexes, get_db, get_documents, init_database, now_utc, parse_object_id, to_str_id
from errors import ApiError, failure_boundary
from schemas import Material, User, Work
from security import check_password, create_access_token, hash_password
from storage import ImageKitStorage, get_storage, require_storage
from work_counts import (
    InvalidStateError,
    WorkNotFoundError,
    empty_counts,
    get_global_totals,
    recalc_work_counts,
    recompute_global_totals,
    repair_all_counts,
    upsert_status,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Classroom Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

MATERIAL_FOLDER = "/csbs_uploads"
WORK_FOLDER = "/work_uploads"

# ----------------------
# Error envelope
# ----------------------
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    body = {"success": False, "message": exc.detail}
    error = getattr(exc, "error", None)
    if error:
        body["error"] = error
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    missing, invalid = [], False
    for err in exc.errors():
        loc = err.get("loc") or ()
        name = loc[-1] if len(loc) > 1 else None
        # empty strings count as missing
        if isinstance(name, str) and err.get("type") in ("missing", "string_too_short"):
            if name not in missing:
                missing.append(name)
        else:
            invalid = True
    if missing and not invalid:
        message = f"{', '.join(missing)} required"
    else:
        message = "Invalid request body"
    error = "; ".join(str(err.get("msg")) for err in exc.errors())
    return JSONResponse(status_code=400, content={"success": False, "message": message, "error": error})


# ----------------------
# Helpers
# ----------------------
def serialize_work(doc):
    return to_str_id(doc, hidden=("rev",))


def serialize_totals(doc):
    return to_str_id(doc, hidden=("seq",))


def file_extension(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def read_upload(file: Optional[UploadFile]):
    """Return (bytes, filename) of an uploaded file, closing it in every case."""
    if file is None or not file.filename:
        raise ApiError(400, "No file uploaded")
    try:
        return file.file.read(), file.filename
    finally:
        file.file.close()


# ----------------------
# Startup
# ----------------------
@app.on_event("startup")
def startup():
    settings = get_settings()
    database = init_database(settings)
    if database is not None:
        ensure_indexes(database)


@app.on_event("shutdown")
def shutdown():
    close_database()


# ----------------------
# Models for requests
# ----------------------
class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class AddWorkRequest(BaseModel):
    subject: str = Field(..., min_length=1)
    work: str = Field(..., min_length=1)
    deadline: str = Field(..., min_length=1)
    addedBy: Optional[str] = None
    fileUrl: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    userId: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)


# ----------------------
# Health
# ----------------------
@app.get("/")
def read_root(settings: Settings = Depends(get_settings)):
    return {
        "success": True,
        "message": "Classroom backend is running",
        "environment": settings.environment,
        "time": datetime.now(timezone.utc).isoformat(),
    }


# ----------------------
# Auth Endpoints
# ----------------------
@app.post("/api/register", status_code=201)
def register(req: RegisterRequest, db: Database = Depends(get_db)):
    with failure_boundary("Registration failed"):
        if db["user"].find_one({"email": req.email}):
            raise ApiError(400, "Email already exists")
        user = User(email=req.email, password=hash_password(req.password), name=req.name)
        try:
            create_document(db, "user", user)
        except DuplicateKeyError:
            raise ApiError(400, "Email already exists")
    logger.info(f"Registered user {req.email}")
    return {"success": True, "message": "User registered"}


@app.post("/api/login")
def login(req: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    with failure_boundary("Login failed"):
        user = db["user"].find_one({"email": req.email})
        if not user or not check_password(req.password, user.get("password") or ""):
            raise ApiError(401, "Invalid credentials")
        token = create_access_token(user, settings)
    return {"success": True, "token": token}


# ----------------------
# Uploads
# ----------------------
@app.post("/api/upload")
def upload_material(
    file: Optional[UploadFile] = File(None),
    username: Optional[str] = Form(None),
    materialName: Optional[str] = Form(None),
    subject: Optional[str] = Form(None),
    db: Database = Depends(get_db),
    storage: Optional[ImageKitStorage] = Depends(get_storage),
):
    content, filename = read_upload(file)
    storage = require_storage(storage)
    ext = file_extension(filename)
    with failure_boundary("Upload failed"):
        url = storage.upload(content, filename, folder=MATERIAL_FOLDER, tags=["csbs", ext])
        mat = Material(
            link=url,
            name=username or "Anonymous",
            matname=materialName or filename,
            subject=subject or "General",
            format=ext,
            uploadDate=now_utc(),
        )
        mat_id = create_document(db, "material", mat)
    return {"success": True, "fileUrl": url, "mat": {"_id": mat_id, **mat.model_dump()}}


@app.post("/api/work/upload")
def upload_work_file(file: Optional[UploadFile] = File(None), storage: Optional[ImageKitStorage] = Depends(get_storage)):
    content, filename = read_upload(file)
    storage = require_storage(storage)
    with failure_boundary("Work upload failed"):
        url = storage.upload(content, filename, folder=WORK_FOLDER, use_unique_file_name=True)
    return {"success": True, "fileUrl": url}


# ----------------------
# Listings
# ----------------------
@app.get("/api/materials")
def list_materials(db: Database = Depends(get_db)):
    with failure_boundary("Error fetching materials"):
        mats = get_documents(db, "material", sort=[("uploadDate", -1), ("_id", -1)])
    return {"success": True, "data": [to_str_id(m) for m in mats]}


@app.get("/api/users")
def list_users(db: Database = Depends(get_db)):
    with failure_boundary("Error fetching users"):
        users = get_documents(db, "user", projection={"password": 0})
    return {"success": True, "data": [to_str_id(u) for u in users]}


# ----------------------
# Work Endpoints
# ----------------------
@app.post("/api/work/add")
def add_work(req: AddWorkRequest, db: Database = Depends(get_db)):
    with failure_boundary("Failed to add work"):
        work = Work(
            subject=req.subject,
            work=req.work,
            deadline=req.deadline,
            addedBy=req.addedBy or "Admin",
            fileUrl=req.fileUrl or "",
            createdAt=now_utc(),
            status=[],
            counts=empty_counts(),
        )
        doc = work.model_dump()
        doc["_id"] = parse_object_id(create_document(db, "work", doc))
        totals = recompute_global_totals(db)
    return {"success": True, "message": "Work added", "newWork": serialize_work(doc), "totals": serialize_totals(totals)}


@app.get("/api/work")
def list_works(db: Database = Depends(get_db)):
    with failure_boundary("Error fetching works"):
        works = get_documents(db, "work", sort=[("createdAt", -1), ("_id", -1)])
        totals = get_global_totals(db)
    return {"success": True, "works": [serialize_work(w) for w in works], "totals": serialize_totals(totals)}


@app.get("/api/work/totals")
def read_totals(db: Database = Depends(get_db)):
    with failure_boundary("Error fetching totals"):
        totals = get_global_totals(db)
    return {"success": True, "totals": serialize_totals(totals)}


@app.post("/api/work/recompute-totals")
def recompute_totals(db: Database = Depends(get_db)):
    with failure_boundary("Failed to recompute totals"):
        totals = repair_all_counts(db)
    return {"success": True, "message": "Recomputed totals", "totals": serialize_totals(totals)}


@app.delete("/api/work/{work_id}")
def delete_work(work_id: str, db: Database = Depends(get_db)):
    oid = parse_object_id(work_id)
    if oid is None:
        raise ApiError(404, "Work not found")
    with failure_boundary("Error deleting work"):
        removed = db["work"].delete_one({"_id": oid})
        if removed.deleted_count == 0:
            raise ApiError(404, "Work not found")
        totals = recompute_global_totals(db)
    return {"success": True, "message": "Work deleted", "totals": serialize_totals(totals)}


# ----------------------
# Status & Counts
# ----------------------
@app.post("/api/work/status/{work_id}")
def update_status(work_id: str, req: StatusUpdateRequest, db: Database = Depends(get_db)):
    with failure_boundary("Failed to update status"):
        try:
            work, totals = upsert_status(db, work_id, req.userId, req.username, req.state)
        except InvalidStateError:
            raise ApiError(400, "Invalid state")
        except WorkNotFoundError:
            raise ApiError(404, "Work not found")
    return {"success": True, "message": "Status updated", "work": serialize_work(work), "totals": serialize_totals(totals)}


@app.get("/api/work/status/{work_id}")
def read_counts(work_id: str, db: Database = Depends(get_db)):
    oid = parse_object_id(work_id)
    if oid is None:
        raise ApiError(404, "Work not found")
    with failure_boundary("Error fetching counts"):
        work = db["work"].find_one({"_id": oid}, {"counts": 1})
        if work is None:
            raise ApiError(404, "Work not found")
        counts = work.get("counts")
        if not counts:
            counts = recalc_work_counts(db, oid)
            if counts is None:
                raise ApiError(404, "Work not found")
    return {"success": True, "counts": counts}


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info(f"Server listening on 0.0.0.0:{settings.port}")
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
