"""
Database Schemas for the Classroom Backend

Each Pydantic model corresponds to a MongoDB collection (collection name = lowercase class name).
Field names follow the JSON the frontend already consumes.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

StateValue = Literal["completed", "doing", "not yet started"]


class User(BaseModel):
    email: str = Field(..., description="Login email, unique")
    password: str = Field(..., description="bcrypt hash of the password")
    name: Optional[str] = Field(None, description="Display name")
    isad: bool = Field(False, description="Admin flag")


class Material(BaseModel):
    link: str = Field(..., description="Public URL of the uploaded file")
    name: str = Field("Anonymous", description="Free-text uploader name")
    matname: str = Field(..., description="Material name")
    subject: str = Field("General", description="Subject the material belongs to")
    format: str = Field("", description="Lowercase file extension")
    uploadDate: datetime


class StatusEntry(BaseModel):
    userId: str = Field(..., description="Id of the reporting user")
    username: str = Field(..., description="Username at the time of the update")
    state: StateValue = "not yet started"
    updatedAt: datetime


class Counts(BaseModel):
    completed: int = Field(0, ge=0)
    doing: int = Field(0, ge=0)
    notYetStarted: int = Field(0, ge=0)


class Work(BaseModel):
    subject: str
    work: str = Field(..., description="Assignment description")
    deadline: str = Field(..., description="Free-text deadline")
    addedBy: str = "Admin"
    fileUrl: str = ""
    createdAt: datetime
    status: List[StatusEntry] = Field(default_factory=list)
    counts: Counts = Field(default_factory=Counts)
    rev: int = Field(0, description="Revision used for compare-and-set writes")


class Worktotals(BaseModel):
    totalWorks: int = Field(0, ge=0)
    completed: int = Field(0, ge=0)
    doing: int = Field(0, ge=0)
    notYetStarted: int = Field(0, ge=0)
    updatedAt: datetime
