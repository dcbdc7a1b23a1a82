from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    url: str
    path: str


class BatchUploadResponse(BaseModel):
    urls: list[str] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    status: str = "deleted"


class ErrorResponse(BaseModel):
    detail: str
    kind: str
