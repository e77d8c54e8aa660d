from pydantic import BaseModel


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict = {}


class ErrorResponse(BaseModel):
    error: ErrorDetail


def error_detail(code: str, message: str) -> dict:
    """``HTTPException.detail`` payload in the ErrorResponse shape."""
    return ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(
        exclude={"error": {"details"}}
    )
