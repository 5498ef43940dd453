from typing import Any, Optional, Dict
from pydantic import BaseModel
from bson import ObjectId

class APIResponse(BaseModel):
    success: bool = True
    message: str = "Success"
    data: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None

def to_jsonable(obj):
    """Mongo ids become strings and models become plain dicts, recursively."""
    if isinstance(obj, ObjectId):
        return str(obj)
    elif isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    elif isinstance(obj, (list, tuple)):
        return [to_jsonable(item) for item in obj]
    elif isinstance(obj, dict):
        return {k: to_jsonable(v) for k, v in obj.items()}
    else:
        return obj

def success_response(data: Any = None, message: str = "Success") -> APIResponse:
    return APIResponse(success=True, message=message, data=to_jsonable(data))

def error_response(message: str = "Error", error: Dict[str, Any] = None) -> APIResponse:
    return APIResponse(success=False, message=message, error=error)
