from typing import List, Optional


class AssistantError(Exception):
    """Base error for the assistant engine."""

    def __init__(self, message: str, code: str = "ASSISTANT_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class MessageValidationError(AssistantError):
    """Raised when user input is empty, too long or otherwise unusable."""

    def __init__(self, errors: List[str]):
        super().__init__(f"Invalid message content: {', '.join(errors)}", "INVALID_MESSAGE")
        self.errors = errors

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class UpstreamDataError(AssistantError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message, "UPSTREAM_UNAVAILABLE")
        self.status = status


class PersistenceError(AssistantError):
    def __init__(self, message: str):
        super().__init__(message, "PERSISTENCE_ERROR")
