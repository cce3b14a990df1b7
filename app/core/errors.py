"""
Application error carrying an HTTP status and a stable error code.

An HTTPException whose detail is the human-readable message. Rendered by the
handler registered in app.main as
{"success": false, "error": <code>, "message": <message>}.
"""
from fastapi import HTTPException


class AppError(HTTPException):
    def __init__(self, message: str, status_code: int = 500, code: str = "INTERNAL_ERROR"):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.code = code

    def __repr__(self) -> str:
        return f"<AppError(status={self.status_code}, code={self.code!r})>"
