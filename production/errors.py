from __future__ import annotations

from typing import Any


class ProductionError(Exception):
    status_code = 500

    def __init__(self, code: str, message: str | None = None, **details: Any) -> None:
        self.code = code
        self.message = message or code.replace("_", " ")
        self.details = details
        super().__init__(self.message)

    def as_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}

    def __str__(self) -> str:
        if not self.details:
            return f"{self.code}: {self.message}"
        return f"{self.code}: {self.message} {self.details}"


class NotFound(ProductionError):
    status_code = 404


class ValidationError(ProductionError):
    status_code = 400


class Forbidden(ProductionError):
    status_code = 403


class Conflict(ProductionError):
    status_code = 409
