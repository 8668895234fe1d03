from pydantic import BaseModel


class ErrorInnerModel(BaseModel):
    details: list[str] = []
    message: str


class ErrorModel(BaseModel):
    """
    Body of every error response of the API.
    """

    error: ErrorInnerModel

    @classmethod
    def from_message(
        cls,
        message: str,
        details: list[str] | None = None,
    ) -> "ErrorModel":
        return cls(
            error=ErrorInnerModel(
                details=details or [],
                message=message,
            )
        )
