from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict = Field(default_factory=dict)
    correlation_id: str
    # Infrastructure failures may be retried; credential rejections never change on retry.
    retryable: bool = True


class ErrorEnvelope(BaseModel):
    error: ErrorBody
