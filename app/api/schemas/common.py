from pydantic import BaseModel


class EmptyResponse(BaseModel):
    """Returned by calls that have nothing to report on success."""


class HealthRequest(BaseModel):
    pass


class HealthResponse(BaseModel):
    status: str = "OK"
