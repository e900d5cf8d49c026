from pydantic import BaseModel


class SweepResponse(BaseModel):
    success: bool = True
    deleted: int
    failed: int
    errors: list[str] | None = None
