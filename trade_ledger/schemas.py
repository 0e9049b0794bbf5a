from typing import Literal

from pydantic import BaseModel, Field


class OkResponseSchema(BaseModel):
    success: Literal[True] = Field(default=True)

class ErrorResponseSchema(BaseModel):
    success: Literal[False] = Field(default=False)
    error: str
