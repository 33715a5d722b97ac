"""Signed URL issuance schemas"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class SignedUrlResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    signed_url: str


class RateLimitedResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    reset_time: int  # epoch milliseconds
