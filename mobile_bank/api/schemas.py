"""
Pydantic schemas for API requests
"""

from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Auth schemas
class RegisterRequest(CamelModel):
    email: str
    name: str
    phone_number: str = Field(..., alias="phoneNumber")
    password: str


class LoginRequest(CamelModel):
    email: str
    password: str = Field(..., min_length=1)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., alias="refreshToken", min_length=1)


class BiometricRequest(CamelModel):
    biometric_enabled: bool = Field(..., alias="biometricEnabled")


# Transfer schemas
class TransferRequest(CamelModel):
    from_account_id: str = Field(..., alias="fromAccountId")
    to_account_id: Optional[str] = Field(None, alias="toAccountId")
    to_phone_ref: Optional[str] = Field(None, alias="toPhoneRef")
    amount: Union[StrictStr, StrictInt, StrictFloat] = Field(..., description="Decimal amount; strings preserve precision")
    description: Optional[str] = None
    recipient_name: Optional[str] = Field(None, alias="recipientName")
