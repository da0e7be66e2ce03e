"""患者与处方接口结构。"""

from datetime import date
from uuid import UUID

from pydantic import Field

from parms_api.schemas.common import CamelSchema


class PatientCreateRequest(CamelSchema):
    """前台建档请求，病历号由服务端生成。"""

    first_name: str = Field(min_length=1, max_length=128)
    last_name: str = Field(min_length=1, max_length=128)
    email: str | None = Field(default=None, max_length=256, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str | None = Field(default=None, max_length=32)
    date_of_birth: date | None = None


class RefillData(CamelSchema):
    prescription_id: UUID
    refills_remaining: int = Field(description="剩余续方次数。")
