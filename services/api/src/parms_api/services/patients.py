"""患者建档。"""

from datetime import date
import logging
import secrets

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parms_api.core.errors import ConflictError
from parms_api.models.clinical import Patient
from parms_api.models.enums import PatientStatus

logger = logging.getLogger(__name__)

MRN_PREFIX = "PAT"
MRN_LENGTH = 12
# 去掉易混淆字符后的 32 个符号，12 位约 60 bit 随机空间。
MRN_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
MRN_MAX_ATTEMPTS = 5


def generate_mrn() -> str:
    """生成病历号：PAT + 12 位随机字符。"""
    return MRN_PREFIX + "".join(secrets.choice(MRN_ALPHABET) for _ in range(MRN_LENGTH))


def create_patient(
    db: Session,
    *,
    first_name: str,
    last_name: str,
    email: str | None = None,
    phone: str | None = None,
    date_of_birth: date | None = None,
) -> Patient:
    """创建患者（不提交事务）。

    病历号唯一性由数据库唯一约束保证。每次尝试在独立保存点内写入，
    冲突时只回滚该保存点并重新生成，最多尝试 MRN_MAX_ATTEMPTS 次；
    调用方负责提交，注册流程借此让患者与账号同属一个事务。
    """
    for attempt in range(1, MRN_MAX_ATTEMPTS + 1):
        patient = Patient(
            mrn=generate_mrn(),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email.strip().lower() if email else None,
            phone=phone,
            date_of_birth=date_of_birth,
            status=PatientStatus.ACTIVE,
        )
        try:
            with db.begin_nested():
                db.add(patient)
        except IntegrityError:
            logger.warning("mrn collision, regenerating attempt=%s", attempt)
            continue
        logger.info("patient created patient_id=%s", patient.id)
        return patient

    raise ConflictError("病历号生成冲突，请稍后重试。", code="MRN_GENERATION_EXHAUSTED")
