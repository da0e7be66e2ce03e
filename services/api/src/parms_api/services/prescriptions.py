"""处方续方。"""

import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from parms_api.core.errors import NotFoundError, ValidationError
from parms_api.models.clinical import Prescription
from parms_api.models.enums import PrescriptionStatus

logger = logging.getLogger(__name__)


def process_refill(db: Session, prescription_id: UUID) -> int:
    """扣减一次续方并返回剩余次数。

    扣减是单条条件 UPDATE，并发续方不会同时消耗最后一次额度。
    """
    result = db.execute(
        update(Prescription)
        .where(Prescription.id == prescription_id)
        .where(Prescription.status == PrescriptionStatus.ACTIVE)
        .where(Prescription.refills_remaining > 0)
        .values(refills_remaining=Prescription.refills_remaining - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        prescription = db.get(Prescription, prescription_id)
        db.rollback()
        if prescription is None:
            raise NotFoundError("处方不存在。")
        if prescription.status != PrescriptionStatus.ACTIVE:
            raise ValidationError("处方未处于有效状态，无法续方。", code="PRESCRIPTION_INACTIVE")
        raise ValidationError("处方已无剩余续方次数。", code="NO_REFILLS_REMAINING")

    db.commit()
    remaining = db.execute(
        select(Prescription.refills_remaining).where(Prescription.id == prescription_id)
    ).scalar_one()
    logger.info("prescription refilled prescription_id=%s remaining=%s", prescription_id, remaining)
    return remaining
