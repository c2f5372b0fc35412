import logging

from sqlalchemy.exc import IntegrityError

from .audit import safe_record
from .errors import InvalidRequestError, NotFoundError, ShiftAlreadyOpen
from .models import AuditAction, EntityType, Shift, utcnow
from .ports import AuditSink
from .store import ShiftStore

logger = logging.getLogger(__name__)


class ShiftLedger:
    """
    Cashier shifts: one open shift per (outlet, cashier).

    Closing looks the open shift up across the whole company unless the caller
    names an outlet; if a cashier has several open shifts the most recently
    opened one is closed.
    """

    def __init__(self, shifts: ShiftStore, audit: AuditSink):
        self.shifts = shifts
        self.audit = audit

    def open(
        self,
        company_id: int,
        outlet_id: int,
        cashier_user_id: int,
        opening_cash: int,
        note: str | None = None,
    ) -> Shift:
        if opening_cash < 0:
            raise InvalidRequestError("Opening cash cannot be negative")

        if self.shifts.find_open(company_id, outlet_id, cashier_user_id):
            raise ShiftAlreadyOpen(outlet_id, cashier_user_id)

        try:
            shift = self.shifts.add(Shift(
                company_id=company_id,
                outlet_id=outlet_id,
                cashier_user_id=cashier_user_id,
                opened_at=utcnow(),
                opening_cash=opening_cash,
                note=note,
            ))
        except IntegrityError:
            raise ShiftAlreadyOpen(outlet_id, cashier_user_id)

        logger.info(f"Shift #{shift.id} opened by user {cashier_user_id} at outlet {outlet_id}")
        safe_record(
            self.audit,
            AuditAction.SHIFT_OPEN,
            EntityType.SHIFT,
            entity_id=shift.id,
            actor_user_id=cashier_user_id,
            company_id=company_id,
            detail={"opening_cash": opening_cash},
        )
        return shift

    def close(
        self,
        company_id: int,
        cashier_user_id: int,
        closing_cash: int,
        note: str | None = None,
        outlet_id: int | None = None,
    ) -> Shift:
        if closing_cash < 0:
            raise InvalidRequestError("Closing cash cannot be negative")

        shift = self.shifts.find_open_for_cashier(company_id, cashier_user_id, outlet_id)
        if not shift:
            raise NotFoundError("No open shift found")

        merged_note = shift.note
        if note:
            merged_note = f"{shift.note or ''}\n{note}"

        if not self.shifts.close(shift, closing_cash, merged_note, utcnow()):
            # Closed by a concurrent request in the meantime
            raise NotFoundError("No open shift found")

        logger.info(f"Shift #{shift.id} closed by user {cashier_user_id}: closing_cash={closing_cash}")
        safe_record(
            self.audit,
            AuditAction.SHIFT_CLOSE,
            EntityType.SHIFT,
            entity_id=shift.id,
            actor_user_id=cashier_user_id,
            company_id=company_id,
            detail={"closing_cash": closing_cash},
        )
        return shift

    def current(self, company_id: int, outlet_id: int, cashier_user_id: int) -> Shift | None:
        return self.shifts.find_open(company_id, outlet_id, cashier_user_id)
