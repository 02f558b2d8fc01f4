import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth.models import User
from app.cache.client import CacheClient
from app.cache.keys import LEAD_STATS_KEY, lead_key, lead_write_keys
from app.core.errors import Conflict, InvalidInput, NotFound
from app.db.session import unit_of_work
from app.leads.models import Deal, Lead, LeadActivity
from app.leads.schemas import LeadCreateRequest, LeadOut, LeadPatchRequest

logger = logging.getLogger(__name__)


def _get_lead(db: Session, lead_id: int) -> Lead:
    lead = db.get(Lead, lead_id)
    if not lead:
        raise NotFound("Lead not found")
    return lead


def _ensure_assignee(db: Session, user_id: int | None) -> None:
    if user_id is not None and not db.get(User, user_id):
        raise NotFound("Assignee not found")


def _phone_taken(db: Session, phone: str, *, exclude_lead_id: int | None = None) -> bool:
    stmt = select(Lead.id).where(Lead.phone == phone)
    if exclude_lead_id is not None:
        stmt = stmt.where(Lead.id != exclude_lead_id)
    return db.execute(stmt).first() is not None


def _log_activity(db: Session, *, lead_id: int, user_id: int | None, activity_type: str, description: str) -> LeadActivity:
    row = LeadActivity(
        lead_id=lead_id,
        user_id=user_id,
        activity_type=activity_type,
        description=description,
    )
    db.add(row)
    return row


def _mark_closed_won(db: Session, lead_id: int) -> bool:
    result = db.execute(
        update(Lead)
        .where(Lead.id == lead_id, Lead.status != "closed_won")
        .values(status="closed_won")
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def create_lead(db: Session, cache: CacheClient, payload: LeadCreateRequest, *, acting_user_id: int) -> Lead:
    try:
        with unit_of_work(db):
            if _phone_taken(db, payload.phone):
                raise Conflict("Lead with this phone number already exists")
            _ensure_assignee(db, payload.assigned_to)
            lead = Lead(**payload.model_dump(), status="new")
            db.add(lead)
            db.flush()
            _log_activity(db, lead_id=lead.id, user_id=acting_user_id, activity_type="note", description="Lead created")
    except IntegrityError as exc:
        raise Conflict("Lead with this phone number already exists") from exc

    cache.delete(LEAD_STATS_KEY)
    logger.info("Lead created: lead_id=%s by user_id=%s", lead.id, acting_user_id)
    return lead


def get_lead(db: Session, cache: CacheClient, lead_id: int) -> LeadOut:
    key = lead_key(lead_id)
    cached = cache.get_json(key)
    if cached is not None:
        return LeadOut.model_validate(cached)

    out = LeadOut.model_validate(_get_lead(db, lead_id))
    cache.set_json(key, out.model_dump(mode="json"))
    return out


def list_leads(
    db: Session,
    *,
    status: str | None = None,
    source: str | None = None,
    assigned_to: int | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Lead], int]:
    stmt = select(Lead)
    if status:
        stmt = stmt.where(Lead.status == status)
    if source:
        stmt = stmt.where(Lead.source == source)
    if assigned_to is not None:
        stmt = stmt.where(Lead.assigned_to == assigned_to)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(stmt.order_by(Lead.created_at.desc(), Lead.id.desc()).limit(limit).offset(offset)).scalars().all()
    return list(rows), int(total)


def _has_deal(db: Session, lead_id: int) -> bool:
    return db.execute(select(Deal.id).where(Deal.lead_id == lead_id)).first() is not None


def _change_status(db: Session, lead: Lead, new_status: str) -> None:
    """Move a lead to ``new_status`` unless someone else moved it first.

    closed_won is reached only through ``convert``, and a lead that has a
    deal stays closed_won.
    """
    if new_status == "closed_won":
        raise InvalidInput("Leads become closed_won only through conversion")
    if _has_deal(db, lead.id):
        raise Conflict("Converted lead status cannot change")

    result = db.execute(
        update(Lead)
        .where(Lead.id == lead.id, Lead.status == lead.status)
        .values(status=new_status)
    )
    if result.rowcount != 1:
        raise Conflict("Lead status changed concurrently")


def update_lead(
    db: Session, cache: CacheClient, lead_id: int, patch: LeadPatchRequest, *, acting_user_id: int
) -> Lead:
    changes = patch.changes()
    new_status = changes.pop("status", None)
    try:
        with unit_of_work(db):
            lead = _get_lead(db, lead_id)
            if "phone" in changes and _phone_taken(db, changes["phone"], exclude_lead_id=lead_id):
                raise Conflict("Lead with this phone number already exists")
            if "assigned_to" in changes:
                _ensure_assignee(db, changes["assigned_to"])

            previous_status = lead.status
            status_changed = new_status is not None and new_status != previous_status
            if status_changed:
                _change_status(db, lead, new_status)
            for name, value in changes.items():
                setattr(lead, name, value)

            if status_changed:
                _log_activity(
                    db,
                    lead_id=lead_id,
                    user_id=acting_user_id,
                    activity_type="status_change",
                    description=f"Status changed from {previous_status} to {new_status}",
                )
            else:
                _log_activity(db, lead_id=lead_id, user_id=acting_user_id, activity_type="note", description="Lead updated")
    except IntegrityError as exc:
        raise Conflict("Lead with this phone number already exists") from exc

    cache.delete(*lead_write_keys(lead_id))
    logger.info("Lead updated: lead_id=%s by user_id=%s", lead_id, acting_user_id)
    return lead


def delete_lead(db: Session, cache: CacheClient, lead_id: int, *, acting_user_id: int) -> None:
    with unit_of_work(db):
        lead = _get_lead(db, lead_id)
        deals = db.execute(select(func.count(Deal.id)).where(Deal.lead_id == lead_id)).scalar_one()
        if deals:
            raise Conflict("Cannot delete a lead that has deals")
        db.delete(lead)

    cache.delete(*lead_write_keys(lead_id))
    logger.info("Lead deleted: lead_id=%s by user_id=%s", lead_id, acting_user_id)


def add_activity(
    db: Session, lead_id: int, *, activity_type: str, description: str, acting_user_id: int
) -> LeadActivity:
    with unit_of_work(db):
        _get_lead(db, lead_id)
        row = _log_activity(
            db, lead_id=lead_id, user_id=acting_user_id, activity_type=activity_type, description=description
        )
        db.flush()
    return row


def list_activities(db: Session, lead_id: int) -> list[LeadActivity]:
    rows = db.execute(
        select(LeadActivity)
        .where(LeadActivity.lead_id == lead_id)
        .order_by(LeadActivity.created_at.desc(), LeadActivity.id.desc())
    ).scalars()
    return list(rows.all())


def convert(
    db: Session,
    cache: CacheClient,
    *,
    lead_id: int,
    program_name: str,
    amount: Decimal,
    stage: str | None = None,
    expected_close_date: date | None = None,
    notes: str | None = None,
    acting_user_id: int,
) -> Deal:
    """Turn a lead into a deal in one unit of work.

    The deal, the lead's flip to closed_won and the audit entry commit
    together or not at all. A lead that is already closed_won is refused
    with Conflict so a lead never yields two deals.
    """
    with unit_of_work(db):
        lead = _get_lead(db, lead_id)
        deal = Deal(
            lead_id=lead.id,
            program_name=program_name,
            amount=amount,
            stage=stage or "proposal",
            assigned_to=lead.assigned_to,
            expected_close_date=expected_close_date,
            notes=notes,
        )
        db.add(deal)
        db.flush()

        if not _mark_closed_won(db, lead_id):
            raise Conflict("Lead already converted")

        _log_activity(
            db,
            lead_id=lead_id,
            user_id=acting_user_id,
            activity_type="conversion",
            description=f"Lead converted to deal #{deal.id}",
        )

    cache.delete(*lead_write_keys(lead_id))
    logger.info("Lead converted: lead_id=%s deal_id=%s by user_id=%s", lead_id, deal.id, acting_user_id)
    return deal
