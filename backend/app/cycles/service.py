"""Programs, cycles and capacity-checked enrollment.

Seat accounting lives entirely in two conditional UPDATE statements
(``_claim_seat`` / ``_release_seat``), so ``current_students`` cannot pass
``max_students`` however requests interleave.
"""

import logging
from decimal import Decimal

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth.models import User
from app.cache.client import CacheClient
from app.cache.keys import CYCLE_STATS_KEY, cycle_key, cycle_write_keys
from app.core.errors import CapacityExceeded, Conflict, InvalidInput, NotFound
from app.cycles.models import Cycle, Enrollment, Program
from app.cycles.schemas import (
    CycleCreateRequest,
    CycleOut,
    CyclePatchRequest,
    CycleStudentOut,
    EnrollmentPatchRequest,
    ProgramCreateRequest,
)
from app.db.session import unit_of_work

logger = logging.getLogger(__name__)


def create_program(db: Session, cache: CacheClient, payload: ProgramCreateRequest) -> Program:
    with unit_of_work(db):
        program = Program(**payload.model_dump())
        db.add(program)
        db.flush()
    cache.delete(CYCLE_STATS_KEY)
    return program


def list_programs(db: Session) -> list[Program]:
    return list(db.execute(select(Program).order_by(Program.name)).scalars().all())


def _get_cycle(db: Session, cycle_id: int) -> Cycle:
    cycle = db.get(Cycle, cycle_id)
    if not cycle:
        raise NotFound("Cycle not found")
    return cycle


def _claim_seat(db: Session, cycle_id: int) -> bool:
    result = db.execute(
        update(Cycle)
        .where(
            Cycle.id == cycle_id,
            or_(Cycle.max_students.is_(None), Cycle.current_students < Cycle.max_students),
        )
        .values(current_students=Cycle.current_students + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _release_seat(db: Session, cycle_id: int) -> None:
    db.execute(
        update(Cycle)
        .where(Cycle.id == cycle_id, Cycle.current_students > 0)
        .values(current_students=Cycle.current_students - 1)
        .execution_options(synchronize_session=False)
    )


def create_cycle(db: Session, cache: CacheClient, payload: CycleCreateRequest, *, acting_user_id: int) -> Cycle:
    with unit_of_work(db):
        if not db.get(Program, payload.program_id):
            raise NotFound("Program not found")
        cycle = Cycle(**payload.model_dump(), status="planned", current_students=0)
        db.add(cycle)
        db.flush()

    cache.delete(CYCLE_STATS_KEY)
    logger.info("Cycle created: cycle_id=%s by user_id=%s", cycle.id, acting_user_id)
    return cycle


def get_cycle(db: Session, cache: CacheClient, cycle_id: int) -> CycleOut:
    key = cycle_key(cycle_id)
    cached = cache.get_json(key)
    if cached is not None:
        return CycleOut.model_validate(cached)

    out = CycleOut.model_validate(_get_cycle(db, cycle_id))
    cache.set_json(key, out.model_dump(mode="json"))
    return out


def list_cycles(
    db: Session,
    *,
    status: str | None = None,
    program_id: int | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Cycle], int]:
    stmt = select(Cycle)
    if status:
        stmt = stmt.where(Cycle.status == status)
    if program_id:
        stmt = stmt.where(Cycle.program_id == program_id)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(stmt.order_by(Cycle.start_date.desc()).limit(limit).offset(offset)).scalars().all()
    return list(rows), int(total)


def update_cycle(
    db: Session, cache: CacheClient, cycle_id: int, patch: CyclePatchRequest, *, acting_user_id: int
) -> Cycle:
    changes = patch.changes()
    with unit_of_work(db):
        cycle = _get_cycle(db, cycle_id)

        if "max_students" in changes:
            new_max = changes.pop("max_students")
            stmt = update(Cycle).where(Cycle.id == cycle_id)
            if new_max is not None:
                # same row-level guard as the seat claim, against concurrent enrollments
                stmt = stmt.where(Cycle.current_students <= new_max)
            result = db.execute(
                stmt.values(max_students=new_max).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise Conflict("max_students cannot be lower than current enrollment")

        for name, value in changes.items():
            setattr(cycle, name, value)
        if cycle.end_date < cycle.start_date:
            raise InvalidInput("end_date must not be before start_date")

    cache.delete(*cycle_write_keys(cycle_id))
    logger.info("Cycle updated: cycle_id=%s by user_id=%s", cycle_id, acting_user_id)
    return cycle


def delete_cycle(db: Session, cache: CacheClient, cycle_id: int, *, acting_user_id: int) -> None:
    with unit_of_work(db):
        cycle = _get_cycle(db, cycle_id)
        enrolled = db.execute(
            select(func.count(Enrollment.id)).where(Enrollment.cycle_id == cycle_id)
        ).scalar_one()
        if enrolled:
            raise Conflict("Cannot delete cycle with existing enrollments")
        db.delete(cycle)

    cache.delete(*cycle_write_keys(cycle_id))
    logger.info("Cycle deleted: cycle_id=%s by user_id=%s", cycle_id, acting_user_id)


def list_cycle_students(db: Session, cycle_id: int) -> list[CycleStudentOut]:
    _get_cycle(db, cycle_id)
    rows = db.execute(
        select(Enrollment, User)
        .join(User, Enrollment.user_id == User.id)
        .where(Enrollment.cycle_id == cycle_id)
        .order_by(Enrollment.enrolled_at.desc())
    ).all()
    return [
        CycleStudentOut(
            id=enrollment.id,
            user_id=enrollment.user_id,
            cycle_id=enrollment.cycle_id,
            status=enrollment.status,
            payment_status=enrollment.payment_status,
            total_paid=enrollment.total_paid,
            notes=enrollment.notes,
            enrolled_at=enrollment.enrolled_at,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
        )
        for enrollment, user in rows
    ]


def enroll(
    db: Session,
    cache: CacheClient,
    *,
    cycle_id: int,
    user_id: int,
    payment_status: str = "pending",
    total_paid: Decimal | int = 0,
    notes: str | None = None,
) -> Enrollment:
    """Enroll ``user_id`` in ``cycle_id`` as one unit of work.

    Raises NotFound (cycle or user), CapacityExceeded (no seat left) or
    Conflict (already enrolled). On any error the seat claim is rolled back
    together with everything else.
    """
    try:
        with unit_of_work(db):
            _get_cycle(db, cycle_id)
            if not db.get(User, user_id):
                raise NotFound("User not found")

            if not _claim_seat(db, cycle_id):
                raise CapacityExceeded()

            already = db.execute(
                select(Enrollment.id).where(Enrollment.user_id == user_id, Enrollment.cycle_id == cycle_id)
            ).first()
            if already:
                raise Conflict("User already enrolled in this cycle")

            enrollment = Enrollment(
                user_id=user_id,
                cycle_id=cycle_id,
                status="active",
                payment_status=payment_status or "pending",
                total_paid=total_paid or 0,
                notes=notes,
            )
            db.add(enrollment)
            db.flush()
    except IntegrityError as exc:
        # unique (user_id, cycle_id) caught a concurrent duplicate
        raise Conflict("User already enrolled in this cycle") from exc

    cache.delete(*cycle_write_keys(cycle_id))
    logger.info("Student enrolled: cycle_id=%s user_id=%s enrollment_id=%s", cycle_id, user_id, enrollment.id)
    return enrollment


def remove_enrollment(
    db: Session, cache: CacheClient, cycle_id: int, enrollment_id: int, *, acting_user_id: int
) -> None:
    with unit_of_work(db):
        result = db.execute(
            delete(Enrollment)
            .where(Enrollment.id == enrollment_id, Enrollment.cycle_id == cycle_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound("Enrollment not found")
        _release_seat(db, cycle_id)

    cache.delete(*cycle_write_keys(cycle_id))
    logger.info(
        "Student removed: cycle_id=%s enrollment_id=%s by user_id=%s", cycle_id, enrollment_id, acting_user_id
    )


def update_enrollment(
    db: Session, cache: CacheClient, cycle_id: int, enrollment_id: int, patch: EnrollmentPatchRequest
) -> Enrollment:
    with unit_of_work(db):
        enrollment = db.execute(
            select(Enrollment).where(Enrollment.id == enrollment_id, Enrollment.cycle_id == cycle_id)
        ).scalar_one_or_none()
        if not enrollment:
            raise NotFound("Enrollment not found")
        patch.apply_to(enrollment)

    cache.delete(*cycle_write_keys(cycle_id))
    return enrollment
