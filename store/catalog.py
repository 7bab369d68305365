# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Course and instructor catalog

Deleting a catalog record detaches it from schedule rows but leaves the
denormalized title/name snapshot in place, so past weeks still render.
"""
import logging
import uuid
from typing import Dict, List, Optional

from sqlalchemy import select, update

from errors import EntryNotFound
from models import Course, Instructor
from store.tables import CourseRow, InstructorRow, ScheduleRow
from utils.timezone import utc_now

logger = logging.getLogger(__name__)

COURSE_FIELDS = ('name', 'color', 'location', 'duration_minutes', 'description')
INSTRUCTOR_FIELDS = ('name', 'email', 'phone', 'color', 'specialization')


def _course(row: CourseRow) -> Course:
    return Course(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        color=row.color,
        location=row.location,
        duration_minutes=row.duration_minutes,
        description=row.description,
    )


def _instructor(row: InstructorRow) -> Instructor:
    return Instructor(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        color=row.color,
        specialization=row.specialization,
    )


class CatalogStore:
    """CRUD over courses and instructors, sharing the schedule store's database"""

    def __init__(self, schedule_store):
        self._store = schedule_store

    # Courses

    def list_courses(self, tenant_id: str) -> List[Course]:
        with self._store._guard('list_courses'), self._store.session() as session:
            stmt = select(CourseRow).where(CourseRow.tenant_id == tenant_id).order_by(CourseRow.name)
            return [_course(row) for row in session.scalars(stmt)]

    def get_course(self, tenant_id: str, course_id: str) -> Optional[Course]:
        with self._store._guard('get_course'), self._store.session() as session:
            row = session.get(CourseRow, course_id)
            return _course(row) if row and row.tenant_id == tenant_id else None

    def create_course(self, tenant_id: str, name: str, **fields) -> Course:
        now = utc_now()
        row = CourseRow(id=str(uuid.uuid4()), tenant_id=tenant_id, name=name,
                        created_at=now, updated_at=now)
        for key in COURSE_FIELDS[1:]:
            if fields.get(key) is not None:
                setattr(row, key, fields[key])
        with self._store._guard('create_course'), self._store.session() as session:
            session.add(row)
            session.flush()
            course = _course(row)
        logger.info(f"📚 Created course '{name}' ({course.id}) for {tenant_id}")
        return course

    def update_course(self, tenant_id: str, course_id: str, changes: Dict) -> Course:
        with self._store._guard('update_course'), self._store.session() as session:
            row = session.get(CourseRow, course_id)
            if row is None or row.tenant_id != tenant_id:
                raise EntryNotFound(f"course {course_id} not found", course_id=course_id)
            for key in COURSE_FIELDS:
                if key in changes:
                    setattr(row, key, changes[key])
            row.updated_at = utc_now()
            session.flush()
            return _course(row)

    def delete_course(self, tenant_id: str, course_id: str) -> bool:
        with self._store._guard('delete_course'), self._store.session() as session:
            row = session.get(CourseRow, course_id)
            if row is None or row.tenant_id != tenant_id:
                return False
            # Freeze the current name into the snapshot before detaching
            session.execute(
                update(ScheduleRow)
                .where(ScheduleRow.tenant_id == tenant_id, ScheduleRow.course_id == course_id)
                .values(course_id=None, course_title=row.name, course_color=row.color)
            )
            session.delete(row)
        logger.info(f"🗑️ Deleted course {course_id} for {tenant_id}")
        return True

    # Instructors

    def list_instructors(self, tenant_id: str) -> List[Instructor]:
        with self._store._guard('list_instructors'), self._store.session() as session:
            stmt = select(InstructorRow).where(
                InstructorRow.tenant_id == tenant_id
            ).order_by(InstructorRow.name)
            return [_instructor(row) for row in session.scalars(stmt)]

    def get_instructor(self, tenant_id: str, instructor_id: str) -> Optional[Instructor]:
        with self._store._guard('get_instructor'), self._store.session() as session:
            row = session.get(InstructorRow, instructor_id)
            return _instructor(row) if row and row.tenant_id == tenant_id else None

    def create_instructor(self, tenant_id: str, name: str, **fields) -> Instructor:
        now = utc_now()
        row = InstructorRow(id=str(uuid.uuid4()), tenant_id=tenant_id, name=name,
                            created_at=now, updated_at=now)
        for key in INSTRUCTOR_FIELDS[1:]:
            if fields.get(key) is not None:
                setattr(row, key, fields[key])
        with self._store._guard('create_instructor'), self._store.session() as session:
            session.add(row)
            session.flush()
            instructor = _instructor(row)
        logger.info(f"👤 Created instructor '{name}' ({instructor.id}) for {tenant_id}")
        return instructor

    def update_instructor(self, tenant_id: str, instructor_id: str, changes: Dict) -> Instructor:
        with self._store._guard('update_instructor'), self._store.session() as session:
            row = session.get(InstructorRow, instructor_id)
            if row is None or row.tenant_id != tenant_id:
                raise EntryNotFound(f"instructor {instructor_id} not found", instructor_id=instructor_id)
            for key in INSTRUCTOR_FIELDS:
                if key in changes:
                    setattr(row, key, changes[key])
            row.updated_at = utc_now()
            session.flush()
            return _instructor(row)

    def delete_instructor(self, tenant_id: str, instructor_id: str) -> bool:
        with self._store._guard('delete_instructor'), self._store.session() as session:
            row = session.get(InstructorRow, instructor_id)
            if row is None or row.tenant_id != tenant_id:
                return False
            session.execute(
                update(ScheduleRow)
                .where(ScheduleRow.tenant_id == tenant_id, ScheduleRow.instructor_id == instructor_id)
                .values(instructor_id=None, instructor_name=row.name, instructor_email=row.email)
            )
            session.delete(row)
        logger.info(f"🗑️ Deleted instructor {instructor_id} for {tenant_id}")
        return True
