# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
SQLAlchemy table definitions for schedules, catalog and sync logs
"""
from sqlalchemy import (
    JSON, Column, Date, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ScheduleRow(Base):
    __tablename__ = "teaching_schedules"
    __table_args__ = (
        UniqueConstraint("tenant_id", "week_start_date", "day_of_week", "time_slot_index",
                         name="uniq_schedule_tenant_week_slot"),
        Index("ix_schedule_scope", "tenant_id", "week_start_date"),
    )

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), nullable=False)
    week_start_date = Column(Date, nullable=False)
    day_of_week = Column(Integer, nullable=False)
    time_slot_index = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=False, default=1)

    # Denormalized snapshot so history stays renderable after catalog deletes
    course_id = Column(String(64), nullable=True, index=True)
    course_title = Column(String(255), nullable=False, default="Untitled Course")
    course_color = Column(String(64), nullable=True)
    course_duration = Column(Integer, nullable=True)
    instructor_id = Column(String(64), nullable=True, index=True)
    instructor_name = Column(String(255), nullable=False, default="TBD")
    instructor_email = Column(String(255), nullable=True)
    instructor_color = Column(String(64), nullable=True)

    room = Column(String(255), nullable=False, default="TBD")
    notes = Column(Text, nullable=True)

    external_id = Column(String(128), nullable=True, index=True)
    event_type_id = Column(String(64), nullable=True)
    provenance = Column(String(16), nullable=False, default="internal")

    version = Column(Integer, nullable=False, default=1)
    created_by = Column(String(64), nullable=True)
    updated_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class CourseRow(Base):
    __tablename__ = "teaching_courses"

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    color = Column(String(64), nullable=False, default="bg-blue-500")
    location = Column(String(255), nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=90)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class InstructorRow(Base):
    __tablename__ = "instructors"

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    color = Column(String(64), nullable=True)
    specialization = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class SyncLogRow(Base):
    """Append-only; rows are never updated"""
    __tablename__ = "schedule_sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    operation_id = Column(String(36), nullable=False, index=True)
    operation = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)
    tenant_id = Column(String(64), nullable=True, index=True)
    local_id = Column(String(64), nullable=True)
    external_id = Column(String(128), nullable=True)
    request_data = Column(JSON, nullable=True)
    response_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
