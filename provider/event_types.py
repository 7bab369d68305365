# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Course -> provider event type resolution

A course is mirrored only if it has an event type: either one whose slug is
`teaching-<courseId>`, one whose metadata names the course id, or one created
on demand when auto-creation is enabled.
"""
import logging
from threading import Lock
from typing import Dict, Iterable, Optional

from models import Course, CourseRef

logger = logging.getLogger(__name__)


def course_slug(course_id: str) -> str:
    return f"teaching-{course_id}"


class EventTypeResolver:
    """Caches course id -> event type id for one tenant"""

    def __init__(self, provider, tenant_id: str, auto_create: bool = False,
                 default_duration: int = 90):
        self.provider = provider
        self.tenant_id = tenant_id
        self.auto_create = auto_create
        self.default_duration = default_duration
        self._cache: Dict[str, str] = {}
        self._loaded = False
        self._lock = Lock()

    def refresh(self) -> bool:
        """Reload the cache from the provider; False if the provider could not be read"""
        result = self.provider.list_event_types()
        if not result.ok:
            logger.warning(f"⚠️ Could not list event types: {result.error.message}")
            return False

        cache = {}
        for event_type in result.data:
            if not isinstance(event_type, dict) or event_type.get('id') is None:
                continue
            metadata = event_type.get('metadata') or {}
            course_id = metadata.get('courseId') if isinstance(metadata, dict) else None
            slug = event_type.get('slug') or ''
            if not course_id and slug.startswith('teaching-'):
                course_id = slug[len('teaching-'):]
            if course_id:
                cache[str(course_id)] = str(event_type['id'])

        with self._lock:
            self._cache = cache
            self._loaded = True
        logger.info(f"📋 Loaded {len(cache)} course event types for {self.tenant_id}")
        return True

    def cached(self, course_id: str) -> Optional[str]:
        with self._lock:
            return self._cache.get(str(course_id))

    def resolve(self, course: CourseRef, location: Optional[str] = None) -> Optional[str]:
        """Event type id for the course, or None if the course cannot be mirrored"""
        if not course.id:
            return None

        event_type_id = self.cached(course.id)
        if event_type_id:
            return event_type_id

        with self._lock:
            loaded = self._loaded
        if not loaded:
            self.refresh()
            event_type_id = self.cached(course.id)
            if event_type_id:
                return event_type_id

        if not self.auto_create:
            logger.debug(f"No event type for course {course.id}; entry stays internal")
            return None
        return self._create(course.id, course.title, course.duration or self.default_duration, location)

    def _create(self, course_id: str, title: str, duration_minutes: int,
                location: Optional[str] = None, description: Optional[str] = None) -> Optional[str]:
        result = self.provider.create_event_type(
            title=f"{title} - Teaching Session",
            duration_minutes=duration_minutes,
            location_info=location,
            metadata={'courseId': str(course_id), 'course': title, 'company': self.tenant_id},
            slug=course_slug(course_id),
            description=description or f"Teaching session for {title}",
        )
        if not result.ok:
            logger.warning(f"⚠️ Could not create event type for course {course_id}: {result.error.message}")
            return None

        with self._lock:
            self._cache[str(course_id)] = result.data
        logger.info(f"✅ Created event type {result.data} for course '{title}'")
        return result.data

    def initialize_event_types(self, courses: Iterable[Course]) -> Dict[str, int]:
        """Ensure every course has an event type; returns created/existing/failed counts"""
        self.refresh()
        counts = {'created': 0, 'existing': 0, 'failed': 0}
        for course in courses:
            if not course.id:
                counts['failed'] += 1
                continue
            if self.cached(course.id):
                counts['existing'] += 1
                continue
            created = self._create(course.id, course.name, course.duration_minutes or self.default_duration,
                                   course.location, course.description)
            counts['created' if created else 'failed'] += 1

        logger.info(f"📋 Event type initialization for {self.tenant_id}: {counts}")
        return counts
