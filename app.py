# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

#!/usr/bin/env python3
"""
Course Schedule Sync - JSON API over the schedule service
"""
import logging
import threading
from datetime import date

from flask import Flask, has_request_context, jsonify, redirect, request

import config
from errors import (
    EntryNotFound, NotAuthenticated, NotInitialized, ScheduleError, SlotConflict, SlotOccupied,
    ValidationError
)
from grid import TimeGrid
from presentation import ScheduleView
from provider import EventTypeResolver, NullProviderClient, ProviderClient
from store import CatalogStore, ScheduleStore
from sync import ReconcileScheduler, Reconciler, ScheduleService, SyncEngine, SyncLog
from utils.logger import setup_logging
from utils.timezone import utc_now

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = config.PROVIDER_TIMEOUT * (config.PROVIDER_MAX_RETRIES + 1) + 10


def current_user():
    """User id forwarded by the auth proxy in front of this service"""
    if has_request_context():
        return request.headers.get('X-User-Id')
    return None


def build_service(tenant_id: str = None, database_url: str = None, start: bool = True) -> ScheduleService:
    """Wire store, provider, engine and service from configuration"""
    tenant_id = tenant_id or config.DEFAULT_TENANT
    store = ScheduleStore(database_url=database_url)

    if config.PROVIDER_ENABLED and config.PROVIDER_API_KEY:
        provider = ProviderClient()
        auto_create = config.AUTO_CREATE_EVENT_TYPES
    else:
        logger.info("External mirroring disabled - using the in-memory provider")
        provider = NullProviderClient(attendee_timezone=config.PROVIDER_ATTENDEE_TIMEZONE)
        auto_create = True

    engine = SyncEngine(
        tenant_id,
        store,
        provider=provider,
        grid=TimeGrid.from_config(tenant_id),
        sync_log=SyncLog(config.SYNC_LOG_MAX_ENTRIES,
                         persist=store.append_sync_log if config.SYNC_LOG_PERSIST else None),
        event_types=EventTypeResolver(provider, tenant_id, auto_create=auto_create),
        reconciler=Reconciler(),
        current_user=current_user,
        dev_mode=config.DEV_MODE,
    )
    if start:
        engine.start()
    return ScheduleService(engine, catalog=CatalogStore(store))


def _error_status(error: ScheduleError) -> int:
    if isinstance(error, EntryNotFound):
        return 404
    if isinstance(error, (SlotOccupied, SlotConflict)):
        return 409
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotAuthenticated):
        return 401
    if isinstance(error, NotInitialized):
        return 503
    if error.category == 'state':
        return 409
    if error.category == 'provider':
        return 502
    return 503


def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def _int_field(data: dict, *names: str) -> int:
    for name in names:
        if data.get(name) is not None:
            try:
                return int(data[name])
            except (TypeError, ValueError):
                raise ValidationError(f"'{name}' must be an integer", field=name)
    raise ValidationError(f"'{names[0]}' is required", field=names[0])


def _week(value):
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"invalid week start '{value}'", field='weekStart')


def create_app(service: ScheduleService = None, scheduler: ReconcileScheduler = None) -> Flask:
    """Create the Flask app; without a service one is built from configuration on first use"""
    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY

    components = {'service': service, 'scheduler': scheduler}
    init_lock = threading.Lock()

    def get_service() -> ScheduleService:
        with init_lock:
            if components['service'] is None:
                logger.info("🚀 Initializing schedule service...")
                components['service'] = build_service()
                components['scheduler'] = ReconcileScheduler(components['service'].engine)
                components['scheduler'].start()
            return components['service']

    def respond(future):
        result = future.result(timeout=REQUEST_TIMEOUT)
        return jsonify(result.to_dict())

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Server'] = 'Course Schedule Sync'
        return response

    @app.before_request
    def enforce_https():
        if request.headers.get('X-Forwarded-Proto') == 'http':
            return redirect(request.url.replace('http://', 'https://', 1), code=301)

    @app.errorhandler(ScheduleError)
    def handle_schedule_error(error):
        status = _error_status(error)
        if status >= 500:
            logger.error(f"❌ {error.code}: {error.message}")
        else:
            logger.info(f"Request rejected ({error.code}): {error.message}")
        return jsonify({'success': False, **error.to_dict()}), status

    @app.route('/health')
    def health_check():
        return jsonify({
            "status": "healthy",
            "timestamp": utc_now().isoformat(),
            "service": "course-schedule-sync",
        }), 200

    @app.route('/api/status')
    def get_status():
        svc = get_service()
        engine = svc.engine
        scheduler_ = components['scheduler']
        return jsonify({
            **svc.status().to_dict(),
            'tenantId': engine.tenant_id,
            'circuitBreaker': engine.breaker.get_statistics(),
            'syncStatistics': engine.sync_log.get_statistics(),
            'schedulerRunning': bool(scheduler_ and scheduler_.is_running()),
            'timezone': str(engine.grid.zone),
        })

    @app.route('/api/grid')
    def get_grid():
        return jsonify({'slots': get_service().engine.grid.describe()})

    @app.route('/api/schedule')
    def list_schedule():
        svc = get_service()
        view = ScheduleView(svc)
        day = request.args.get('day', type=int)
        if day is not None:
            return jsonify({'entries': [e.to_dict() for e in view.all_for_day(day)]})
        return jsonify({'weekStart': svc.engine.week_start.isoformat() if svc.engine.week_start else None,
                        'entries': view.as_dict()})

    @app.route('/api/schedule/<int:day>/<int:slot>')
    def get_entry(day, slot):
        entry = get_service().get_entry(day, slot)
        if entry is None:
            raise EntryNotFound(f"no entry at slot {day}-{slot}")
        return jsonify(entry.to_dict())

    @app.route('/api/schedule', methods=['POST'])
    def create_entry():
        data = _body()
        day = _int_field(data, 'dayIndex', 'day_index')
        slot = _int_field(data, 'timeSlotIndex', 'time_slot_index')
        response = respond(get_service().create_entry(day, slot, data))
        return response, 201

    @app.route('/api/schedule/<entry_id>', methods=['PATCH'])
    def update_entry(entry_id):
        return respond(get_service().update_entry(entry_id, _body()))

    @app.route('/api/schedule/<entry_id>/resize', methods=['POST'])
    def resize_entry(entry_id):
        duration = _int_field(_body(), 'duration')
        return respond(get_service().resize_entry(entry_id, duration))

    @app.route('/api/schedule/<entry_id>/move', methods=['POST'])
    def move_entry(entry_id):
        data = _body()
        day = _int_field(data, 'dayIndex', 'day_index')
        slot = _int_field(data, 'timeSlotIndex', 'time_slot_index')
        return respond(get_service().move_entry(entry_id, day, slot))

    @app.route('/api/schedule/<int:day>/<int:slot>', methods=['DELETE'])
    def delete_entry(day, slot):
        return respond(get_service().delete_entry(day, slot))

    @app.route('/api/week', methods=['POST'])
    def switch_week():
        svc = get_service()
        week = _week(_body().get('weekStart'))
        if week is None:
            raise ValidationError("'weekStart' is required", field='weekStart')
        svc.switch_week(week)
        return jsonify({'success': True, **svc.status().to_dict()})

    @app.route('/api/reconcile', methods=['POST'])
    def reconcile():
        data = request.get_json(silent=True) or {}
        report = get_service().reconcile_week(_week(data.get('weekStart'))).result(timeout=REQUEST_TIMEOUT)
        return jsonify({'message': 'Reconciliation complete' if report.success else 'Reconciliation had errors',
                        **report.to_dict()})

    @app.route('/api/sync-log')
    def sync_log():
        engine = get_service().engine
        limit = request.args.get('limit', default=50, type=int)
        return jsonify({
            'records': [r.to_dict() for r in engine.sync_log.recent(limit)],
            'statistics': engine.sync_log.get_statistics(),
            'recentFailures': engine.sync_log.get_recent_failures(),
        })

    @app.route('/api/conflicts')
    def conflicts():
        return jsonify({'conflicts': [c.to_dict() for c in get_service().engine.conflicts()]})

    @app.route('/api/courses')
    def list_courses():
        svc = get_service()
        return jsonify({'courses': [vars(c) for c in svc.catalog.list_courses(svc.engine.tenant_id)]})

    @app.route('/api/courses', methods=['POST'])
    def create_course():
        svc = get_service()
        data = _body()
        if not data.get('name'):
            raise ValidationError("'name' is required", field='name')
        course = svc.catalog.create_course(
            svc.engine.tenant_id, data['name'], color=data.get('color'), location=data.get('location'),
            duration_minutes=data.get('durationMinutes'), description=data.get('description'),
        )
        return jsonify(vars(course)), 201

    @app.route('/api/courses/<course_id>', methods=['DELETE'])
    def delete_course(course_id):
        svc = get_service()
        if not svc.catalog.delete_course(svc.engine.tenant_id, course_id):
            raise EntryNotFound(f"course {course_id} not found")
        return jsonify({'success': True})

    @app.route('/api/instructors')
    def list_instructors():
        svc = get_service()
        return jsonify({'instructors': [vars(i) for i in svc.catalog.list_instructors(svc.engine.tenant_id)]})

    @app.route('/api/instructors', methods=['POST'])
    def create_instructor():
        svc = get_service()
        data = _body()
        if not data.get('name'):
            raise ValidationError("'name' is required", field='name')
        instructor = svc.catalog.create_instructor(
            svc.engine.tenant_id, data['name'], email=data.get('email'), phone=data.get('phone'),
            color=data.get('color'), specialization=data.get('specialization'),
        )
        return jsonify(vars(instructor)), 201

    @app.route('/api/instructors/<instructor_id>', methods=['DELETE'])
    def delete_instructor(instructor_id):
        svc = get_service()
        if not svc.catalog.delete_instructor(svc.engine.tenant_id, instructor_id):
            raise EntryNotFound(f"instructor {instructor_id} not found")
        return jsonify({'success': True})

    @app.route('/api/event-types/initialize', methods=['POST'])
    def initialize_event_types():
        return jsonify(get_service().initialize_event_types())

    return app


setup_logging()
app = create_app()


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=config.PORT, debug=config.DEBUG)
