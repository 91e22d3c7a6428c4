from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles

from campusdesk.backend.clients import BackendClient
from campusdesk.backend.supabase import SupabaseClient
from campusdesk.cache import cache
from campusdesk.config import settings
from campusdesk.metrics import flush_metrics
from campusdesk.route_logging import EndpointNameRoute, configure_logging
from campusdesk.routers import (
    attendance_ui,
    auth,
    billing_ui,
    custom_fields_ui,
    diary_ui,
    hostel_ui,
    id_cards_ui,
    scheduling_ui,
    schools_ui,
    sections_ui,
    ui,
)
from campusdesk.services.binder import Binder
from campusdesk.services.dispatcher import DispatcherRegistry
from campusdesk.session_middleware import SessionAuthMiddleware
from campusdesk.templating import STATIC_DIR
from campusdesk.tenant_middleware import TenantResolutionMiddleware, get_request_app_state

configure_logging()


def install_state(target: FastAPI) -> list:
    """Attach shared clients, the binder and the dispatcher registry; returns the clients it created."""
    created = []
    if getattr(target.state, 'backend', None) is None:
        target.state.backend = BackendClient()
        created.append(target.state.backend)
    if getattr(target.state, 'supabase', None) is None:
        target.state.supabase = SupabaseClient()
        created.append(target.state.supabase)
    if getattr(target.state, 'binder', None) is None:
        target.state.binder = Binder(cache)
    if getattr(target.state, 'dispatchers', None) is None:
        target.state.dispatchers = DispatcherRegistry()
    return created


@asynccontextmanager
async def lifespan(target: FastAPI):
    created = install_state(target)
    logging.getLogger(__name__).info('app_started env=%s api_url=%s', settings.app_env, settings.api_url)
    yield
    for client in created:
        await client.aclose()
    flush_metrics()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute
app.mount('/ui-static', StaticFiles(directory=str(STATIC_DIR)), name='ui-static')
app.add_middleware(SessionAuthMiddleware)
app.add_middleware(TenantResolutionMiddleware)


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        app_state = get_request_app_state(request)
        logging.getLogger('campusdesk.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f user_id=%s campus_id=%s',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
            app_state.user_id,
            app_state.campus_id,
        )
    return response


app.include_router(auth.router)
app.include_router(ui.router)
app.include_router(billing_ui.router)
app.include_router(schools_ui.router)
app.include_router(sections_ui.router)
app.include_router(attendance_ui.router)
app.include_router(hostel_ui.router)
app.include_router(custom_fields_ui.router)
app.include_router(diary_ui.router)
app.include_router(scheduling_ui.router)
app.include_router(id_cards_ui.router)


@app.get('/health')
def healthcheck():
    return {'app': settings.app_name, 'status': 'ok'}
