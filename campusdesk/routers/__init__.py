from campusdesk.route_logging import EndpointNameRoute
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

__all__ = [
    'attendance_ui',
    'auth',
    'billing_ui',
    'custom_fields_ui',
    'diary_ui',
    'hostel_ui',
    'id_cards_ui',
    'scheduling_ui',
    'schools_ui',
    'sections_ui',
    'ui',
]
