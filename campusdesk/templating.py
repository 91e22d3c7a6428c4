from __future__ import annotations

from datetime import date
from pathlib import Path

from fastapi.templating import Jinja2Templates

from campusdesk.config import settings


UI_DIR = Path(__file__).resolve().parent / 'ui'
TEMPLATES_DIR = UI_DIR / 'templates'
STATIC_DIR = UI_DIR / 'static'


def money(value: float | int | None) -> str:
    return f'{settings.currency_symbol}{float(value or 0):,.2f}'


def long_date(value: date | None) -> str:
    if value is None:
        return ''
    return f'{value:%B} {value.day}, {value.year}'


templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters['money'] = money
templates.env.filters['long_date'] = long_date
templates.env.globals['app_name'] = settings.app_name
