from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Literal


logger = logging.getLogger(__name__)

FLASH_COOKIE = 'flash_toasts'
ToastVariant = Literal['success', 'error', 'info']


@dataclass(frozen=True)
class Toast:
    title: str
    description: str = ''
    variant: ToastVariant = 'success'


@dataclass
class ToastQueue:
    items: list[Toast] = field(default_factory=list)

    def success(self, title: str, description: str = '') -> Toast:
        return self.push(Toast(title=title, description=description, variant='success'))

    def error(self, title: str, description: str = '') -> Toast:
        return self.push(Toast(title=title, description=description, variant='error'))

    def info(self, title: str, description: str = '') -> Toast:
        return self.push(Toast(title=title, description=description, variant='info'))

    def push(self, toast: Toast) -> Toast:
        self.items.append(toast)
        return toast

    def extend(self, toasts: list[Toast]) -> None:
        self.items.extend(toasts)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


def encode_flash(toasts: list[Toast]) -> str:
    raw = json.dumps([asdict(toast) for toast in toasts], separators=(',', ':')).encode('utf-8')
    return base64.urlsafe_b64encode(raw).decode('ascii').rstrip('=')


def decode_flash(value: str | None) -> list[Toast]:
    if not value:
        return []
    try:
        padded = value + '=' * (-len(value) % 4)
        rows = json.loads(base64.urlsafe_b64decode(padded.encode('ascii')).decode('utf-8'))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        logger.warning('flash_cookie_unreadable')
        return []
    if not isinstance(rows, list):
        return []
    toasts: list[Toast] = []
    for row in rows:
        if not isinstance(row, dict) or not row.get('title'):
            continue
        variant = row.get('variant') if row.get('variant') in ('success', 'error', 'info') else 'info'
        toasts.append(Toast(title=str(row['title']), description=str(row.get('description') or ''), variant=variant))
    return toasts
