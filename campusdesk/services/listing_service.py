from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Generic, Iterable, Mapping, Sequence, TypeVar

from campusdesk.config import settings


T = TypeVar('T')

ALL = 'all'


def _field_value(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


@dataclass(frozen=True)
class ListingState:
    search: str = ''
    filters: Mapping[str, str] = field(default_factory=dict)
    page: int = 1
    page_size: int = field(default_factory=lambda: settings.default_page_size)

    @classmethod
    def from_query(
        cls,
        params: Mapping[str, Any],
        *,
        filter_names: Iterable[str] = (),
        page_size: int | None = None,
    ) -> 'ListingState':
        try:
            page = int(params.get('page') or 1)
        except (TypeError, ValueError):
            page = 1
        filters = {name: str(params.get(name) or ALL) for name in filter_names}
        return cls(
            search=str(params.get('search') or '').strip(),
            filters=filters,
            page=max(page, 1),
            page_size=page_size or settings.default_page_size,
        )

    def with_search(self, search: str) -> 'ListingState':
        return replace(self, search=search.strip(), page=1)

    def with_filter(self, name: str, value: str) -> 'ListingState':
        filters = dict(self.filters)
        filters[name] = value or ALL
        return replace(self, filters=filters, page=1)

    def with_page(self, page: int) -> 'ListingState':
        return replace(self, page=max(int(page), 1))

    def query(self, **overrides: Any) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self.search:
            params['search'] = self.search
        for name, value in self.filters.items():
            if value and value != ALL:
                params[name] = value
        params['page'] = self.page
        params.update(overrides)
        return params


@dataclass(frozen=True)
class Page(Generic[T]):
    rows: list[T]
    page: int
    page_count: int
    total: int
    page_size: int

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.page_count

    @property
    def first_index(self) -> int:
        return 0 if self.total == 0 else (self.page - 1) * self.page_size + 1

    @property
    def last_index(self) -> int:
        return min(self.page * self.page_size, self.total)


def page_count(total: int, page_size: int) -> int:
    if total <= 0:
        return 0
    return math.ceil(total / page_size)


def filter_rows(rows: Sequence[T], state: ListingState, search_fields: Sequence[str]) -> list[T]:
    """Search then categorical filters; the page is not applied here."""
    needle = state.search.lower()
    result: list[T] = []
    for row in rows:
        if needle:
            haystack = (str(_field_value(row, name) or '').lower() for name in search_fields)
            if not any(needle in value for value in haystack):
                continue
        matched = True
        for name, selected in state.filters.items():
            if not selected or selected == ALL:
                continue
            if str(_field_value(row, name) or '') != selected:
                matched = False
                break
        if matched:
            result.append(row)
    return result


def paginate(rows: Sequence[T], state: ListingState) -> Page[T]:
    total = len(rows)
    size = max(int(state.page_size), 1)
    pages = page_count(total, size)
    page = min(max(state.page, 1), max(pages, 1))
    start = (page - 1) * size
    return Page(rows=list(rows[start:start + size]), page=page, page_count=pages, total=total, page_size=size)


def apply_listing(rows: Sequence[T], state: ListingState, search_fields: Sequence[str]) -> Page[T]:
    return paginate(filter_rows(rows, state, search_fields), state)
