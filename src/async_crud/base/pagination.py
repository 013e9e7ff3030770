# src/async_crud/base/pagination.py
"""Page window computation and paged results."""

import math
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Sequence, TypeVar

T = TypeVar("T")
U = TypeVar("U")

# Largest page size a caller may request. Out-of-range sizes are clamped to it.
MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class PageWindow:
    """Clamped paging inputs and the skip/take window they produce."""

    page: int
    per_page: int
    page_count: int
    total_count: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def take(self) -> int:
        return self.per_page


@dataclass(frozen=True)
class Page(Generic[T]):
    """
    A page of records.

    Attributes:
        page: Current page number (1-based, after clamping).
        per_page: Page size (after clamping).
        page_count: Total number of pages.
        total_count: Number of records across all pages.
        records: The records on this page.
    """

    page: int
    per_page: int
    page_count: int
    total_count: int
    records: List[T] = field(default_factory=list)

    @property
    def has_next(self) -> bool:
        return self.page < self.page_count

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    def map(self, func: Callable[[T], U]) -> "Page[U]":
        """Transform records, preserving paging metadata."""
        return Page(
            page=self.page,
            per_page=self.per_page,
            page_count=self.page_count,
            total_count=self.total_count,
            records=[func(r) for r in self.records],
        )


def compute_window(
    total_count: int,
    page: int,
    per_page: int,
    max_page_size: int = MAX_PAGE_SIZE,
) -> PageWindow:
    """
    Clamp paging inputs against ``total_count``.

    ``page`` below 1 becomes 1. ``per_page`` below 1 or above
    ``max_page_size`` becomes ``max_page_size``. A page beyond the last page
    is moved back to the last page when there is at least one page.
    """
    if page is None or page < 1:
        page = 1
    if per_page is None or per_page < 1 or per_page > max_page_size:
        per_page = max_page_size
    page_count = math.ceil(total_count / per_page)
    if page_count > 0 and page > page_count:
        page = page_count
    return PageWindow(
        page=page, per_page=per_page, page_count=page_count, total_count=total_count
    )


def paginate(
    items: Sequence[T],
    page: int,
    per_page: int,
    max_page_size: int = MAX_PAGE_SIZE,
) -> Page[T]:
    """Slice ``items`` into the requested page. The total is counted before slicing."""
    window = compute_window(len(items), page, per_page, max_page_size)
    return Page(
        page=window.page,
        per_page=window.per_page,
        page_count=window.page_count,
        total_count=window.total_count,
        records=list(items[window.skip: window.skip + window.take]),
    )
