from typing import Any, AsyncIterator, Awaitable, Callable, List

from loguru import logger

PageFetcher = Callable[[int], Awaitable[dict]]


def total_pages(page: dict) -> int:
    """Read the page count from either a v2 or a v3 collection response"""
    if "pagination" in page:
        return page["pagination"].get("total_pages") or 1
    return page.get("total_pages") or 1


class Pager:
    """Lazily walks every page of a collection endpoint.

    Page 1 is fetched first to learn the page count, the remaining pages are
    requested in order as the iteration reaches them. Each new `async for`
    starts over from page 1.
    """

    def __init__(self, fetch_page: PageFetcher):
        self.fetch_page = fetch_page
        self.logger = logger

    async def __aiter__(self) -> AsyncIterator[Any]:
        first = await self.fetch_page(1)
        pages = total_pages(first)
        self.logger.debug(f"Collection has {pages} page(s)")

        for resource in first.get("resources", []):
            yield resource

        for number in range(2, pages + 1):
            page = await self.fetch_page(number)
            for resource in page.get("resources", []):
                yield resource

    async def collect(self) -> List[Any]:
        return [resource async for resource in self]
