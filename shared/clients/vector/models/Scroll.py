from pydantic import BaseModel


class ScrollResult(BaseModel):
    """Structured output of a single scroll page or a fully-collected scroll.

    Attributes:
        result:           List of point dicts ({"id", "payload", "vector"}) returned by the scroll.
        status:           Backend status string (e.g. "ok").
        time:             Time taken by the backend to execute the request.
        next_page_offset: Cursor for the next page, or None when all pages
                          have been consumed. Always None on results returned
                          by do_scroll_all().
    """

    result: list[dict]
    status: str = "ok"
    time: float = 0
    next_page_offset: str | int | None = None


class SearchPage(BaseModel):
    """One page of a similarity search.

    Attributes:
        hits:      Point dicts ({"id", "score", "payload"}) sorted by descending score.
        requested: The page size that was asked for. A page with fewer hits is the last one.
    """

    hits: list[dict]
    requested: int

    def is_last(self) -> bool:
        return len(self.hits) < self.requested
