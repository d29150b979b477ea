"""Read-model query helpers.

Repository queries return one page (100 rows by default). Sweeps and
histories need every matching row, so they page through the whole result.
"""

PAGE_SIZE = 100


def fetch_all(query, page_size: int = PAGE_SIZE) -> list:
    """Return every row matched by a Protean queryset, one page at a time."""
    rows, offset = [], 0
    while True:
        page = query.limit(page_size).offset(offset).all()
        rows.extend(page.items)
        if not page.has_next:
            return rows
        offset += page_size
