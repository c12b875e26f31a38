from typing import Iterator, Sequence, TypeVar

T = TypeVar("T")


def drain_chunks(items: list[T], size: int) -> Iterator[list[T]]:
    """
    Pop slices of at most `size` items off the front of `items` until it is empty.

    The generator owns `items`: it is emptied as chunks are yielded, so callers
    pass a private copy when the source must survive a failed import.
    """
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    while items:
        chunk = items[:size]
        del items[:size]
        yield chunk


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Non-destructive slices of at most `size` items."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start : start + size]
