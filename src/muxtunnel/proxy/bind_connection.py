"""Unidirectional stream copy used by the splice engine."""

import asyncio
from collections.abc import Callable

DEFAULT_BUFFER_SIZE = 65536


async def bind_reader_writer(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    on_data: Callable[[int], None] | None = None,
) -> None:
    """
    Pipe data from reader to writer until EOF.

    Errors are not swallowed; the caller decides whether they mean a
    normal hang-up or a real failure.

    Args:
        reader: AsyncIO stream reader.
        writer: AsyncIO stream writer.
        buffer_size: Maximum bytes per read.
        on_data: Called with the size of each chunk handed to the writer.

    Raises:
        OSError: On read or write failure.
    """
    while True:
        data = await reader.read(buffer_size)
        if not data:
            break
        writer.write(data)
        if on_data is not None:
            on_data(len(data))
        await writer.drain()
