# dualarb/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
import logging
import sys
import os
from typing import List, Any, Optional, Sequence


class AsyncAuditLogger:
    """
    CSV audit trail (skipped opportunities, closed pairings) written off the tick path.
    Rows are queued synchronously and flushed in batches by one background task.
    """
    def __init__(self, filepath: str, header: Optional[Sequence[str]] = None):
        self.filepath = filepath
        self.header = list(header) if header else None
        self._pending: asyncio.Queue = asyncio.Queue()
        self._flusher: Optional[asyncio.Task] = None

    async def start(self):
        folder = os.path.dirname(self.filepath)
        if folder:
            os.makedirs(folder, exist_ok=True)

        # Header goes in only once per file, resumed sessions keep appending
        needs_header = self.header is not None and (
            not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0
        )
        if needs_header:
            await self._append([self.header])
        self._flusher = asyncio.create_task(self._flush_forever())

    def log_row(self, row: List[Any]):
        """
        Never blocks and never awaits, so ledger and slot code can call it from sync methods.
        """
        self._pending.put_nowait(row)

    async def stop(self):
        """
        Waits for every queued row to reach disk, then stops the flusher.
        """
        if self._flusher is None:
            return
        await self._pending.join()
        self._flusher.cancel()
        try:
            await self._flusher
        except asyncio.CancelledError:
            pass
        self._flusher = None

    async def _append(self, rows: List[List[Any]]):
        async with aiofiles.open(self.filepath, mode='a', newline='') as f:
            writer = AsyncWriter(f, dialect='unix')
            await writer.writerows(rows)

    async def _flush_forever(self):
        while True:
            batch = [await self._pending.get()]
            while not self._pending.empty():
                batch.append(self._pending.get_nowait())
            try:
                await self._append(batch)
            except Exception as e:
                # A failed write must not stop the flusher, stop() joins on it
                print(f"AUDIT WRITE FAILED ({self.filepath}): {e}", file=sys.stderr)
            finally:
                for _ in batch:
                    self._pending.task_done()


def setup_console_logger(name: str, level: str) -> logging.Logger:
    """
    Console logger shared by every component (passed in through constructors).
    """
    logger = logging.getLogger(name)
    logger.setLevel(level.upper())

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s'))
        logger.addHandler(handler)
        # Keep third-party chatter out of the operator console
        logging.getLogger("ccxt").setLevel(logging.WARNING)
        logging.getLogger("aiohttp").setLevel(logging.WARNING)

    return logger
