"""
XMLTV Parser Service

Turns an XMLTV document into program records for one user. Small documents are
parsed into a DOM, large ones are fed through an event-driven parser so memory
stays bounded by the output rather than the input.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator
from datetime import datetime, timezone
from enum import Enum, auto
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from lxml import etree  # type: ignore

from livetv.errors import ParseError
from livetv.services.fetch_types import ProgramRecord
from livetv.utils.logging_helpers import format_file_size, format_number
from livetv.utils.timezone import ensure_utc, parse_xmltv_time, to_epoch_ms

logger = logging.getLogger(__name__)

DOM_SIZE_THRESHOLD = 10 * 1024 * 1024
DOM_BATCH_SIZE = 5000
PROGRESS_LOG_INTERVAL = 50000
STREAM_CHUNK_SIZE = 1024 * 1024
UNKNOWN_TITLE = "Unknown"

_STACK_EXHAUSTION_MARKERS = ("stack", "maximum call stack", "recursion", "excessive depth")

ProgramKey = tuple[str, str, int, int]


async def parse_epg_file(
    file_path: Path | str,
    username: str,
    *,
    parse_timeout_seconds: int | None = None
) -> list[ProgramRecord]:
    """
    Parse a cached XMLTV file, picking the strategy by file size

    Args:
        file_path: Path to the uncompressed XMLTV file
        username: Owner stamped onto every record

    Keyword Args:
        parse_timeout_seconds: Timeout for the whole parse (0/None disables it)

    Returns:
        Validated, deduplicated program records

    Raises:
        ParseError: If the document is malformed or parsing times out
    """
    file_path = Path(file_path)
    effective_timeout = parse_timeout_seconds if parse_timeout_seconds and parse_timeout_seconds > 0 else None

    try:
        if effective_timeout:
            return await asyncio.wait_for(
                _parse_epg_file(file_path, username),
                timeout=effective_timeout,
            )
        return await _parse_epg_file(file_path, username)
    except asyncio.TimeoutError:
        logger.error("EPG parsing timed out after %ss for %s", effective_timeout, file_path)
        raise ParseError(f"EPG parsing timed out after {effective_timeout}s") from None


async def _parse_epg_file(file_path: Path, username: str) -> list[ProgramRecord]:
    stats = await aiofiles.os.stat(file_path)

    if stats.st_size > DOM_SIZE_THRESHOLD:
        logger.info(
            "EPG file for %s is large (%s), using streaming parser",
            username,
            format_file_size(stats.st_size),
        )
        return await parse_epg_streaming(read_file_chunks(file_path), username)

    async with aiofiles.open(file_path, "rb") as f:
        data = await f.read()

    try:
        return await parse_epg_dom(data, username)
    except ParseError as exc:
        if not _is_stack_exhaustion(exc):
            raise
        logger.warning(
            "DOM parser exhausted its stack for %s (%s), falling back to streaming parser",
            username,
            exc,
        )
    del data
    return await parse_epg_streaming(read_file_chunks(file_path), username)


async def read_file_chunks(file_path: Path | str, chunk_size: int = STREAM_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield a file's bytes in fixed-size chunks."""
    async with aiofiles.open(file_path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                break
            yield chunk


def _is_stack_exhaustion(exc: BaseException) -> bool:
    """True when an error (or its cause) looks like stack/depth exhaustion."""
    current: BaseException | None = exc
    while current is not None:
        if isinstance(current, RecursionError):
            return True
        message = str(current).lower()
        if any(marker in message for marker in _STACK_EXHAUSTION_MARKERS):
            return True
        current = current.__cause__
    return False


# ---------------------------------------------------------------------------
# DOM strategy
# ---------------------------------------------------------------------------

def _parse_dom_tree(data: bytes) -> etree._Element:
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    return etree.fromstring(data, parser=parser)


async def parse_epg_dom(data: bytes, username: str) -> list[ProgramRecord]:
    """
    Parse an in-memory XMLTV document with lxml's tree builder

    Tree building is offloaded to the default executor; programme extraction
    runs in batches and yields to the event loop between them.
    """
    loop = asyncio.get_running_loop()
    try:
        root = await loop.run_in_executor(None, _parse_dom_tree, data)
    except etree.XMLSyntaxError as exc:
        raise ParseError(f"Malformed XMLTV document: {exc}") from exc
    except RecursionError as exc:
        raise ParseError(f"XMLTV document too deeply nested: {exc}") from exc

    channel_ids = {
        channel.get("id")
        for channel in root.iterchildren("channel")
        if channel.get("id")
    }
    logger.debug("Found %s advertised channels in EPG for %s", len(channel_ids), username)

    programmes = list(root.iterchildren("programme"))
    total = len(programmes)
    logger.debug(
        "Processing %s programmes for %s in batches of %s",
        format_number(total),
        username,
        format_number(DOM_BATCH_SIZE),
    )

    programs: list[ProgramRecord] = []
    seen_keys: set[ProgramKey] = set()

    for offset in range(0, total, DOM_BATCH_SIZE):
        for element in programmes[offset:offset + DOM_BATCH_SIZE]:
            program = extract_program(_programme_to_dict(element), username, channel_ids, seen_keys)
            if program:
                programs.append(program)

        processed = min(offset + DOM_BATCH_SIZE, total)
        if processed % PROGRESS_LOG_INTERVAL == 0:
            logger.info(
                "Processed %s/%s programmes for %s",
                format_number(processed),
                format_number(total),
                username,
            )
        await asyncio.sleep(0)

    logger.info(
        "DOM parser completed: %s programs extracted from %s programmes for %s",
        format_number(len(programs)),
        format_number(total),
        username,
    )
    return programs


def _element_text(element: etree._Element) -> str:
    return "".join(element.itertext()).strip()


def _programme_to_dict(element: etree._Element) -> dict[str, Any]:
    """Shape a <programme> element the way XMLTV JSON libraries do."""
    return {
        "channel": element.get("channel"),
        "start": element.get("start"),
        "stop": element.get("stop"),
        "title": [
            {"_value": _element_text(child), "lang": child.get("lang")}
            for child in element.iterchildren("title")
        ],
        "desc": [
            {"_value": _element_text(child), "lang": child.get("lang")}
            for child in element.iterchildren("desc")
        ],
        "category": [
            {"_value": _element_text(child), "lang": child.get("lang")}
            for child in element.iterchildren("category")
        ],
        "icon": [{"src": child.get("src")} for child in element.iterchildren("icon")],
        "episodeNum": [
            {"_value": _element_text(child), "system": child.get("system")}
            for child in element.iterchildren("episode-num")
        ],
    }


# ---------------------------------------------------------------------------
# Streaming strategy
# ---------------------------------------------------------------------------

class StreamState(Enum):
    OUTSIDE = auto()
    IN_PROGRAMME = auto()
    IN_TITLE = auto()
    IN_DESC = auto()
    IN_CATEGORY = auto()
    IN_EPISODE_NUM = auto()


_TAG_STATES = {
    "title": StreamState.IN_TITLE,
    "desc": StreamState.IN_DESC,
    "category": StreamState.IN_CATEGORY,
    "episode-num": StreamState.IN_EPISODE_NUM,
}

_STATE_FIELDS = {
    StreamState.IN_TITLE: "title",
    StreamState.IN_DESC: "desc",
    StreamState.IN_CATEGORY: "category",
    StreamState.IN_EPISODE_NUM: "episodeNum",
}

# depth of <channel>/<programme> under <tv>, and of their direct children
_TOP_LEVEL_DEPTH = 2
_CHILD_DEPTH = 3


class XMLTVStreamTarget:
    """
    lxml parser target implementing the programme state machine.

    Only direct children of <programme> are considered and the first
    occurrence of each field wins, mirroring the DOM strategy. Programmes whose
    channel has not been declared yet are held back and re-checked at the end
    of the document, together with any later programme for the same channel,
    so duplicates resolve in document order.
    """

    def __init__(self, username: str):
        self.username = username
        self.channel_ids: set[str] = set()
        self.programs: list[ProgramRecord] = []
        self.processed = 0
        self._seen_keys: set[ProgramKey] = set()
        self._pending: list[dict[str, Any]] = []
        self._pending_channels: set[str] = set()
        self._state = StreamState.OUTSIDE
        self._depth = 0
        self._current: dict[str, Any] | None = None
        self._text: list[str] = []

    def _transition(self, state: StreamState) -> None:
        self._state = state
        self._text = []

    def start(self, tag, attrib) -> None:
        self._depth += 1

        if self._state is StreamState.OUTSIDE:
            if self._depth != _TOP_LEVEL_DEPTH:
                return
            if tag == "channel":
                channel_id = attrib.get("id")
                if channel_id:
                    self.channel_ids.add(channel_id)
            elif tag == "programme":
                self._current = {
                    "channel": attrib.get("channel"),
                    "start": attrib.get("start"),
                    "stop": attrib.get("stop"),
                }
                self.processed += 1
                self._transition(StreamState.IN_PROGRAMME)
            return

        if self._state is StreamState.IN_PROGRAMME and self._depth == _CHILD_DEPTH:
            if tag == "icon":
                self._current.setdefault("icon", attrib.get("src"))
            elif tag in _TAG_STATES:
                self._transition(_TAG_STATES[tag])

    def data(self, text: str) -> None:
        if self._state in _STATE_FIELDS:
            self._text.append(text)

    def end(self, tag) -> None:
        if self._state in _STATE_FIELDS and self._depth == _CHILD_DEPTH:
            field_name = _STATE_FIELDS[self._state]
            self._current.setdefault(field_name, "".join(self._text).strip() or None)
            self._transition(StreamState.IN_PROGRAMME)
        elif self._state is StreamState.IN_PROGRAMME and self._depth == _TOP_LEVEL_DEPTH:
            self._finish_programme()
            self._current = None
            self._transition(StreamState.OUTSIDE)
        self._depth -= 1

    def _finish_programme(self) -> None:
        programme = self._current
        channel_id = programme.get("channel")
        # once a channel has held-back programmes, later ones queue behind them
        if channel_id and (channel_id not in self.channel_ids or channel_id in self._pending_channels):
            self._pending.append(programme)
            self._pending_channels.add(channel_id)
        else:
            self._emit(programme)

        if self.processed % PROGRESS_LOG_INTERVAL == 0:
            logger.info(
                "EPG parsing progress for %s: processed %s programmes, extracted %s programs",
                self.username,
                format_number(self.processed),
                format_number(len(self.programs)),
            )

    def _emit(self, programme: dict[str, Any]) -> None:
        program = extract_program(programme, self.username, self.channel_ids, self._seen_keys)
        if program:
            self.programs.append(program)

    def close(self) -> list[ProgramRecord]:
        pending, self._pending = self._pending, []
        self._pending_channels.clear()
        for programme in pending:
            self._emit(programme)
        return self.programs


async def parse_epg_streaming(chunks: AsyncIterable[bytes], username: str) -> list[ProgramRecord]:
    """
    Parse an XMLTV byte stream with an event-driven parser

    Args:
        chunks: Async iterable of raw (uncompressed) XML bytes
        username: Owner stamped onto every record

    Raises:
        ParseError: If the stream is not well-formed XML
    """
    target = XMLTVStreamTarget(username)
    parser = etree.XMLParser(
        target=target,
        huge_tree=True,
        resolve_entities=False,
        no_network=True,
    )

    try:
        async for chunk in chunks:
            parser.feed(chunk)
            await asyncio.sleep(0)
        programs = parser.close()
    except etree.XMLSyntaxError as exc:
        logger.error("Streaming parser error for %s: %s", username, exc)
        raise ParseError(f"Malformed XMLTV document: {exc}") from exc

    logger.info(
        "Streaming parser completed: %s programs extracted from %s programmes for %s",
        format_number(len(programs)),
        format_number(target.processed),
        username,
    )
    if target.processed and not programs:
        logger.warning(
            "No programmes matched an advertised channel for %s; check the EPG channel ids",
            username,
        )
    return programs


# ---------------------------------------------------------------------------
# Shared normalization
# ---------------------------------------------------------------------------

def extract_program(
    prog: dict[str, Any],
    username: str,
    channel_ids: set[str],
    seen_keys: set[ProgramKey],
) -> ProgramRecord | None:
    """
    Validate and normalize one programme

    Returns None when the programme references an undeclared channel, has
    unparseable or inverted times, or duplicates an already emitted
    (channel, start, stop).
    """
    channel_id = prog.get("channel")
    if not channel_id or channel_id not in channel_ids:
        return None

    start = _coerce_time(prog.get("start"))
    stop = _coerce_time(prog.get("stop"))
    if start is None or stop is None or stop <= start:
        return None

    program_key = (username, channel_id, to_epoch_ms(start), to_epoch_ms(stop))
    if program_key in seen_keys:
        return None
    seen_keys.add(program_key)

    now = datetime.now(timezone.utc)
    return ProgramRecord(
        username=username,
        channel_id=channel_id,
        start=start,
        stop=stop,
        title=_first_value(prog.get("title")) or UNKNOWN_TITLE,
        desc=_first_value(prog.get("desc")),
        category=_first_value(prog.get("category")),
        icon=_first_icon(prog.get("icon")),
        episode=_first_value(prog.get("episodeNum")),
        created_at=now,
        last_updated=now,
    )


def _coerce_time(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        return parse_xmltv_time(value)
    return None


def _first_value(value: Any) -> str | None:
    """Accept a string, a {'_value': ...} object, or a list of either."""
    if isinstance(value, list):
        if not value:
            return None
        value = value[0]
    if isinstance(value, dict):
        value = value.get("_value")
    if isinstance(value, str):
        return value.strip() or None
    return None


def _first_icon(value: Any) -> str | None:
    if isinstance(value, list):
        if not value:
            return None
        value = value[0]
    if isinstance(value, dict):
        value = value.get("src")
    if isinstance(value, str):
        return value or None
    return None
