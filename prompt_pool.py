from __future__ import annotations

import argparse
import json
import logging
import os
import queue
import select
import sys
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable
import termios
import tty

import requests
from dotenv import load_dotenv
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.padding import Padding
from rich.spinner import Spinner
from rich.text import Text
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

DEFAULT_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_WS_URL = "ws://127.0.0.1:8000/ws"
DEFAULT_TITLE = "Prompt Pool"
DEFAULT_LOG_FILE = "debug.log"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

DISPLAY_OPTIONS = ("title_bar", "status_bar", "pagination", "help", "spinner")
DEFAULT_DISPLAY_OPTIONS = frozenset({"title_bar", "status_bar", "pagination", "help"})
OPTION_KEYS = {
    "s": "spinner",
    "T": "title_bar",
    "S": "status_bar",
    "P": "pagination",
    "H": "help",
}
CURSOR_KEYS = {"UP": -1, "k": -1, "DOWN": 1, "j": 1}
PAGE_KEYS = {"PGUP": -1, "LEFT": -1, "h": -1, "PGDN": 1, "RIGHT": 1, "l": 1}

APP_PADDING = (1, 2)
ITEM_ROWS = 3

TITLE_STYLE = "bold #FFFDF5 on #25A065"
STATUS_MESSAGE_STYLE = "#04B575"
SELECTED_TITLE_STYLE = "bold #EE6FF8"
SELECTED_DESC_STYLE = "#AD58B4"

logger = logging.getLogger(__name__)


@dataclass
class AppConfig:
    base_url: str
    ws_url: str
    timeout_seconds: float
    title: str
    log_file: str
    log_level: str
    once: bool


@dataclass(frozen=True)
class Record:
    id: int
    title: str
    description: str


@dataclass(frozen=True)
class ViewState:
    records: tuple[Record, ...] = ()
    selected_index: int | None = None
    display_options: frozenset[str] = DEFAULT_DISPLAY_OPTIONS
    filter_text: str | None = None
    filtering: bool = False
    compose_field: str | None = None
    compose_title: str = ""
    compose_buffer: str = ""
    width: int = 76
    height: int = 22
    status_message: str = ""
    title: str = DEFAULT_TITLE


# Events accepted by Reconciler.submit.


@dataclass(frozen=True)
class ListReplaced:
    records: tuple[Record, ...]


@dataclass(frozen=True)
class ResizeRequested:
    width: int
    height: int


@dataclass(frozen=True)
class ToggleOption:
    option: str


@dataclass(frozen=True)
class DeleteRequested:
    pass


@dataclass(frozen=True)
class InsertRequested:
    title: str
    description: str


@dataclass(frozen=True)
class KeyPressed:
    key: str


@dataclass(frozen=True)
class CursorMoved:
    delta: int


@dataclass(frozen=True)
class PageMoved:
    delta: int


@dataclass(frozen=True)
class FilterStarted:
    pass


@dataclass(frozen=True)
class FilterChanged:
    text: str


@dataclass(frozen=True)
class FilterApplied:
    pass


@dataclass(frozen=True)
class FilterCleared:
    pass


@dataclass(frozen=True)
class ComposeStarted:
    pass


@dataclass(frozen=True)
class ComposeEdited:
    text: str


@dataclass(frozen=True)
class ComposeAdvanced:
    pass


@dataclass(frozen=True)
class ComposeClosed:
    pass


@dataclass(frozen=True)
class StatusPosted:
    message: str


@dataclass(frozen=True)
class QuitRequested:
    pass


@dataclass(frozen=True)
class PushChannelLost:
    reason: str


class PushChannelLostError(RuntimeError):
    pass


def short_error(exc: BaseException, limit: int = 160) -> str:
    return " ".join(str(exc).split())[:limit]


def truncate(value: str, width: int) -> str:
    if len(value) <= width:
        return value
    if width <= 1:
        return value[:width]
    return f"{value[: width - 1]}…"


def record_from_payload(raw: Any) -> Record:
    if not isinstance(raw, dict):
        raise ValueError(f"expected a prompt object, got {type(raw).__name__}")
    record_id = raw.get("id")
    if isinstance(record_id, bool) or not isinstance(record_id, int):
        raise ValueError(f"prompt id must be an integer, got {record_id!r}")
    title = raw.get("title")
    description = raw.get("description")
    if title is None:
        title = ""
    if description is None:
        description = ""
    if not isinstance(title, str) or not isinstance(description, str):
        raise ValueError(f"prompt {record_id} has a non-string title or description")
    return Record(id=record_id, title=title, description=description)


def decode_records(payload: Any) -> tuple[Record, ...]:
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except RecursionError as exc:
            raise ValueError("prompt list is nested too deeply") from exc
    if not isinstance(payload, list):
        raise ValueError(f"expected a list of prompts, got {type(payload).__name__}")
    return tuple(record_from_payload(raw) for raw in payload)


def apply_quick_filter(records: tuple[Record, ...], query: str) -> tuple[Record, ...]:
    if not query.strip():
        return records
    lowered = query.lower()
    return tuple(record for record in records if lowered in record.title.lower())


def visible_records(view: ViewState) -> tuple[Record, ...]:
    return apply_quick_filter(view.records, view.filter_text or "")


def clamp_selection(index: int | None, count: int) -> int | None:
    if count <= 0:
        return None
    if index is None or index < 0:
        return 0
    if index >= count:
        return count - 1
    return index


def reselect(view: ViewState) -> ViewState:
    selected = clamp_selection(view.selected_index, len(visible_records(view)))
    if selected == view.selected_index:
        return view
    return replace(view, selected_index=selected)


def selected_record(view: ViewState) -> Record | None:
    visible = visible_records(view)
    if view.selected_index is None or not 0 <= view.selected_index < len(visible):
        return None
    return visible[view.selected_index]


def chrome_rows(view: ViewState) -> int:
    rows = 0
    if "title_bar" in view.display_options or view.filtering:
        rows += 2
    if view.compose_field is not None:
        rows += 3
    if "status_bar" in view.display_options:
        rows += 2
    if "pagination" in view.display_options:
        rows += 1
    if "help" in view.display_options:
        rows += 2
    return rows


def items_per_page(view: ViewState) -> int:
    return max(1, (view.height - chrome_rows(view)) // ITEM_ROWS)


def page_bounds(view: ViewState) -> tuple[int, int, int, int]:
    count = len(visible_records(view))
    per_page = items_per_page(view)
    page_count = max(1, -(-count // per_page))
    page = (view.selected_index or 0) // per_page
    start = page * per_page
    return page, page_count, start, min(count, start + per_page)


def toggle_option(view: ViewState, option: str) -> ViewState:
    if option not in DISPLAY_OPTIONS:
        logger.warning("Ignoring unknown display option %r", option)
        return view
    options = set(view.display_options)
    if option in options:
        options.discard(option)
    else:
        options.add(option)
    updated = replace(view, display_options=frozenset(options))
    if option == "title_bar" and option not in options:
        # Filtering is only reachable through the title bar.
        updated = reselect(replace(updated, filter_text=None, filtering=False))
    return updated


def move_cursor(view: ViewState, delta: int) -> ViewState:
    count = len(visible_records(view))
    if not count:
        return view
    current = view.selected_index or 0
    return replace(view, selected_index=clamp_selection(current + delta, count))


def compute_frame_size(width: int, height: int) -> tuple[int, int]:
    vertical, horizontal = APP_PADDING
    return max(0, width - 2 * horizontal), max(0, height - 2 * vertical)


@dataclass(frozen=True)
class RemoteFailure:
    kind: str
    message: str
    status_code: int | None = None

    def __str__(self) -> str:
        return self.message


class RemoteClient:
    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> tuple[requests.Response | None, RemoteFailure | None]:
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                timeout=self.timeout_seconds,
                **kwargs,
            )
        except requests.RequestException as exc:
            return None, RemoteFailure("network", f"{method} {path} failed ({short_error(exc)})")
        if not response.ok:
            return None, RemoteFailure(
                "status",
                f"{method} {path} returned HTTP {response.status_code}",
                response.status_code,
            )
        return response, None

    def fetch_records(self) -> tuple[tuple[Record, ...], RemoteFailure | None]:
        response, failure = self._request("GET", "/prompts/")
        if failure is not None:
            return (), failure
        try:
            return decode_records(response.json()), None
        except (ValueError, RecursionError) as exc:
            return (), RemoteFailure("payload", f"GET /prompts/ returned a malformed list ({short_error(exc)})")

    def create_record(self, title: str, description: str) -> tuple[Record | None, RemoteFailure | None]:
        response, failure = self._request(
            "POST",
            "/prompts/",
            json={"title": title, "description": description},
        )
        if failure is not None:
            return None, failure
        # The created prompt in the body is informational; the list itself arrives by push.
        try:
            return record_from_payload(response.json()), None
        except (ValueError, RecursionError):
            return None, None

    def delete_record(self, record_id: int) -> tuple[bool, RemoteFailure | None]:
        _, failure = self._request("DELETE", f"/prompts/{record_id}")
        return failure is None, failure


class PushListener:
    """Owns the push WebSocket and turns each full-list message into ListReplaced."""

    def __init__(
        self,
        url: str,
        submit: Callable[[Any], None],
        open_timeout: float = 10,
    ) -> None:
        self.url = url
        self._submit = submit
        self._open_timeout = open_timeout
        self._connection: Any = None
        self._closing = threading.Event()

    def connect(self) -> None:
        try:
            self._connection = ws_connect(self.url, open_timeout=self._open_timeout)
        except (OSError, WebSocketException) as exc:
            raise PushChannelLostError(f"could not connect to {self.url} ({short_error(exc)})") from exc
        logger.info("Push channel connected to %s", self.url)

    def run(self) -> None:
        if self._connection is None:
            try:
                self.connect()
            except PushChannelLostError as exc:
                logger.error("Push channel unavailable: %s", exc)
                self._submit(PushChannelLost(str(exc)))
                return
        reason = "closed by server"
        try:
            for message in self._connection:
                self.handle_message(message)
        except ConnectionClosed as exc:
            reason = f"connection lost ({short_error(exc)})"
        except OSError as exc:
            reason = f"read failed ({short_error(exc)})"

        if self._closing.is_set():
            logger.info("Push channel closed")
            return
        logger.error("Push channel lost: %s", reason)
        self._submit(PushChannelLost(reason))

    def handle_message(self, message: str | bytes) -> None:
        try:
            records = decode_records(message)
        except ValueError as exc:
            logger.warning("Discarding malformed push message: %s", short_error(exc))
            return
        logger.debug("Push received with %d prompts", len(records))
        self._submit(ListReplaced(records))

    def close(self) -> None:
        self._closing.set()
        if self._connection is not None:
            self._connection.close()


def is_printable_key(key: str) -> bool:
    return len(key) == 1 and key.isprintable()


class InteractionController:
    def translate(self, key: str, view: ViewState) -> list[Any]:
        if key == "QUIT":
            return [QuitRequested()]
        if view.compose_field is not None:
            return self._translate_compose(key, view)
        if view.filtering:
            return self._translate_filter(key, view)
        return self._translate_command(key, view)

    def _translate_compose(self, key: str, view: ViewState) -> list[Any]:
        if key == "ESC":
            return [ComposeClosed(), StatusPosted("Insert cancelled.")]
        if key == "ENTER":
            if view.compose_field == "title":
                return [ComposeAdvanced()]
            return [InsertRequested(view.compose_title, view.compose_buffer), ComposeClosed()]
        if key == "BACKSPACE":
            return [ComposeEdited(view.compose_buffer[:-1])]
        if is_printable_key(key):
            return [ComposeEdited(view.compose_buffer + key)]
        return []

    def _translate_filter(self, key: str, view: ViewState) -> list[Any]:
        text = view.filter_text or ""
        if key == "ESC":
            return [FilterCleared()]
        if key == "ENTER":
            return [FilterApplied()]
        if key == "BACKSPACE":
            return [FilterChanged(text[:-1])]
        if key in {"UP", "DOWN"}:
            return [CursorMoved(CURSOR_KEYS[key])]
        if is_printable_key(key):
            return [FilterChanged(text + key)]
        return []

    def _translate_command(self, key: str, view: ViewState) -> list[Any]:
        if key == "q":
            return [QuitRequested()]
        if key in OPTION_KEYS:
            return [ToggleOption(OPTION_KEYS[key])]
        if key == "x":
            return [DeleteRequested()]
        if key == "a":
            return [ComposeStarted()]
        if key == "/":
            if "title_bar" not in view.display_options:
                return []
            return [FilterStarted()]
        if key == "ESC":
            return [FilterCleared()] if view.filter_text is not None else []
        if key in CURSOR_KEYS:
            return [CursorMoved(CURSOR_KEYS[key])]
        if key in PAGE_KEYS:
            return [PageMoved(PAGE_KEYS[key])]
        if key in {"g", "HOME"}:
            return [CursorMoved(-len(view.records))]
        if key in {"G", "END"}:
            return [CursorMoved(len(view.records))]
        return []


class Reconciler:
    """Single writer of ViewState.

    Producers on any thread call ``submit``; one thread drains the inbox and
    applies events strictly in arrival order. Inserts and deletes are sent to
    the service without touching ``records``; the list only changes when the
    resulting push arrives as ``ListReplaced``.
    """

    def __init__(
        self,
        remote: RemoteClient,
        controller: InteractionController | None = None,
        on_change: Callable[[ViewState], None] | None = None,
        initial: ViewState | None = None,
        spawn: Callable[[Callable[[], None]], None] | None = None,
    ) -> None:
        self._remote = remote
        self._controller = controller or InteractionController()
        self._on_change = on_change
        self._view = initial or ViewState()
        self._inbox: queue.SimpleQueue[Any] = queue.SimpleQueue()
        self._spawn = spawn or self._spawn_thread
        self._pending: list[threading.Thread] = []

    @property
    def view(self) -> ViewState:
        return self._view

    def submit(self, event: Any) -> None:
        self._inbox.put(event)

    def step(self, timeout: float | None = None) -> bool:
        try:
            event = self._inbox.get(timeout=timeout)
        except queue.Empty:
            return True
        return self._dispatch(event)

    def drain(self) -> int:
        applied = 0
        while True:
            try:
                event = self._inbox.get_nowait()
            except queue.Empty:
                return applied
            applied += 1
            if not self._dispatch(event):
                return applied

    def run(self) -> None:
        while self.step():
            pass

    def wait_pending(self, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        for thread in self._pending:
            thread.join(timeout=max(0.0, deadline - time.monotonic()))
        abandoned = sum(1 for thread in self._pending if thread.is_alive())
        if abandoned:
            logger.warning("Abandoning %d in-flight remote calls at shutdown", abandoned)

    def _dispatch(self, event: Any) -> bool:
        if isinstance(event, QuitRequested):
            logger.info("Quit requested")
            return False
        if isinstance(event, PushChannelLost):
            raise PushChannelLostError(event.reason)
        if isinstance(event, KeyPressed):
            for translated in self._controller.translate(event.key, self._view):
                if not self._dispatch(translated):
                    return False
            return True

        updated = self._apply(self._view, event)
        if updated != self._view:
            self._view = updated
            if self._on_change is not None:
                self._on_change(updated)
        return True

    def _apply(self, view: ViewState, event: Any) -> ViewState:
        if isinstance(event, ListReplaced):
            logger.debug("Replacing list with %d prompts", len(event.records))
            return reselect(replace(view, records=tuple(event.records)))
        if isinstance(event, ResizeRequested):
            width, height = compute_frame_size(event.width, event.height)
            return reselect(replace(view, width=width, height=height))
        if isinstance(event, ToggleOption):
            return toggle_option(view, event.option)
        if isinstance(event, DeleteRequested):
            self._request_delete(view)
            return view
        if isinstance(event, InsertRequested):
            self._request_insert(event)
            return view
        if isinstance(event, CursorMoved):
            return move_cursor(view, event.delta)
        if isinstance(event, PageMoved):
            return move_cursor(view, event.delta * items_per_page(view))
        if isinstance(event, FilterStarted):
            return replace(view, filtering=True, filter_text=view.filter_text or "")
        if isinstance(event, FilterChanged):
            return reselect(replace(view, filter_text=event.text))
        if isinstance(event, FilterApplied):
            if not (view.filter_text or "").strip():
                return reselect(replace(view, filter_text=None, filtering=False))
            return replace(view, filtering=False)
        if isinstance(event, FilterCleared):
            return reselect(replace(view, filter_text=None, filtering=False))
        if isinstance(event, ComposeStarted):
            return replace(
                view,
                compose_field="title",
                compose_title="",
                compose_buffer="",
                status_message="New prompt: Enter to continue, Esc to cancel.",
            )
        if isinstance(event, ComposeEdited):
            return replace(view, compose_buffer=event.text)
        if isinstance(event, ComposeAdvanced):
            return replace(
                view,
                compose_field="description",
                compose_title=view.compose_buffer,
                compose_buffer="",
            )
        if isinstance(event, ComposeClosed):
            return replace(view, compose_field=None, compose_title="", compose_buffer="")
        if isinstance(event, StatusPosted):
            return replace(view, status_message=event.message)
        logger.warning("Ignoring unknown event %r", event)
        return view

    def _request_delete(self, view: ViewState) -> None:
        record = selected_record(view)
        if record is None:
            self.submit(StatusPosted("No prompt selected."))
            return
        logger.info("Requesting delete of prompt %d", record.id)
        self._start_remote_call(
            f"delete prompt {record.id}",
            lambda: self._remote.delete_record(record.id),
            f"Deleted prompt {record.id}.",
        )

    def _request_insert(self, event: InsertRequested) -> None:
        title = event.title.strip()
        if not title:
            self.submit(StatusPosted("A prompt needs a title."))
            return
        logger.info("Requesting insert of prompt %r", title)
        self._start_remote_call(
            f"add prompt {title!r}",
            lambda: self._remote.create_record(title, event.description.strip()),
            f"Added prompt {title!r}.",
        )

    def _start_remote_call(
        self,
        action: str,
        call: Callable[[], tuple[Any, RemoteFailure | None]],
        done_message: str,
    ) -> None:
        def worker() -> None:
            _, failure = call()
            if failure is not None:
                logger.warning("Failed to %s: %s", action, failure)
                self.submit(StatusPosted(f"Failed to {action}: {failure}"))
                return
            logger.info("Remote call done: %s", action)
            self.submit(StatusPosted(done_message))

        self._spawn(worker)

    def _spawn_thread(self, target: Callable[[], None]) -> None:
        thread = threading.Thread(target=target, daemon=True)
        thread.start()
        self._pending = [pending for pending in self._pending if pending.is_alive()]
        self._pending.append(thread)


def render_title_bar(view: ViewState) -> RenderableType:
    if view.filtering:
        return Text.assemble(
            ("Filter: ", "bold"),
            view.filter_text or "",
            ("▏", "bright_magenta"),
        )
    title = Text(f" {view.title} ", style=TITLE_STYLE)
    if "spinner" in view.display_options:
        return Spinner("dots", text=title, style=STATUS_MESSAGE_STYLE)
    return title


def render_compose(view: ViewState) -> Text:
    text = Text("New prompt\n", style="bold")
    if view.compose_field == "title":
        text.append("Title: ")
        text.append(view.compose_buffer)
        text.append("▏", style="bright_magenta")
        text.append("\nDescription: ", style="dim")
    else:
        text.append(f"Title: {view.compose_title}\n", style="dim")
        text.append("Description: ")
        text.append(view.compose_buffer)
        text.append("▏", style="bright_magenta")
    return text


def render_status_bar(view: ViewState) -> Text:
    total = len(view.records)
    noun = "prompt" if total == 1 else "prompts"
    if view.filter_text:
        visible = len(visible_records(view))
        summary = f'{visible} of {total} {noun} matching "{view.filter_text}"'
    elif total:
        summary = f"{total} {noun}"
    else:
        summary = "No prompts"
    text = Text(summary, style="dim")
    if view.status_message:
        text.append("  ")
        text.append(view.status_message, style=STATUS_MESSAGE_STYLE)
    text.truncate(max(1, view.width), overflow="ellipsis")
    return text


def render_items(view: ViewState) -> Text:
    visible = visible_records(view)
    if not visible:
        return Text("Nothing matched." if view.filter_text else "No prompts yet.", style="dim")
    _, _, start, end = page_bounds(view)
    width = max(4, view.width - 2)
    text = Text()
    for index in range(start, end):
        record = visible[index]
        if index == view.selected_index:
            text.append("│ ", style=SELECTED_TITLE_STYLE)
            text.append(truncate(record.title, width), style=SELECTED_TITLE_STYLE)
            text.append("\n│ ", style=SELECTED_TITLE_STYLE)
            text.append(truncate(record.description, width), style=SELECTED_DESC_STYLE)
        else:
            text.append("  " + truncate(record.title, width))
            text.append("\n  " + truncate(record.description, width), style="dim")
        if index < end - 1:
            text.append("\n\n")
    return text


def render_pagination(view: ViewState) -> Text:
    page, page_count, _, _ = page_bounds(view)
    if page_count <= 1:
        return Text("")
    if page_count > 12:
        return Text(f"{page + 1}/{page_count}", style="dim")
    text = Text()
    for index in range(page_count):
        text.append("• ", style="bold" if index == page else "dim")
    return text


def render_help(view: ViewState) -> Text:
    if view.compose_field is not None:
        hint = "enter next/submit • esc cancel"
    elif view.filtering:
        hint = "enter apply filter • esc clear filter • ↑/↓ move"
    else:
        hint = "↑/↓ move • / filter • a add • x delete • s/T/S/P/H toggle • q quit"
    return Text(truncate(hint, max(1, view.width)), style="dim")


def render_frame(view: ViewState) -> RenderableType:
    parts: list[RenderableType] = []
    if "title_bar" in view.display_options or view.filtering:
        parts.extend([render_title_bar(view), Text("")])
    if view.compose_field is not None:
        parts.extend([render_compose(view), Text("")])
    if "status_bar" in view.display_options:
        parts.extend([render_status_bar(view), Text("")])
    parts.append(render_items(view))
    if "pagination" in view.display_options:
        parts.append(render_pagination(view))
    if "help" in view.display_options:
        parts.extend([Text(""), render_help(view)])
    return Padding(Group(*parts), APP_PADDING)


def _line_input_worker(
    submit: Callable[[Any], None],
    stop_event: threading.Event,
) -> None:
    while not stop_event.is_set():
        try:
            line = sys.stdin.readline()
        except (OSError, ValueError):
            if stop_event.wait(0.2):
                break
            continue
        if line == "":
            if stop_event.wait(0.2):
                break
            continue
        for key in line.rstrip("\n"):
            submit(KeyPressed(key))
        submit(KeyPressed("ENTER"))


ESCAPE_SEQUENCES = {
    "[A": "UP",
    "[B": "DOWN",
    "[C": "RIGHT",
    "[D": "LEFT",
    "[H": "HOME",
    "[F": "END",
    "[5~": "PGUP",
    "[6~": "PGDN",
}


def input_worker(
    submit: Callable[[Any], None],
    stop_event: threading.Event,
) -> None:
    if not sys.stdin.isatty():
        _line_input_worker(submit, stop_event)
        return

    try:
        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
    except (termios.error, OSError, ValueError):
        _line_input_worker(submit, stop_event)
        return

    try:
        tty.setcbreak(fd)
        while not stop_event.is_set():
            ready, _, _ = select.select([fd], [], [], 0.2)
            if not ready:
                continue
            data = os.read(fd, 1)
            if not data:
                continue
            key = data.decode("utf-8", errors="ignore")
            if not key:
                continue
            if key in {"\r", "\n"}:
                submit(KeyPressed("ENTER"))
                continue
            if key in {"\x7f", "\b"}:
                submit(KeyPressed("BACKSPACE"))
                continue
            if key == "\x1b":
                sequence = ""
                while select.select([fd], [], [], 0.001)[0]:
                    sequence += os.read(fd, 1).decode("utf-8", errors="ignore")
                    if not sequence:
                        continue
                    if sequence[-1].isalpha() or sequence.endswith("~") or len(sequence) >= 6:
                        break
                submit(KeyPressed(ESCAPE_SEQUENCES.get(sequence, "ESC")))
                continue
            if key == "\x03":
                submit(KeyPressed("QUIT"))
                continue
            submit(KeyPressed(key))
    finally:
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
        except termios.error:
            pass


def resize_worker(
    console: Console,
    submit: Callable[[Any], None],
    stop_event: threading.Event,
    interval: float = 0.25,
) -> None:
    last_size: tuple[int, int] | None = None
    while not stop_event.is_set():
        size = console.size
        current = (size.width, size.height)
        if current != last_size:
            submit(ResizeRequested(*current))
            last_size = current
        stop_event.wait(interval)


def setup_logging(log_file: str, level: str) -> None:
    logging.basicConfig(
        filename=log_file,
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
    )


def parse_args(argv: list[str]) -> AppConfig:
    parser = argparse.ArgumentParser(
        description="Prompt Pool terminal client with live updates from the prompt service."
    )
    parser.add_argument("--base-url", default=os.getenv("PROMPT_POOL_URL", DEFAULT_BASE_URL))
    parser.add_argument("--ws-url", default=os.getenv("PROMPT_POOL_WS_URL", DEFAULT_WS_URL))
    parser.add_argument("--timeout-seconds", type=float, default=10.0)
    parser.add_argument("--title", default=DEFAULT_TITLE)
    parser.add_argument("--log-file", default=os.getenv("PROMPT_POOL_LOG_FILE", DEFAULT_LOG_FILE))
    parser.add_argument(
        "--log-level",
        default=os.getenv("PROMPT_POOL_LOG_LEVEL", "INFO"),
        help="DEBUG, INFO, WARNING or ERROR.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Fetch the list, print one frame and exit.",
    )

    args = parser.parse_args(argv)

    if not args.base_url.startswith(("http://", "https://")):
        raise ValueError("--base-url must start with http:// or https://")
    if not args.ws_url.startswith(("ws://", "wss://")):
        raise ValueError("--ws-url must start with ws:// or wss://")
    if args.timeout_seconds < 1:
        raise ValueError("--timeout-seconds must be >= 1")
    log_level = args.log_level.strip().upper()
    if log_level not in LOG_LEVELS:
        raise ValueError(f"--log-level must be one of: {', '.join(LOG_LEVELS)}")

    return AppConfig(
        base_url=args.base_url,
        ws_url=args.ws_url,
        timeout_seconds=args.timeout_seconds,
        title=args.title,
        log_file=args.log_file,
        log_level=log_level,
        once=args.once,
    )


def run(config: AppConfig, console: Console) -> int:
    remote = RemoteClient(config.base_url, config.timeout_seconds)
    records, failure = remote.fetch_records()
    if failure is not None:
        logger.error("Initial fetch failed: %s", failure)
        console.print(f"[red]Error fetching prompts:[/red] {failure}")
        return 1

    initial = ViewState(title=config.title)
    if config.once:
        reconciler = Reconciler(remote, initial=initial)
        reconciler.submit(ResizeRequested(console.size.width, console.size.height))
        reconciler.submit(ListReplaced(records))
        reconciler.drain()
        console.print(render_frame(reconciler.view))
        return 0

    live = Live(
        render_frame(initial),
        console=console,
        refresh_per_second=4,
        screen=True,
        vertical_overflow="crop",
    )
    reconciler = Reconciler(
        remote,
        initial=initial,
        on_change=lambda view: live.update(render_frame(view)),
    )
    reconciler.submit(ListReplaced(records))

    listener = PushListener(config.ws_url, reconciler.submit, open_timeout=config.timeout_seconds)
    try:
        listener.connect()
    except PushChannelLostError as exc:
        logger.error("Push channel unavailable: %s", exc)
        console.print(f"[red]Error connecting to push channel:[/red] {exc}")
        return 1

    stop_event = threading.Event()
    threads = [
        threading.Thread(target=listener.run, daemon=True),
        threading.Thread(target=input_worker, args=(reconciler.submit, stop_event), daemon=True),
        threading.Thread(
            target=resize_worker,
            args=(console, reconciler.submit, stop_event),
            daemon=True,
        ),
    ]
    for thread in threads:
        thread.start()

    fatal = ""
    with live:
        try:
            reconciler.run()
        except PushChannelLostError as exc:
            fatal = str(exc)
        finally:
            stop_event.set()
            listener.close()
            for thread in threads:
                thread.join(timeout=2)
            reconciler.wait_pending(timeout=2)

    if fatal:
        console.print(f"[red]Push channel lost:[/red] {fatal}")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    console = Console()
    try:
        config = parse_args(argv if argv is not None else sys.argv[1:])
    except ValueError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        return 2

    setup_logging(config.log_file, config.log_level)
    try:
        return run(config, console)
    except KeyboardInterrupt:
        console.print("\n[bold]Stopped.[/bold]")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
