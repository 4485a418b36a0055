"""
Rendering, configuration and entry point smoke tests.
Terminal output is captured through a recording rich Console.
"""

import sys
import os
import io
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

# Ensure project root is on path
ROOT = os.path.dirname(os.path.dirname(__file__))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import prompt_pool  # noqa: E402
from prompt_pool import (  # noqa: E402
    Record,
    RemoteFailure,
    ViewState,
    compute_frame_size,
    parse_args,
    render_frame,
)


def make_console():
    return Console(record=True, width=80, height=24, file=io.StringIO(), color_system=None)


def render_text(view):
    console = make_console()
    console.print(render_frame(view))
    return console.export_text()


RECORDS = (
    Record(1, "Summarize a paper", "Short abstract summary"),
    Record(2, "Explain code", "Walk through a function"),
)


# ===========================================================================
# Rendering
# ===========================================================================


class TestRendering:
    def test_frame_size_removes_padding(self):
        assert compute_frame_size(80, 24) == (76, 22)
        assert compute_frame_size(2, 1) == (0, 0)

    def test_frame_shows_title_records_and_status(self):
        text = render_text(ViewState(records=RECORDS, selected_index=1, status_message="Deleted prompt 3."))

        assert "Prompt Pool" in text
        assert "Summarize a paper" in text
        assert "│ Explain code" in text
        assert "2 prompts" in text
        assert "Deleted prompt 3." in text
        assert "q quit" in text

    def test_hidden_sections_are_not_rendered(self):
        view = ViewState(records=RECORDS, selected_index=0, display_options=frozenset())
        text = render_text(view)

        assert "Prompt Pool" not in text
        assert "2 prompts" not in text
        assert "Summarize a paper" in text

    def test_filter_and_compose_modes(self):
        filtering = render_text(ViewState(records=RECORDS, selected_index=0, filtering=True, filter_text="expl"))
        assert "Filter: expl" in filtering
        assert "Summarize a paper" not in filtering
        assert '1 of 2 prompts matching "expl"' in filtering

        composing = render_text(ViewState(compose_field="description", compose_title="New"))
        assert "New prompt" in composing
        assert "Title: New" in composing

    def test_empty_list_message(self):
        assert "No prompts yet." in render_text(ViewState())

    def test_pagination_dots(self):
        records = tuple(Record(index, f"Prompt {index}", "") for index in range(12))
        text = render_text(ViewState(records=records, selected_index=0))

        assert "• • •" in text


# ===========================================================================
# Configuration
# ===========================================================================


class TestConfig:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("PROMPT_POOL_URL", "PROMPT_POOL_WS_URL", "PROMPT_POOL_LOG_FILE", "PROMPT_POOL_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        config = parse_args([])

        assert config.base_url == "http://127.0.0.1:8000"
        assert config.ws_url == "ws://127.0.0.1:8000/ws"
        assert config.log_file == "debug.log"
        assert config.log_level == "INFO"
        assert config.once is False

    def test_environment_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("PROMPT_POOL_URL", "https://prompts.example")
        monkeypatch.setenv("PROMPT_POOL_LOG_LEVEL", "debug")

        config = parse_args([])

        assert config.base_url == "https://prompts.example"
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "argv",
        [
            ["--base-url", "prompts.example"],
            ["--ws-url", "http://127.0.0.1:8000/ws"],
            ["--timeout-seconds", "0"],
            ["--log-level", "chatty"],
        ],
    )
    def test_invalid_values(self, argv):
        with pytest.raises(ValueError):
            parse_args(argv)

    def test_main_reports_configuration_error(self):
        with patch("prompt_pool.load_dotenv"), patch("prompt_pool.run") as run:
            assert prompt_pool.main(["--timeout-seconds", "0"]) == 2
        run.assert_not_called()


# ===========================================================================
# Entry point
# ===========================================================================


class TestRun:
    def make_config(self, once=True):
        return prompt_pool.AppConfig(
            base_url="http://127.0.0.1:8000",
            ws_url="ws://127.0.0.1:8000/ws",
            timeout_seconds=5,
            title="Prompt Pool",
            log_file="debug.log",
            log_level="INFO",
            once=once,
        )

    def test_once_prints_single_frame(self):
        console = make_console()
        with patch("prompt_pool.RemoteClient") as client_cls:
            client_cls.return_value.fetch_records.return_value = (RECORDS, None)
            assert prompt_pool.run(self.make_config(), console) == 0

        text = console.export_text()
        assert "Summarize a paper" in text
        assert "│ Summarize a paper" in text

    def test_initial_fetch_failure_is_fatal(self):
        console = make_console()
        with patch("prompt_pool.RemoteClient") as client_cls, patch("prompt_pool.PushListener") as listener_cls:
            client_cls.return_value.fetch_records.return_value = (
                (),
                RemoteFailure("network", "GET /prompts/ failed (connection refused)"),
            )
            assert prompt_pool.run(self.make_config(once=False), console) == 1

        listener_cls.assert_not_called()
        assert "Error fetching prompts" in console.export_text()

    def test_push_connect_failure_is_fatal(self):
        console = make_console()
        with patch("prompt_pool.RemoteClient") as client_cls, patch("prompt_pool.PushListener") as listener_cls:
            client_cls.return_value.fetch_records.return_value = (RECORDS, None)
            listener_cls.return_value.connect.side_effect = prompt_pool.PushChannelLostError("refused")
            assert prompt_pool.run(self.make_config(once=False), console) == 1

        assert "Error connecting to push channel" in console.export_text()

    def test_main_stops_on_keyboard_interrupt(self):
        with patch("prompt_pool.load_dotenv"), patch("prompt_pool.setup_logging"), patch(
            "prompt_pool.run", side_effect=KeyboardInterrupt
        ):
            assert prompt_pool.main([]) == 0

    def run_interactive(self, listener_run=None, input_run=None):
        console = make_console()
        listeners = []

        def make_listener(url, submit, open_timeout):
            listener = MagicMock()
            if listener_run is not None:
                listener.run.side_effect = lambda: listener_run(submit)
            listeners.append(listener)
            return listener

        def fake_input_worker(submit, stop_event):
            if input_run is not None:
                input_run(submit)

        with patch("prompt_pool.RemoteClient") as client_cls, patch(
            "prompt_pool.PushListener", side_effect=make_listener
        ), patch("prompt_pool.Live") as live_cls, patch(
            "prompt_pool.input_worker", side_effect=fake_input_worker
        ) as input_worker, patch("prompt_pool.resize_worker") as resize_worker:
            client_cls.return_value.fetch_records.return_value = (RECORDS, None)
            code = prompt_pool.run(self.make_config(once=False), console)

        return code, console, listeners[0], live_cls.return_value, input_worker, resize_worker

    def test_lost_push_channel_ends_interactive_run(self):
        code, console, listener, _, input_worker, resize_worker = self.run_interactive(
            listener_run=lambda submit: submit(prompt_pool.PushChannelLost("connection lost"))
        )

        assert code == 1
        assert "Push channel lost" in console.export_text()
        assert "connection lost" in console.export_text()
        listener.connect.assert_called_once()
        listener.close.assert_called_once()
        assert input_worker.call_args[0][1].is_set()
        assert resize_worker.call_args[0][2].is_set()

    def test_quit_key_ends_interactive_run_cleanly(self):
        code, console, listener, live, input_worker, _ = self.run_interactive(
            input_run=lambda submit: submit(prompt_pool.KeyPressed("q"))
        )

        assert code == 0
        assert "Push channel lost" not in console.export_text()
        listener.close.assert_called_once()
        assert input_worker.call_args[0][1].is_set()
        live.update.assert_called()
