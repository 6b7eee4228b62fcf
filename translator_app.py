"""Desktop utility that streams translations of copied or typed text."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import IO, Any, Awaitable, Callable, Optional, Set

try:  # pragma: no cover - executed during module import
    import pyperclip  # type: ignore
except ImportError:  # pragma: no cover - handled in __init__
    pyperclip = None  # type: ignore

try:  # pragma: no cover - optional dependency for system tray support
    import pystray  # type: ignore
    from pystray import MenuItem  # type: ignore
except ImportError:  # pragma: no cover - handled when starting the tray icon
    pystray = None  # type: ignore
    MenuItem = None  # type: ignore

try:  # pragma: no cover - optional dependency for system tray support
    from PIL import Image, ImageDraw  # type: ignore
except ImportError:  # pragma: no cover - handled when starting the tray icon
    Image = None  # type: ignore
    ImageDraw = None  # type: ignore

from auto_trigger import AUTO_TRIGGER_DELAY, AutoTriggerController
from event_channel import EventChannel
from history_store import HistoryStore
from hotkey_manager import (
    COPY_BINDING,
    DOUBLE_COPY_INTERVAL,
    QUICK_BINDING,
    DoubleCopyDetector,
    HotkeyEvent,
    KeyboardHotkeyService,
    build_bindings,
)
from models import PASTE_MODE_CLIPBOARD, DoubleCopySignal, InputState, Job, JobStatus, StartResult
from orchestrator import JobOrchestrator, PreviewSurface
from preferences import APP_DIR, HISTORY_FILE_NAME, SETTINGS_FILE_NAME, SettingsStore
from quick_translate import QuickTranslateBridge
from translation_service import GoogleTranslateClient, TranslatorGateway, TranslatorProtocol


logger = logging.getLogger(__name__)

LOG_FILE_NAME = "doublecopy_translator.log"
LOG_MAX_BYTES = 2_097_152
LOG_BACKUP_COUNT = 3


def configure_logging(log_dir: Path = APP_DIR, *, verbose: bool = False) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    if root.handlers:
        return root

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"File logging disabled: {exc}", file=sys.stderr)
    else:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)
    return root


class SystemTrayController:
    """Manage a system tray icon with Show and Exit commands."""

    def __init__(self, app: "DoubleCopyTranslatorApp") -> None:
        self._app = app
        self._icon: Optional["pystray.Icon"] = None

    @staticmethod
    def _is_supported() -> bool:
        return pystray is not None and MenuItem is not None and Image is not None and ImageDraw is not None

    def start(self) -> None:
        if not self._is_supported():
            logger.warning("System tray icon is unavailable because required dependencies are missing.")
            return

        assert pystray is not None  # noqa: S101 - guarded by _is_supported
        menu = pystray.Menu(
            MenuItem("Show window", self._on_show),
            MenuItem("Exit", self._on_exit),
        )
        icon = pystray.Icon("doublecopy_translator", self._create_icon_image(), "Double-Copy Translator", menu=menu)
        try:
            icon.run_detached()
        except Exception as exc:  # pragma: no cover - depends on the desktop environment
            logger.warning("Failed to start the tray icon: %s", exc)
            return
        self._icon = icon

    def stop(self) -> None:
        if self._icon is not None:
            self._icon.stop()
            self._icon = None

    def _on_show(self, icon: "pystray.Icon", _: Any) -> None:
        self._app.show_window()

    def _on_exit(self, icon: "pystray.Icon", _: Any) -> None:
        self._app.stop()
        icon.stop()

    @staticmethod
    def _create_icon_image() -> "Image.Image":
        assert Image is not None and ImageDraw is not None  # noqa: S101 - guarded by _is_supported
        size = 64
        image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(image)
        draw.ellipse((8, 8, size - 8, size - 8), fill=(28, 114, 206, 255))
        draw.rectangle((size // 2 - 4, 16, size // 2 + 4, size - 16), fill=(255, 255, 255, 255))
        return image


class DoubleCopyTranslatorApp:
    """Wire triggers, the job orchestrator and the desktop integration together.

    All translation state lives on one asyncio loop. Hotkey, tray and window
    callbacks arrive on their own threads and are handed to the loop with
    ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        dest_language: str,
        source_language: Optional[str] = None,
        *,
        settings_store: Optional[SettingsStore] = None,
        history_store: Optional[HistoryStore] = None,
        translator_factory: Callable[[], TranslatorProtocol] = GoogleTranslateClient,
        clipboard_module=pyperclip,
        preview: Optional[PreviewSurface] = None,
        keyboard_module: Any = None,
        time_provider: Callable[[], float] = time.perf_counter,
        double_copy_interval: float = DOUBLE_COPY_INTERVAL,
        auto_trigger_delay: float = AUTO_TRIGGER_DELAY,
    ) -> None:
        if clipboard_module is None:
            raise RuntimeError(
                "The 'pyperclip' package is required. Install it with 'pip install pyperclip'."
            )
        self._clipboard = clipboard_module
        self.settings = settings_store if settings_store is not None else SettingsStore()
        self.history = history_store if history_store is not None else HistoryStore()
        self.input_state = InputState(source_language=source_language, target_language=dest_language)
        self.channel = EventChannel()
        self.gateway = TranslatorGateway(self.channel, translator_factory)
        self.orchestrator = JobOrchestrator(
            self.channel,
            self.gateway,
            self.history,
            self.settings.snapshot,
            clipboard=clipboard_module,
            preview=preview,
            observer=self,
        )
        self.auto_trigger = AutoTriggerController(
            self.orchestrator, self.input_state, delay=auto_trigger_delay
        )
        self.bridge = QuickTranslateBridge(
            self.auto_trigger,
            self.input_state,
            self.settings.snapshot,
            clipboard_module,
            preview=preview,
        )
        self._preview = preview
        self._keyboard_module = keyboard_module
        self._time_provider = time_provider
        self._copy_detector = DoubleCopyDetector(double_copy_interval, time_provider)
        self._hotkey_service: Optional[KeyboardHotkeyService] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._tasks: Set["asyncio.Task[Any]"] = set()
        self._echo: Optional[IO[str]] = None
        self._echoed = 0
        self._job_settled: Optional[asyncio.Event] = None

    def attach_preview(self, preview: PreviewSurface) -> None:
        self._preview = preview
        self.orchestrator.preview = preview
        self.bridge.preview = preview

    # Job observer -----------------------------------------------------

    def job_updated(self, job: Job) -> None:
        if self._echo is not None:
            self._echo.write(job.output[self._echoed :])
            self._echo.flush()
            self._echoed = len(job.output)
        update = getattr(self._preview, "update", None)
        if update is not None:
            progress = "" if job.progress is None else f" {job.progress:.0%}"
            update(job.output, f"Translating…{progress}")

    def job_finished(self, job: Job) -> None:
        if self._echo is not None:
            self.job_updated(job)
            self._echo.write("\n")
            if job.status is JobStatus.CANCELLED:
                print(f"Translation did not complete: {job.reason}", file=sys.stderr)
        update = getattr(self._preview, "update", None)
        if update is not None and job.status is JobStatus.CANCELLED:
            update(job.output, f"Stopped ({job.reason})")
        if self._job_settled is not None:
            self._job_settled.set()

    def job_failed(self, job: Job, message: str) -> None:
        logger.error("Translation failed: %s", message)
        if self._echo is not None:
            print(f"Error: {message}", file=sys.stderr)
        show_error = getattr(self._preview, "show_error", None)
        if show_error is not None:
            show_error(f"Error: {message} (close the window to dismiss)")
        if self._job_settled is not None:
            self._job_settled.set()

    # Thread-safe entry points -----------------------------------------

    def stop(self) -> None:
        """Signal the application to shut down."""

        if self._loop is not None and self._stop_event is not None:
            self._loop.call_soon_threadsafe(self._stop_event.set)

    def show_window(self) -> None:
        if self._preview is None:
            return
        job = self.orchestrator.last_job
        self._preview.show(self.input_state.text, job.output if job is not None else "")

    def request_translate(self) -> None:
        self._call_soon(self._spawn_call, self.auto_trigger.run_now)

    def request_cancel(self) -> None:
        self._call_soon(self._spawn_call, self.orchestrator.cancel)

    def edit_input(self, text: str) -> None:
        self._call_soon(self.input_state.set_text, text)

    def select_source_language(self, language: Optional[str]) -> None:
        self._call_soon(self.input_state.set_source_language, language)

    def select_target_language(self, language: str) -> None:
        self._call_soon(self.input_state.set_target_language, language)

    def acknowledge_error(self) -> None:
        """Dismiss a pending invocation error once the user has seen it."""

        self._call_soon(self._acknowledge_error)

    def swap_languages(self) -> None:
        self._call_soon(self._swap_languages)

    def dispatch_hotkey(self, event: HotkeyEvent) -> None:
        """Receive a hotkey press on the keyboard hook thread."""

        text = None
        if event.name == QUICK_BINDING:
            try:
                text = self._clipboard.paste()
            except Exception as exc:
                logger.warning("Failed to read clipboard for quick translate: %s", exc)
        self._call_soon(self.handle_hotkey_event, event, text)

    # Loop-side handlers -----------------------------------------------

    def _acknowledge_error(self) -> None:
        if self.orchestrator.error is None:
            return
        self.orchestrator.acknowledge_error()
        logger.info("Translation error acknowledged")

    def _swap_languages(self) -> None:
        self.input_state.swap_languages()
        set_languages = getattr(self._preview, "set_languages", None)
        if set_languages is not None:
            set_languages(self.input_state.source_language, self.input_state.target_language)

    def handle_hotkey_event(self, event: HotkeyEvent, text: Optional[str] = None) -> None:
        if event.name == QUICK_BINDING:
            self._spawn(self.bridge.handle_signal(DoubleCopySignal(text=text)))
        elif event.name == COPY_BINDING:
            if self._copy_detector.register(timestamp=event.timestamp):
                self._spawn(self.bridge.handle_signal(DoubleCopySignal()))
        else:
            logger.debug("Unknown hotkey event: %s", event.name)

    async def run(self, *, tray_controller: Optional[SystemTrayController] = None) -> None:
        """Listen for hotkeys and input edits until :meth:`stop` is called."""

        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self.auto_trigger.attach()
        self._hotkey_service = self._create_hotkey_service()
        if tray_controller is not None:
            tray_controller.start()

        logger.info("Double-Copy Translator is running. Press the quick shortcut or Ctrl+C twice to translate.")
        try:
            await self._stop_event.wait()
        finally:
            if tray_controller is not None:
                tray_controller.stop()
            if self._hotkey_service is not None:
                self._hotkey_service.stop()
                self._hotkey_service = None
            await self._shutdown()

    async def translate_once(self, text: str, *, stream: IO[str] = sys.stdout) -> int:
        """Translate ``text``, echoing the streamed output, and return an exit code."""

        self._loop = asyncio.get_running_loop()
        self._echo = stream
        self._echoed = 0
        self._job_settled = asyncio.Event()
        try:
            self.input_state.set_text(text)
            result = await self.auto_trigger.run_now()
            if result is StartResult.STARTED:
                await self._job_settled.wait()
            elif result is StartResult.REJECTED:
                print("Nothing to translate.", file=sys.stderr)
        finally:
            self._echo = None
            self._job_settled = None
            await self._shutdown()
        return 0 if self.orchestrator.status is JobStatus.DONE else 1

    async def _shutdown(self) -> None:
        self.auto_trigger.close()
        await self.orchestrator.cancel()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.gateway.close()
        shutdown = getattr(self._preview, "shutdown", None)
        if shutdown is not None:
            shutdown()

    def _create_hotkey_service(self) -> Optional[KeyboardHotkeyService]:
        settings = self.settings.snapshot()
        if not settings.double_copy.enabled:
            logger.info("Quick translate is disabled; global hotkeys are not registered")
            return None
        service = KeyboardHotkeyService(
            build_bindings(settings.double_copy.shortcut),
            self.dispatch_hotkey,
            keyboard_module=self._keyboard_module,
            time_provider=self._time_provider,
        )
        try:
            service.start()
        except RuntimeError as exc:
            logger.error("Global hotkeys are disabled: %s", exc)
            return None
        logger.info("Hotkey service started with %s", service.describe_bindings())
        return service

    def _call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        if self._loop is None:
            logger.debug("Event loop is not running; dropping %s", getattr(callback, "__name__", callback))
            return
        self._loop.call_soon_threadsafe(callback, *args)

    def _spawn_call(self, factory: Callable[[], Awaitable[Any]]) -> None:
        self._spawn(factory())

    def _spawn(self, coro: Awaitable[Any]) -> "asyncio.Task[Any]":
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed", exc_info=exc)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Translate copied text with streamed results.")
    parser.add_argument(
        "--dest",
        default="ja",
        help="Destination language (default: ja). Use Google Translate language codes.",
    )
    parser.add_argument(
        "--src",
        default=None,
        help="Source language. Leave empty to auto-detect.",
    )
    parser.add_argument(
        "--text",
        default=None,
        help="Translate this text once, print the result and exit.",
    )
    parser.add_argument(
        "--clipboard-mode",
        action="store_true",
        help="Copy results to the clipboard instead of opening the popup (not saved).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    configure_logging(verbose=args.verbose)

    settings_store = SettingsStore(APP_DIR / SETTINGS_FILE_NAME)
    settings = settings_store.load()
    if args.clipboard_mode:
        settings_store.update(
            replace(settings, double_copy=replace(settings.double_copy, paste_mode=PASTE_MODE_CLIPBOARD)),
            persist=False,
        )
    history_store = HistoryStore(APP_DIR / HISTORY_FILE_NAME)
    history_store.load()
    source = args.src if args.src not in ("", "auto") else None

    if args.text is not None:
        app = DoubleCopyTranslatorApp(
            args.dest, source, settings_store=settings_store, history_store=history_store
        )
        return asyncio.run(app.translate_once(args.text))

    from preview_window import PreviewWindow

    app = DoubleCopyTranslatorApp(args.dest, source, settings_store=settings_store, history_store=history_store)
    preview = PreviewWindow(
        on_input_changed=app.edit_input,
        on_source_language=app.select_source_language,
        on_target_language=app.select_target_language,
        on_swap_languages=app.swap_languages,
        on_translate=app.request_translate,
        on_cancel=app.request_cancel,
        on_dismiss=app.acknowledge_error,
    )
    preview.set_languages(app.input_state.source_language, app.input_state.target_language)
    app.attach_preview(preview)
    try:
        asyncio.run(app.run(tray_controller=SystemTrayController(app)))
    except KeyboardInterrupt:  # pragma: no cover - manual console interruption
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
