"""Tk popup that previews the input and the streamed translation."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional, Tuple

try:
    import tkinter as tk
    from tkinter import font as tkfont, scrolledtext
except ImportError as exc:  # pragma: no cover - tkinter ships with the CPython installers
    raise SystemExit("tkinter is required to display the translation window") from exc


logger = logging.getLogger(__name__)

LANGUAGE_DISPLAY_NAMES = {
    "ja": "日本語",
    "en": "English",
    "zh": "中文",
    "ko": "한국어",
    None: "Auto detect",
}
SOURCE_LANGUAGES: Tuple[Optional[str], ...] = (None, "ja", "en", "zh", "ko")
TARGET_LANGUAGES: Tuple[str, ...] = ("ja", "en", "zh", "ko")

INPUT_POLL_MS = 100


def language_display(code: Optional[str]) -> str:
    return LANGUAGE_DISPLAY_NAMES.get(code, code or LANGUAGE_DISPLAY_NAMES[None])


class PreviewWindow:
    """Create and reuse a single Tk window on its own thread.

    Public methods may be called from any thread; they only enqueue work for
    the Tk thread. Callbacks are invoked on the Tk thread.
    """

    def __init__(
        self,
        *,
        on_input_changed: Optional[Callable[[str], None]] = None,
        on_source_language: Optional[Callable[[Optional[str]], None]] = None,
        on_target_language: Optional[Callable[[str], None]] = None,
        on_swap_languages: Optional[Callable[[], None]] = None,
        on_translate: Optional[Callable[[], None]] = None,
        on_cancel: Optional[Callable[[], None]] = None,
        on_dismiss: Optional[Callable[[], None]] = None,
    ) -> None:
        self._queue: "queue.Queue[tuple]" = queue.Queue()
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._on_input_changed = on_input_changed
        self._on_source_language = on_source_language
        self._on_target_language = on_target_language
        self._on_swap_languages = on_swap_languages
        self._on_translate = on_translate
        self._on_cancel = on_cancel
        self._on_dismiss = on_dismiss
        self._source_language: Optional[str] = None
        self._target_language = "ja"

    def show(self, original: str, translated: str) -> None:
        self._ensure_thread()
        self._queue.put(("show", original, translated))

    def update(self, translated: str, status: str) -> None:
        """Refresh the output box without raising the window."""

        if self._thread is None:
            return
        self._queue.put(("update", translated, status))

    def show_error(self, message: str) -> None:
        self._ensure_thread()
        self._queue.put(("error", message))

    def close(self) -> None:
        if self._thread is None:
            return
        self._queue.put(("close",))

    def set_languages(self, source_language: Optional[str], target_language: str) -> None:
        self._source_language = source_language
        self._target_language = target_language
        if self._thread is not None:
            self._queue.put(("languages",))

    def shutdown(self) -> None:
        if self._thread is not None:
            self._queue.put(("quit",))

    def _ensure_thread(self) -> None:
        if self._thread is None or not self._thread.is_alive():
            self._ready.clear()
            self._thread = threading.Thread(target=self._run_window, name="PreviewWindow", daemon=True)
            self._thread.start()
            self._ready.wait()

    def _run_window(self) -> None:
        window = tk.Tk()
        window.title("Double-Copy Translator")
        window.geometry("520x440")
        window.withdraw()

        base_family = tkfont.nametofont("TkDefaultFont").actual("family")
        button_font = tkfont.Font(family=base_family, size=11)
        label_font = tkfont.Font(family=base_family, size=10, weight="bold")
        text_font = tkfont.Font(family=base_family, size=12)

        controls = tk.Frame(window)
        controls.pack(fill=tk.X, padx=10, pady=(10, 5))

        source_var = tk.StringVar(value=language_display(self._source_language))
        target_var = tk.StringVar(value=language_display(self._target_language))

        def select_source(code: Optional[str]) -> None:
            source_var.set(language_display(code))
            if self._on_source_language is not None:
                self._on_source_language(code)

        def select_target(code: str) -> None:
            target_var.set(language_display(code))
            if self._on_target_language is not None:
                self._on_target_language(code)

        source_menu = tk.OptionMenu(controls, source_var, *[language_display(c) for c in SOURCE_LANGUAGES])
        for index, code in enumerate(SOURCE_LANGUAGES):
            source_menu["menu"].entryconfigure(index, command=lambda c=code: select_source(c))
        source_menu.configure(font=button_font)
        source_menu.pack(side=tk.LEFT, expand=True, fill=tk.X)

        tk.Button(
            controls, text="⇄", font=button_font, command=lambda: self._invoke(self._on_swap_languages)
        ).pack(side=tk.LEFT, padx=8)

        target_menu = tk.OptionMenu(controls, target_var, *[language_display(c) for c in TARGET_LANGUAGES])
        for index, code in enumerate(TARGET_LANGUAGES):
            target_menu["menu"].entryconfigure(index, command=lambda c=code: select_target(c))
        target_menu.configure(font=button_font)
        target_menu.pack(side=tk.LEFT, expand=True, fill=tk.X)

        content = tk.PanedWindow(window, orient=tk.VERTICAL, sashwidth=6)
        content.pack(fill=tk.BOTH, expand=True, padx=10)

        original_frame = tk.Frame(content)
        content.add(original_frame, minsize=80)
        tk.Label(original_frame, text="Original", font=label_font).pack(anchor="w", pady=(0, 4))
        original_box = scrolledtext.ScrolledText(original_frame, wrap=tk.WORD, height=8, font=text_font)
        original_box.pack(fill=tk.BOTH, expand=True)

        translated_frame = tk.Frame(content)
        content.add(translated_frame, minsize=80)
        tk.Label(translated_frame, text="Translated", font=label_font).pack(anchor="w", pady=(0, 4))
        translated_box = scrolledtext.ScrolledText(translated_frame, wrap=tk.WORD, height=8, font=text_font)
        translated_box.configure(state=tk.DISABLED)
        translated_box.pack(fill=tk.BOTH, expand=True)

        footer = tk.Frame(window)
        footer.pack(fill=tk.X, padx=10, pady=(5, 10))
        status_label = tk.Label(footer, text="Ready", anchor="w")
        status_label.pack(side=tk.LEFT, expand=True, fill=tk.X)
        tk.Button(footer, text="Cancel", font=button_font, command=lambda: self._invoke(self._on_cancel)).pack(
            side=tk.RIGHT
        )
        tk.Button(
            footer, text="Translate", font=button_font, command=lambda: self._invoke(self._on_translate)
        ).pack(side=tk.RIGHT, padx=(0, 6))

        def set_text(box: scrolledtext.ScrolledText, value: str) -> None:
            previous = box.cget("state")
            box.configure(state=tk.NORMAL)
            box.delete("1.0", tk.END)
            box.insert(tk.END, value)
            box.configure(state=previous)

        def handle_input_edit(_event: tk.Event) -> None:
            if self._on_input_changed is not None:
                self._on_input_changed(original_box.get("1.0", "end-1c"))

        def hide_window() -> None:
            window.withdraw()

        def dismiss_window() -> None:
            hide_window()
            self._invoke(self._on_dismiss)

        def handle_escape(_event: tk.Event) -> str:
            dismiss_window()
            return "break"

        original_box.bind("<KeyRelease>", handle_input_edit)
        window.protocol("WM_DELETE_WINDOW", dismiss_window)
        window.bind("<Escape>", handle_escape)

        def place_near_pointer() -> None:
            window.update_idletasks()
            width = window.winfo_width() or window.winfo_reqwidth()
            height = window.winfo_height() or window.winfo_reqheight()
            pointer_x = window.winfo_pointerx()
            pointer_y = window.winfo_pointery()
            max_x = max(window.winfo_screenwidth() - width, 0)
            max_y = max(window.winfo_screenheight() - height, 0)
            x = min(max(pointer_x - width // 2, 0), max_x)
            y = min(max(pointer_y - height // 2, 0), max_y)
            window.geometry(f"+{x}+{y}")

        def bring_to_front() -> None:
            place_near_pointer()
            window.deiconify()
            window.lift()
            window.attributes("-topmost", True)
            window.after(100, lambda: window.attributes("-topmost", False))
            window.focus_force()

        def apply_updates() -> None:
            try:
                while True:
                    command = self._queue.get_nowait()
                    kind = command[0]
                    if kind == "show":
                        set_text(original_box, command[1])
                        set_text(translated_box, command[2])
                        status_label.configure(text="Done")
                        bring_to_front()
                    elif kind == "update":
                        set_text(translated_box, command[1])
                        status_label.configure(text=command[2])
                    elif kind == "error":
                        set_text(translated_box, "")
                        status_label.configure(text=command[1])
                        bring_to_front()
                    elif kind == "close":
                        hide_window()
                    elif kind == "languages":
                        source_var.set(language_display(self._source_language))
                        target_var.set(language_display(self._target_language))
                    elif kind == "quit":
                        window.destroy()
                        return
            except queue.Empty:
                pass
            window.after(INPUT_POLL_MS, apply_updates)

        self._ready.set()
        apply_updates()
        window.mainloop()
        logger.debug("Preview window closed")

    @staticmethod
    def _invoke(callback: Optional[Callable[[], None]]) -> None:
        if callback is not None:
            callback()
