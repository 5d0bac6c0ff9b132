import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from trade_store import ActionCode
from utils import log_debug, log_warn

MENU_HINT = "T (trade) | P (party) | F (finish) | D (delete)"

# rofi -kb-custom-N beendet mit Exit-Code 9+N
ROFI_EXIT_CODES = {
    0: ActionCode.TRADE,
    10: ActionCode.TRADE,
    11: ActionCode.INVITE,
    12: ActionCode.SETTLE,
    13: ActionCode.DELETE,
}
ROFI_CANCEL = 1


class PresenterError(RuntimeError):
    """The menu could not be shown."""


@dataclass(frozen=True)
class Selection:
    indices: Tuple[int, ...]
    action: ActionCode


class Presenter:
    """Shows display strings and returns a Selection, or None if the user cancelled."""

    def present(self, items: Sequence[str], message: str = MENU_HINT) -> Optional[Selection]:
        raise NotImplementedError


class RofiPresenter(Presenter):
    def __init__(self, binary: str = "rofi", theme: str = "", timeout: Optional[float] = None):
        self.binary = binary
        self.theme = theme
        self.timeout = timeout

    def build_args(self, message: str) -> list:
        args = [
            self.binary, "-dmenu",
            "-multi-select",
            "-format", "i",
            "-p", "Trades",
            "-mesg", message,
            "-kb-custom-1", "t",
            "-kb-custom-2", "p",
            "-kb-custom-3", "f",
            "-kb-custom-4", "d",
            "-kb-accept-entry", "Return",
        ]
        if self.theme:
            args += ["-theme", self.theme]
        return args

    def present(self, items, message=MENU_HINT):
        if not items:
            return None
        try:
            proc = subprocess.run(
                self.build_args(message),
                input="\n".join(items),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise PresenterError(f"failed to run rofi: {exc}") from exc

        if proc.returncode == ROFI_CANCEL:
            log_debug("[MENU] Cancelled")
            return None
        action = ROFI_EXIT_CODES.get(proc.returncode)
        if action is None:
            raise PresenterError(f"rofi exited with {proc.returncode}: {proc.stderr.strip()}")
        indices = parse_indices(proc.stdout, len(items))
        if not indices:
            return None
        return Selection(indices=indices, action=action)


def parse_indices(output: str, count: int) -> Tuple[int, ...]:
    indices = []
    for token in output.split():
        try:
            idx = int(token)
        except ValueError:
            log_warn(f"[MENU] Unexpected menu output {token!r}")
            continue
        if 0 <= idx < count and idx not in indices:
            indices.append(idx)
    return tuple(indices)


class TkPresenter(Presenter):
    """Same menu as a small Tk window (multi-select list, t/p/f/d keys)."""

    def __init__(self, title: str = "Trades", master=None):
        self.title = title
        self.master = master

    def present(self, items, message=MENU_HINT):
        if not items:
            return None
        import tkinter as tk

        result = {"selection": None}
        root = tk.Toplevel(self.master) if self.master is not None else tk.Tk()
        root.title(self.title)
        root.geometry("640x360")
        root.attributes("-topmost", True)

        tk.Label(root, text=message, anchor="w").pack(fill="x", padx=8, pady=(8, 4))
        listbox = tk.Listbox(root, selectmode=tk.EXTENDED, activestyle="none")
        for item in items:
            listbox.insert(tk.END, item)
        listbox.pack(fill="both", expand=True, padx=8)
        listbox.focus_set()
        listbox.selection_set(0)

        def choose(action):
            indices = tuple(int(i) for i in listbox.curselection())
            if indices:
                result["selection"] = Selection(indices=indices, action=action)
            root.destroy()

        button_frame = tk.Frame(root)
        button_frame.pack(fill="x", padx=8, pady=8)
        for label, action, key in (
            ("Trade (T)", ActionCode.TRADE, "t"),
            ("Party (P)", ActionCode.INVITE, "p"),
            ("Finish (F)", ActionCode.SETTLE, "f"),
            ("Delete (D)", ActionCode.DELETE, "d"),
        ):
            tk.Button(button_frame, text=label, command=lambda a=action: choose(a)).pack(side="left", padx=2)
            root.bind(f"<KeyPress-{key}>", lambda _e, a=action: choose(a))
        tk.Button(button_frame, text="Abbrechen", command=root.destroy).pack(side="right")
        root.bind("<Return>", lambda _e: choose(ActionCode.TRADE))
        root.bind("<Escape>", lambda _e: root.destroy())

        if self.master is not None:
            root.grab_set()
            self.master.wait_window(root)
        else:
            root.mainloop()
        return result["selection"]


def make_presenter(kind: str = "rofi") -> Presenter:
    if kind == "tk":
        return TkPresenter()
    if kind == "rofi":
        return RofiPresenter()
    raise ValueError(f"unknown presenter {kind!r}")
