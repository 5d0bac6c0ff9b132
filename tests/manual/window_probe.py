"""
Manual probe for the window backend: which game window is found right now?

Run with the game open (or closed) and compare the output:
    python tests/manual/window_probe.py [--focus]
"""
import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from config import ConfigError, load_settings, resolve_log_path
from window import WindowError, select_backend


def main():
    settings = load_settings()
    try:
        backend = select_backend()
    except ConfigError as e:
        print(f"❌ Kein Backend: {e}")
        return 1

    print(f"🧪 Backend: {backend.name}")
    print(f"Gesuchte Klassen: {', '.join(settings.window_classes())}\n")

    window = backend.find_window(settings.window_classes())
    if window is None:
        print("Kein Spielfenster gefunden.")
        return 0

    app_id = settings.app_id_by_window_class(window.window_class)
    print(f"Gefunden: {window.window_class} @ {window.address} ({window.title or '-'})")
    print(f"Spiel: {settings.game_name(app_id)}")
    try:
        print(f"Client.txt: {resolve_log_path(settings, app_id)}")
    except ConfigError as e:
        print(f"Client.txt: nicht gefunden ({e})")

    if "--focus" in sys.argv:
        try:
            backend.focus_window(window)
            print("Fenster fokussiert.")
        except WindowError as e:
            print(f"❌ Fokus fehlgeschlagen: {e}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
