import datetime
import threading
import time
import tkinter as tk
from tkinter import messagebox, ttk

import matplotlib.pyplot as plt

from config import ConfigError
from database import TradeHistory, export_trades, summarize_trades
from presenter import TkPresenter
from tracker import TrackerContext, TradeTracker
from utils import currency_label, log_info


# -----------------------
# GUI
# -----------------------
def start_gui(config_path=None, debug=False, log_path=None):
    try:
        context = TrackerContext.create(config_path, debug=debug)
    except ConfigError as e:
        messagebox.showerror("Konfigurationsfehler", str(e))
        return

    root = tk.Tk()
    root.title("Exile Trade Tracker")
    root.geometry("520x640")

    tracker = TradeTracker(context, log_path=log_path, presenter=TkPresenter(master=root))
    history = tracker.history or TradeHistory(context.settings.db_path)

    debug_var = tk.BooleanVar(value=tracker.debug)
    status_var = tk.StringVar(value="Idle")

    tk.Label(root, text="Client.txt (leer = automatisch):").pack()
    log_entry = tk.Entry(root, width=60)
    if log_path:
        log_entry.insert(0, log_path)
    log_entry.pack()

    def _ensure_log_open():
        path = log_entry.get().strip() or None
        if path:
            tracker.fixed_log_path = path
        if tracker.tailer.path is None or (path and path != tracker.tailer.path):
            opened = tracker.open_log(path)
            log_entry.delete(0, tk.END)
            log_entry.insert(0, opened)

    def run_single():
        try:
            if not tracker.running and not tracker.refresh_window():
                messagebox.showinfo("Info", f"{tracker.watcher.game_name()} Fenster nicht gefunden.")
                return
            _ensure_log_open()
            found = tracker.single_scan()
            messagebox.showinfo("Info", f"Einzel-Scan abgeschlossen ({len(found)} neue Trades).")
        except Exception as e:
            messagebox.showerror("Fehler", str(e))

    auto_thread = {"thread": None}

    def start_auto():
        if tracker.running:
            messagebox.showinfo("Info", "Auto-Tracking läuft bereits.")
            return
        try:
            _ensure_log_open()
        except Exception as e:
            messagebox.showerror("Fehler", str(e))
            return
        status_var.set("Running")
        log_info("[AUTO-TRACK] Started from GUI")

        def _run():
            try:
                tracker.auto_track()
            except Exception as exc:
                tracker.record_error(exc, "auto-track")

        t = threading.Thread(target=_run, daemon=True)
        auto_thread["thread"] = t
        t.start()

    def stop_auto():
        log_info("[AUTO-TRACK] Stopped from GUI")
        tracker.stop()
        status_var.set("Idle")

    def show_trades():
        try:
            result = tracker.show_trades()
        except Exception as e:
            messagebox.showerror("Fehler", str(e))
            return
        status_var.set(result)

    def _apply_settings():
        tracker.debug = debug_var.get()
        messagebox.showinfo("Einstellungen", f"Debug ist nun {'AN' if tracker.debug else 'AUS'}")

    tk.Button(root, text="Einmal scannen", command=run_single).pack(pady=6)
    tk.Button(root, text="Auto-Tracking starten", command=start_auto).pack(pady=6)
    tk.Button(root, text="Auto-Tracking stoppen", command=stop_auto).pack(pady=6)
    tk.Button(root, text="Offene Trades anzeigen", command=show_trades).pack(pady=6)

    settings_frame = tk.LabelFrame(root, text="Einstellungen", padx=8, pady=8)
    settings_frame.pack(fill="x", padx=12, pady=8)
    tk.Checkbutton(settings_frame, text="Debug-Modus", variable=debug_var).pack(anchor="w")
    tk.Button(settings_frame, text="Übernehmen", command=_apply_settings).pack(pady=(8, 0))
    tk.Label(root, textvariable=status_var).pack(pady=4)

    # System Health Status
    health_status_var = tk.StringVar(value="🟢 Healthy")
    health_label = tk.Label(root, textvariable=health_status_var, font=("Arial", 10, "bold"))
    health_label.pack(pady=2)

    # Live Window Status
    window_status_var = tk.StringVar(value="Window: -")
    tk.Label(root, textvariable=window_status_var, fg="blue").pack(pady=2)

    def update_health_status():
        """Update health, gate and window display every 500ms"""
        error_count = tracker.error_count
        if error_count == 0:
            health_status_var.set("🟢 Healthy")
            health_label.config(fg="green")
        elif error_count < 3:
            health_status_var.set(f"🟡 Warning: {tracker.last_error_message}")
            health_label.config(fg="orange")
        else:
            health_status_var.set(f"🔴 Error: {tracker.last_error_message}")
            health_label.config(fg="red")

        if tracker.running:
            window = tracker.watcher.current_window
            state = tracker.gate.state.value
            if window is not None:
                window_status_var.set(f"Window: {window.window_class} | {state} | Trades: {len(tracker.store)}")
            else:
                window_status_var.set(f"Window: scanning... | {state}")
        else:
            window_status_var.set(f"Window: idle | Trades: {len(tracker.store)}")
        root.after(500, update_health_status)

    update_health_status()

    # Anzeige-Panel
    tk.Label(root, text="Zeitraum (YYYY-MM-DD):").pack()
    start_entry = tk.Entry(root); start_entry.insert(0, str(datetime.date.today())); start_entry.pack()
    end_entry = tk.Entry(root); end_entry.insert(0, str(datetime.date.today())); end_entry.pack()
    tk.Label(root, text="Item (optional):").pack(); item_entry = tk.Entry(root); item_entry.pack()
    tk.Label(root, text="Richtung (buy/sell - optional):").pack(); type_entry = tk.Entry(root); type_entry.pack()

    def view_data():
        try:
            df = history.read_trades(
                start=start_entry.get().strip() + " 00:00:00",
                end=end_entry.get().strip() + " 23:59:59",
                item=item_entry.get().strip() or None,
                direction=type_entry.get().strip().lower() or None,
            )
        except Exception as e:
            messagebox.showerror("Fehler", str(e))
            return
        if df.empty:
            messagebox.showinfo("Ergebnis", "Keine Daten gefunden.")
            return

        result_window = tk.Toplevel(root)
        result_window.title("Trade-Historie")
        result_window.geometry("860x600")

        summary_frame = tk.Frame(result_window)
        summary_frame.pack(fill="x", padx=12, pady=(12, 8))
        for line in summarize_trades(df):
            tk.Label(summary_frame, text=line, anchor="w").pack(fill="x", pady=2)

        tree_frame = tk.Frame(result_window)
        tree_frame.pack(fill="both", expand=True, padx=12, pady=(0, 10))
        tree_frame.grid_columnconfigure(0, weight=1)
        tree_frame.grid_rowconfigure(0, weight=1)

        columns = ("timestamp", "player", "item", "price", "direction", "tab", "status")
        tree = ttk.Treeview(tree_frame, columns=columns, show="headings")
        for col, heading, width, anchor in (
            ("timestamp", "Zeitstempel", 150, "w"),
            ("player", "Spieler", 130, "w"),
            ("item", "Item", 200, "w"),
            ("price", "Preis", 110, "e"),
            ("direction", "Richtung", 70, "center"),
            ("tab", "Stash (Pos.)", 110, "w"),
            ("status", "Status", 70, "center"),
        ):
            tree.heading(col, text=heading)
            tree.column(col, width=width, anchor=anchor)

        vsb = ttk.Scrollbar(tree_frame, orient="vertical", command=tree.yview)
        tree.configure(yscrollcommand=vsb.set)
        tree.grid(row=0, column=0, sticky="nsew")
        vsb.grid(row=0, column=1, sticky="ns")

        for _, row in df.iterrows():
            tree.insert(
                "",
                "end",
                values=(
                    row["timestamp"].strftime("%Y-%m-%d %H:%M:%S"),
                    row["player_name"],
                    row["item_name"],
                    f"{row['currency_amount']:g} {currency_label(row['currency_type'])}",
                    row["direction"],
                    f"{row['stash_tab']} ({row['position_left']},{row['position_top']})",
                    row["status"],
                ),
            )

        button_frame = tk.Frame(result_window)
        button_frame.pack(fill="x", padx=12, pady=(0, 12))

        def show_price_plot():
            plt.figure(figsize=(10, 5))
            for currency in df["currency_type"].dropna().unique():
                sub = df[df["currency_type"] == currency].sort_values("timestamp")
                plt.plot(sub["timestamp"], sub["currency_amount"], marker="o", label=currency_label(currency))
            plt.title("Preisverlauf")
            plt.xlabel("Zeit")
            plt.ylabel("Preis")
            plt.legend()
            plt.tight_layout()
            plt.show()

        tk.Button(button_frame, text="Preisverlauf anzeigen", command=show_price_plot).pack(side="left")
        tk.Button(button_frame, text="Fenster schließen", command=result_window.destroy).pack(side="right")

    tk.Button(root, text="Daten anzeigen", command=view_data).pack(pady=8)

    # Export-Funktionen
    def _export(fmt):
        try:
            path = export_trades(history, f"export_{int(time.time())}.{fmt}", fmt)
        except Exception as e:
            messagebox.showerror("Export-Fehler", str(e))
            return
        if path is None:
            messagebox.showinfo("Export", "Keine Daten zum Exportieren.")
        else:
            messagebox.showinfo("Export", f"{fmt.upper()} exportiert: {path}")

    tk.Button(root, text="Export CSV", command=lambda: _export("csv")).pack(pady=4)
    tk.Button(root, text="Export JSON", command=lambda: _export("json")).pack(pady=4)

    def show_history():
        hist = tracker.watcher.history[-5:]
        if not hist:
            messagebox.showinfo("Fenster-Historie", "Keine Einträge vorhanden.")
            return
        text = "\n".join(f"{ts.strftime('%H:%M:%S')} - {w}" for ts, w in hist)
        messagebox.showinfo("Fenster-Historie", text)

    tk.Button(root, text="Fenster-Historie", command=show_history).pack(pady=4)

    def on_close():
        try:
            tracker.stop()
            thread = auto_thread["thread"]
            if thread is not None:
                thread.join(timeout=1.0)
        finally:
            history.close()
            root.destroy()

    root.protocol("WM_DELETE_WINDOW", on_close)
    root.mainloop()


if __name__ == "__main__":
    start_gui()
