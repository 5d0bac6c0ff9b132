import hashlib
import os
import time
from collections import OrderedDict

from config import MAX_LINE_BYTES, REPLAY_MEMORY, STAT_ERROR_LOG_INTERVAL
from utils import log_debug, log_warn


class LogTailer:
    """Follow a growing log file by byte offset.

    Only complete newline-terminated lines are returned; a trailing partial
    line stays unread until its newline arrives. A file that shrinks (or is
    replaced) is read again from offset 0, with lines already consumed
    before the truncation suppressed until the first new one shows up.
    """

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES, replay_memory: int = REPLAY_MEMORY):
        self.path = None
        self.max_line_bytes = max(1, int(max_line_bytes))
        self._offset = 0
        self._inode = None
        self._skipping_overlong = False
        self._suppress_replay = False
        self._seen: "OrderedDict[bytes, None]" = OrderedDict()
        self._replay_memory = max(0, int(replay_memory))
        self._last_stat_error = None
        self._last_stat_error_at = 0.0

    @classmethod
    def from_settings(cls, settings) -> "LogTailer":
        return cls(max_line_bytes=settings.max_line_bytes, replay_memory=settings.replay_memory)

    @property
    def offset(self) -> int:
        return self._offset

    def open(self, path):
        """Start tailing at the current end of ``path``. Raises OSError if unreadable."""
        st = os.stat(path)
        with open(path, "rb"):
            pass
        self.path = path
        self._offset = st.st_size
        self._inode = st.st_ino
        self._skipping_overlong = False
        self._suppress_replay = False
        log_debug(f"[TAIL] Opened {path} at offset {self._offset}")
        return self

    def poll(self) -> list:
        if self.path is None:
            raise RuntimeError("LogTailer.poll() called before open()")

        try:
            st = os.stat(self.path)
        except OSError as exc:
            self._log_stat_error(exc)
            return []
        self._last_stat_error = None

        if st.st_size < self._offset or (self._inode is not None and st.st_ino != self._inode):
            log_warn(
                f"[TAIL] {self.path} truncated or replaced "
                f"(size {st.st_size} < offset {self._offset} or new inode), reading from start"
            )
            self._offset = 0
            self._inode = st.st_ino
            self._skipping_overlong = False
            self._suppress_replay = bool(self._seen)

        if st.st_size == self._offset:
            return []

        try:
            return self._read_new_lines()
        except OSError as exc:
            log_warn(f"[TAIL] Read failed for {self.path}: {exc}")
            return []

    def _read_new_lines(self) -> list:
        lines = []
        limit = self.max_line_bytes
        with open(self.path, "rb") as f:
            f.seek(self._offset)
            while True:
                raw = f.readline(limit + 1)
                if not raw:
                    break

                if self._skipping_overlong:
                    # Rest einer zu langen Zeile verwerfen
                    self._offset += len(raw)
                    if raw.endswith(b"\n"):
                        self._skipping_overlong = False
                    continue

                if raw.endswith(b"\n"):
                    self._offset += len(raw)
                    body = raw.rstrip(b"\r\n")
                    if len(body) > limit:
                        log_warn(f"[TAIL] Line longer than {limit} bytes truncated")
                        body = body[:limit]
                    line = self._accept(body)
                    if line is not None:
                        lines.append(line)
                    continue

                if len(raw) > limit:
                    log_warn(f"[TAIL] Line longer than {limit} bytes truncated")
                    self._offset += len(raw)
                    self._skipping_overlong = True
                    line = self._accept(raw[:limit])
                    if line is not None:
                        lines.append(line)
                    continue

                # unvollständige Zeile am Dateiende: beim nächsten Poll erneut lesen
                break
        return lines

    def _accept(self, body: bytes):
        fingerprint = hashlib.sha1(body).digest()
        if self._suppress_replay:
            if fingerprint in self._seen:
                log_debug("[TAIL] Skipped line already consumed before truncation")
                return None
            self._suppress_replay = False
        self._remember(fingerprint)
        return body.decode("utf-8", errors="replace")

    def _remember(self, fingerprint: bytes) -> None:
        if not self._replay_memory:
            return
        self._seen[fingerprint] = None
        self._seen.move_to_end(fingerprint)
        while len(self._seen) > self._replay_memory:
            self._seen.popitem(last=False)

    def _log_stat_error(self, exc: OSError) -> None:
        message = str(exc)
        now = time.monotonic()
        if message != self._last_stat_error or now - self._last_stat_error_at >= STAT_ERROR_LOG_INTERVAL:
            log_warn(f"[TAIL] Cannot stat {self.path}: {message}")
            self._last_stat_error = message
            self._last_stat_error_at = now
