from __future__ import annotations
import os, signal, subprocess, threading, time
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence
from ..security.kill import CancelToken

__all__ = ["ProcessOutcome", "run_process", "kill_process_tree", "TRUNCATION_MARKER"]

TRUNCATION_MARKER = "\n... [Output truncated, {omitted} bytes omitted]"
_CHUNK = 8192
_POLL_SEC = 0.05
_KILL_GRACE_SEC = 0.5

@dataclass
class ProcessOutcome:
    returncode: Optional[int]
    stdout: str
    stderr: str
    elapsed: float
    timed_out: bool = False
    cancelled: bool = False
    stdout_omitted: int = 0
    stderr_omitted: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled

def _complete_utf8_prefix(data: bytes) -> int:
    """Longueur du préfixe qui ne coupe pas un caractère UTF-8 multi-octets."""
    i = len(data)
    # remonte au plus 3 octets de continuation (10xxxxxx)
    while i > 0 and len(data) - i < 3 and (data[i - 1] & 0xC0) == 0x80:
        i -= 1
    if i == 0:
        return len(data)
    lead = data[i - 1]
    if lead < 0x80:
        return len(data)
    need = 2 if lead >= 0xC0 and lead < 0xE0 else 3 if lead < 0xF0 else 4
    have = len(data) - (i - 1)
    return len(data) if have >= need else i - 1

class _BoundedCapture:
    """
    Vide un flux binaire dans un thread dédié. Garde au plus `limit` octets,
    le reste est lu puis compté (le pipe ne se bloque jamais, la mémoire reste bornée).
    """
    def __init__(self, stream, limit: Optional[int]):
        self.stream = stream
        self.limit = limit
        self.buf = bytearray()
        self.omitted = 0
        self.thread = threading.Thread(target=self._pump, daemon=True)
        self.thread.start()

    def _pump(self) -> None:
        try:
            while True:
                chunk = self.stream.read1(_CHUNK)
                if not chunk:
                    break
                room = len(chunk) if self.limit is None else max(0, self.limit - len(self.buf))
                kept = min(room, len(chunk))
                self.buf += chunk[:kept]
                self.omitted += len(chunk) - kept
        except (OSError, ValueError):
            # pipe fermé sous nos pieds (processus tué)
            pass
        finally:
            try:
                self.stream.close()
            except OSError:
                pass

    def text(self, join_timeout: float = 2.0) -> str:
        self.thread.join(timeout=join_timeout)
        data = bytes(self.buf)
        if self.omitted:
            cut = _complete_utf8_prefix(data)
            self.omitted += len(data) - cut
            data = data[:cut]
        out = data.decode("utf-8", errors="replace")
        if self.omitted:
            out += TRUNCATION_MARKER.format(omitted=self.omitted)
        return out

def kill_process_tree(proc: subprocess.Popen, *, grace: float = _KILL_GRACE_SEC) -> None:
    """Arrête le processus et tout son groupe (pas d'orphelins)."""
    if os.name == "posix":
        # le groupe peut survivre au leader: SIGKILL part toujours après le délai de grâce
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        except PermissionError:
            proc.kill()
            return
        try:
            proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            pass
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    else:
        if proc.poll() is not None:
            return
        # Windows: taskkill sur l'arbre complet
        r = subprocess.run(["taskkill", "/F", "/T", "/PID", str(proc.pid)], capture_output=True, text=True, check=False)
        if r.returncode != 0 and proc.poll() is None:
            proc.kill()

def run_process(
    cmd: Sequence[str],
    *,
    cwd: str | os.PathLike | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    cancel: CancelToken | None = None,
    max_output_bytes: int | None = None,
) -> ProcessOutcome:
    """
    Lance `cmd`, capture stdout/stderr séparément (chacun borné à max_output_bytes),
    applique le timeout et l'annulation en tuant l'arbre de processus.
    Lève OSError si l'exécutable est introuvable.
    """
    full_env = dict(os.environ)
    if env:
        full_env.update(env)
    if os.name == "posix":
        popen_kwargs = dict(start_new_session=True)
    else:
        popen_kwargs = dict(creationflags=subprocess.CREATE_NEW_PROCESS_GROUP)

    start = time.monotonic()
    proc = subprocess.Popen(
        list(cmd),
        cwd=str(cwd) if cwd else None,
        env=full_env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        **popen_kwargs,
    )
    out = _BoundedCapture(proc.stdout, max_output_bytes)
    err = _BoundedCapture(proc.stderr, max_output_bytes)

    deadline = start + timeout if timeout else None
    timed_out = cancelled = False
    while True:
        try:
            proc.wait(timeout=_POLL_SEC)
            break
        except subprocess.TimeoutExpired:
            pass
        if cancel is not None and cancel.cancelled:
            cancelled = True
        elif deadline is not None and time.monotonic() >= deadline:
            timed_out = True
        if cancelled or timed_out:
            kill_process_tree(proc)
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            break

    elapsed = time.monotonic() - start
    stdout, stderr = out.text(), err.text()
    return ProcessOutcome(
        returncode=proc.returncode,
        stdout=stdout,
        stderr=stderr,
        elapsed=elapsed,
        timed_out=timed_out,
        cancelled=cancelled,
        stdout_omitted=out.omitted,
        stderr_omitted=err.omitted,
    )
