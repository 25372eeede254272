from __future__ import annotations
import threading, time
from pathlib import Path

class RunCancelled(Exception):
    """Raised when the current run has been cancelled."""

class KillSwitchEngaged(RunCancelled):
    """Raised when kill-switch is engaged."""

def check_kill(kill_switch_path: str | None) -> None:
    """Raise if the kill-switch file exists."""
    if not kill_switch_path:
        return
    p = Path(kill_switch_path)
    if p.exists():
        raise KillSwitchEngaged(f"Kill-switch engaged: {p}")

class CancelToken:
    """
    Signal d'annulation unique d'une exécution.
    Combine un drapeau en mémoire (Ctrl-C, appelant) et le fichier kill-switch
    (posé par exemple via POST /api/kill depuis le tableau de bord).
    """
    def __init__(self, kill_switch_path: str | None = None):
        self.kill_switch_path = kill_switch_path
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return bool(self.kill_switch_path) and Path(self.kill_switch_path).exists()

    def check(self) -> None:
        check_kill(self.kill_switch_path)
        if self._event.is_set():
            raise RunCancelled("Exécution annulée")

    def wait(self, seconds: float, *, interval: float = 0.1) -> bool:
        """Attend `seconds` en restant réactif; True si annulé entre-temps."""
        deadline = time.monotonic() + max(0.0, seconds)
        while True:
            if self.cancelled:
                return True
            left = deadline - time.monotonic()
            if left <= 0:
                return False
            self._event.wait(min(interval, left))
