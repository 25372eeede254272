from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from ..config import Settings
from ..llm import LLM, build_llm
from ..memory.journal import Journal
from ..sandbox.environment import SandboxManager
from ..sandbox.runner import ScriptRunner
from ..security.kill import CancelToken
from ..tools.dispatcher import ToolDispatcher

@dataclass
class Session:
    """
    Portée d'une exécution: tout ce qu'un orchestrateur partage avec ses
    collaborateurs, passé explicitement (aucun registre global). Deux sessions
    sur deux workspaces distincts peuvent tourner côte à côte.
    """
    settings: Settings
    llm: LLM
    cancel: CancelToken
    sandbox: SandboxManager
    runner: ScriptRunner
    dispatcher: ToolDispatcher
    journal: Optional[Journal] = None

    @classmethod
    def create(cls, settings: Settings, *, llm: LLM | None = None, cancel: CancelToken | None = None,
               journal: Journal | bool | None = None) -> "Session":
        cancel = cancel or CancelToken(settings.general.kill_switch_path)
        llm = llm or build_llm(settings, cancel)
        if journal is None:
            journal = settings.memory.enabled
        if journal is True:
            journal = Journal(settings)
        elif journal is False:
            journal = None
        sandbox = SandboxManager(settings, cancel)
        runner = ScriptRunner(sandbox, cancel)
        dispatcher = ToolDispatcher(settings, sandbox, runner, journal=journal, cancel=cancel)
        return cls(settings=settings, llm=llm, cancel=cancel, sandbox=sandbox, runner=runner,
                   dispatcher=dispatcher, journal=journal)

    def close(self) -> None:
        if self.journal is not None:
            self.journal.close()
        self.sandbox.cleanup()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
