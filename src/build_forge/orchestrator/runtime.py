"""Explicit bundle of settings and collaborators shared by the forge stages."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from build_forge.config import Settings
from build_forge.orchestrator.attempt_log import AttemptLog
from build_forge.orchestrator.journal import Journal
from build_forge.orchestrator.ledger import LedgerStore
from build_forge.orchestrator.prompts import PromptBuilder
from build_forge.orchestrator.routing import AgentRouter, CommandAgentRouter
from build_forge.orchestrator.vcs import GitRepository

logger = logging.getLogger(__name__)

Emit = Callable[[str], None]


def _log_emit(message: str) -> None:
    logger.info(message)


@dataclass(slots=True)
class ForgeRuntime:
    """Everything a forge stage needs, passed explicitly."""

    settings: Settings
    store: LedgerStore
    agents: AgentRouter
    logs: AttemptLog
    journal: Journal
    vcs: GitRepository
    prompts: PromptBuilder
    emit: Emit = _log_emit

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        agents: AgentRouter | None = None,
        emit: Emit | None = None,
    ) -> ForgeRuntime:
        paths = settings.paths
        vcs = GitRepository(
            paths.root,
            main_branch=settings.forge.main_branch,
            worktree_root=settings.worktree_root,
        )
        journal = Journal(paths.journal)
        return cls(
            settings=settings,
            store=LedgerStore(paths.ledger),
            agents=agents or CommandAgentRouter(settings.agent),
            logs=AttemptLog(paths.log_dir),
            journal=journal,
            vcs=vcs,
            prompts=PromptBuilder(paths, vcs, journal),
            emit=emit or _log_emit,
        )
