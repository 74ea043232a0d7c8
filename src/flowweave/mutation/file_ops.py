"""Read-modify-write of workflow source files.

Concurrent edits of the same file are serialized by a ``PathLockRegistry``
that the caller owns and passes in; two registries never coordinate.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from flowweave.compiler import compile_source, parse_source, select_workflow, write_source_atomic
from flowweave.core.ast_models import WorkflowAST
from flowweave.core.settings import FlowWeaveSettings
from flowweave.generator.annotation_writer import write_workflow_annotations
from flowweave.parsing.workflow_assembler import read_source_file

logger = logging.getLogger(__name__)

Mutation = Callable[[WorkflowAST], WorkflowAST]


class PathLockRegistry:
    """One lock per resolved file path."""

    def __init__(self) -> None:
        self._locks: dict[Path, threading.Lock] = {}
        # Guards the dict itself
        self._registry_lock = threading.Lock()

    def lock_for(self, path: Path) -> threading.Lock:
        key = Path(path).resolve()
        with self._registry_lock:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]


def mutate_workflow_file(
    path: Path,
    mutation: Mutation,
    locks: PathLockRegistry,
    workflow: Optional[str] = None,
    regenerate: bool = False,
    settings: Optional[FlowWeaveSettings] = None,
) -> WorkflowAST:
    """Apply ``mutation`` to a workflow and write its tags back to ``path``.

    With ``regenerate`` the workflow body is recompiled in the same write;
    a workflow left with blocking errors then raises ``GenerationError`` and
    the file is not touched.

    Args:
        path: Module containing the workflow
        mutation: Pure AST operation, e.g. ``lambda ast: add_node(ast, "n", "T")``
        locks: Registry serializing writers of the same path
        workflow: Workflow name; the first workflow of the module when None
        regenerate: Also regenerate the orchestration body
        settings: Settings used for regeneration

    Returns:
        The mutated AST
    """
    path = Path(path)
    with locks.lock_for(path):
        source = read_source_file(path)
        assembly = select_workflow(parse_source(source, str(path)), workflow)
        mutated = mutation(assembly.ast)
        updated = write_workflow_annotations(source, mutated)
        if regenerate:
            result = compile_source(updated, str(path), mutated.name, settings, in_place=True)
            if result.source is not None:
                updated = result.source
        if updated != source:
            write_source_atomic(path, updated)
        logger.debug(
            f"Applied mutation to '{mutated.name}' in {path}",
            extra={"phase": "mutate", "regenerate": regenerate},
        )
    return mutated
