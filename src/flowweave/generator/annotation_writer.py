"""Write a workflow's graph back into its docstring tags.

The graph tags (``@node``, ``@connect``, ``@position``) are regenerated from a
``WorkflowAST``; the description and every other tag stay exactly as written.
"""

import logging

from flowweave.core.ast_models import NodeInstance, PortRef, WorkflowAST
from flowweave.core.exceptions import SourceParseError
from flowweave.parsing.port_sync import DocstringEditor
from flowweave.parsing.source_scanner import find_function
from flowweave.parsing.tag_grammar import (
    ConnectTag,
    EndpointRef,
    FlowWeaverTag,
    NodeTag,
    PositionTag,
    Tag,
    parse_docstring,
    render_tag,
)

logger = logging.getLogger(__name__)

GRAPH_TAGS = (NodeTag, ConnectTag, PositionTag)


def _endpoint(ref: PortRef) -> EndpointRef:
    return EndpointRef(node=ref.node, port=ref.port, scope=ref.scope)


def node_tag(instance: NodeInstance) -> NodeTag:
    config = instance.config
    size = None
    if config.width is not None and config.height is not None:
        size = (config.width, config.height)
    return NodeTag(
        instance_id=instance.id,
        node_type=instance.node_type,
        parent=(instance.parent.instance_id, instance.parent.scope_name) if instance.parent else None,
        label=config.label,
        expressions=dict(config.port_expressions),
        size=size,
    )


def workflow_graph_tags(ast: WorkflowAST) -> list[Tag]:
    """Graph tags for ``ast``: nodes, then connections, then positions."""
    tags: list[Tag] = [node_tag(instance) for instance in ast.instances]
    tags.extend(ConnectTag(source=_endpoint(c.source), target=_endpoint(c.target)) for c in ast.connections)
    tags.extend(
        PositionTag(instance_id=i.id, x=i.config.x, y=i.config.y)
        for i in ast.instances
        if i.config.x is not None and i.config.y is not None
    )
    return tags


def render_graph_tags(ast: WorkflowAST) -> list[str]:
    return [render_tag(tag) for tag in workflow_graph_tags(ast)]


def write_workflow_annotations(source: str, ast: WorkflowAST) -> str:
    """Return ``source`` with the graph tags of ``ast``'s function regenerated.

    New tag lines go where the first old graph tag was, or after the last
    remaining tag when the docstring had none.

    Raises:
        SourceParseError: If the function is missing or has no docstring
    """
    function = find_function(source, ast.function_name, ast.source_path)
    block = parse_docstring(function.docstring_text(source))
    if block.first(FlowWeaverTag) is None:
        raise SourceParseError(f"def {ast.function_name} has no @flowWeaver tag", source_path=ast.source_path)

    editor = DocstringEditor(source, function)
    old_graph = [t for t in block.tags if isinstance(t, GRAPH_TAGS)]
    kept = [t for t in block.tags if not isinstance(t, GRAPH_TAGS)]
    anchor_tag = old_graph[0] if old_graph else kept[-1]
    indent = editor.indent_of(anchor_tag.line)

    for tag in old_graph:
        editor.remove(tag)
    # A removed line leaves its slot empty, so new lines take its place
    for line in render_graph_tags(ast):
        editor.insert_after(anchor_tag.line, line, indent)

    logger.debug(
        f"Rewrote {len(old_graph)} graph tags of '{ast.function_name}' "
        f"as {len(ast.instances)} nodes and {len(ast.connections)} connections",
        extra={"phase": "annotations"},
    )
    return editor.apply()
