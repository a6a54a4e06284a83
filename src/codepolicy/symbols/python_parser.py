"""Python source adapter: tree-sitter parsing into the Symbol Model."""

# codepolicy:domain=symbols

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterator
from typing import TYPE_CHECKING

import tree_sitter_python as tspython
from tree_sitter import Language, Parser

from codepolicy.errors import ParseFailure
from codepolicy.symbols.model import (
    Callable,
    CallSite,
    DependencyEdge,
    ErrorHandler,
    LiteralToken,
    LoopMarker,
    SourceUnit,
    infer_domain,
)

if TYPE_CHECKING:
    from tree_sitter import Node as TSNode

# Compile the Python grammar once at module level.
_PY_LANGUAGE = Language(tspython.language())

# Regex for codepolicy annotations in comments.
_ANNOTATION_RE = re.compile(r"codepolicy:(.+)")
_KV_RE = re.compile(r"(\w+)=(\S+)")

# Statements that open a nested block for max_nesting.
_BLOCK_TYPES = frozenset({
    "if_statement",
    "for_statement",
    "while_statement",
    "try_statement",
    "with_statement",
    "match_statement",
})

# Nodes that open a new scope; their blocks do not count toward nesting.
_SCOPE_TYPES = frozenset({"function_definition", "class_definition", "lambda"})

_COLLECTION_TYPES = frozenset({"list", "tuple", "set"})

_LOG_CALL_RE = re.compile(
    r"^(?:self\.|cls\.)?_?(?:log|logger|logging|LOG|LOGGER)"
    r"\.(?:debug|info|warning|warn|error|exception|critical|log)$"
)
_STRING_RE = re.compile(r"^[A-Za-z]*(\"\"\"|'''|\"|')(.*)\1$", re.DOTALL)


def parse_annotations(line: str) -> dict[str, str]:
    """Parse a codepolicy annotation from a comment line.

    Format: ``# codepolicy:<key>=<value>[ <key>=<value>]*``

    Returns a dict of key->value pairs, or empty dict if no annotation.
    """
    match = _ANNOTATION_RE.search(line)
    if not match:
        return {}
    return dict(_KV_RE.findall(match.group(1)))


# ---------------------------------------------------------------------------
# Node helpers
# ---------------------------------------------------------------------------


def _text(node: TSNode | None) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _compact(text: str) -> str:
    return re.sub(r"\s+", "", text)


def _squash(text: str) -> str:
    return " ".join(text.split())


def _line(node: TSNode) -> int:
    # tree-sitter uses 0-based rows; we want 1-based lines.
    return node.start_point.row + 1


def _same(a: TSNode | None, b: TSNode | None) -> bool:
    if a is None or b is None:
        return False
    return (a.start_byte, a.end_byte, a.type) == (b.start_byte, b.end_byte, b.type)


def _walk(node: TSNode, *, skip_scopes: bool = False) -> Iterator[TSNode]:
    """Yield every descendant of *node* (excluding *node* itself), depth-first."""
    for child in node.children:
        yield child
        if skip_scopes and child.type in _SCOPE_TYPES:
            continue
        yield from _walk(child, skip_scopes=skip_scopes)


def _first_error(node: TSNode) -> TSNode | None:
    if node.type == "ERROR" or node.is_missing:
        return node
    for child in node.children:
        if child.has_error or child.is_missing:
            found = _first_error(child)
            if found is not None:
                return found
    return None


def _string_value(node: TSNode) -> str:
    parts = [_text(c) for c in node.children if c.type == "string_content"]
    if parts or any(c.type == "string_start" for c in node.children):
        return "".join(parts)
    match = _STRING_RE.match(_text(node))
    return match.group(2) if match else _text(node)


def _is_formatted(node: TSNode) -> bool:
    for child in node.children:
        if child.type == "string_start":
            return "f" in _text(child).lower()
    return _text(node)[:1].lower() == "f"


def _unwrap(node: TSNode) -> tuple[TSNode | None, list[TSNode]]:
    """Split a (possibly decorated) definition into (definition, decorators)."""
    if node.type != "decorated_definition":
        return node, []
    decorators = [c for c in node.named_children if c.type == "decorator"]
    return node.child_by_field_name("definition"), decorators


# ---------------------------------------------------------------------------
# Literal bindings
# ---------------------------------------------------------------------------


def _binding_target(node: TSNode, *, climb_calls: bool = False) -> str | None:
    """Return the identifier a literal is bound to or compared against."""
    parent = node.parent
    if parent is None:
        return None
    if parent.type == "assignment" and _same(parent.child_by_field_name("right"), node):
        left = parent.child_by_field_name("left")
        if left is not None and left.type in ("identifier", "attribute"):
            return _compact(_text(left))
        return None
    if parent.type == "keyword_argument" and _same(parent.child_by_field_name("value"), node):
        return _text(parent.child_by_field_name("name")) or None
    if parent.type == "pair" and _same(parent.child_by_field_name("value"), node):
        key = parent.child_by_field_name("key")
        if key is None:
            return None
        return _string_value(key) if key.type == "string" else _compact(_text(key))
    if parent.type == "comparison_operator":
        others = [c for c in parent.named_children if not _same(c, node)]
        return _compact(_text(others[0])) if others else None
    if climb_calls and parent.type == "argument_list":
        call = parent.parent
        if call is not None and call.type == "call":
            return _binding_target(call, climb_calls=True)
    return None


def _literal_tokens(root: TSNode, *, skip_scopes: bool) -> list[LiteralToken]:
    tokens: list[LiteralToken] = []
    for node in _walk(root, skip_scopes=skip_scopes):
        kind = node.type
        if kind == "string":
            parent = node.parent
            # Docstrings and bare string statements carry no binding.
            if parent is not None and parent.type == "expression_statement":
                continue
            tokens.append(
                LiteralToken(
                    kind="string",
                    value=_string_value(node),
                    line=_line(node),
                    target=_binding_target(node),
                    formatted=_is_formatted(node),
                )
            )
        elif kind == "integer":
            parent = node.parent
            if parent is not None and parent.type in _COLLECTION_TYPES:
                continue
            target = _binding_target(node, climb_calls=True)
            if target is not None:
                tokens.append(
                    LiteralToken(
                        kind="number",
                        value=_text(node).replace("_", ""),
                        line=_line(node),
                        target=target,
                    )
                )
        elif kind in _COLLECTION_TYPES:
            items = [c for c in node.named_children if c.type != "comment"]
            if items and all(c.type == "integer" for c in items):
                tokens.append(
                    LiteralToken(
                        kind="collection",
                        value=",".join(_text(c).replace("_", "") for c in items),
                        line=_line(node),
                        target=_binding_target(node, climb_calls=True),
                    )
                )
        elif kind == "augmented_assignment":
            operator = node.child_by_field_name("operator")
            tokens.append(
                LiteralToken(
                    kind="augmented",
                    value=f"{_text(operator)} {_squash(_text(node.child_by_field_name('right')))}",
                    line=_line(node),
                    target=_compact(_text(node.child_by_field_name("left"))) or None,
                )
            )
    return tokens


# ---------------------------------------------------------------------------
# Callable body analysis
# ---------------------------------------------------------------------------


def _call_site(node: TSNode) -> CallSite:
    target = _compact(_text(node.child_by_field_name("function")))
    args: list[str] = []
    keywords: list[tuple[str, str]] = []
    arguments = node.child_by_field_name("arguments")
    if arguments is not None and arguments.type == "argument_list":
        for arg in arguments.named_children:
            if arg.type == "comment":
                continue
            if arg.type == "keyword_argument":
                keywords.append(
                    (
                        _text(arg.child_by_field_name("name")),
                        _squash(_text(arg.child_by_field_name("value"))),
                    )
                )
            else:
                args.append(_squash(_text(arg)))
    parent = node.parent
    return CallSite(
        target=target,
        line=_line(node),
        args=tuple(args),
        keywords=tuple(keywords),
        awaited=parent is not None and parent.type == "await",
    )


def _max_depth(node: TSNode, depth: int = 0) -> int:
    best = depth
    for child in node.named_children:
        if child.type in _SCOPE_TYPES:
            continue
        if child.type in _BLOCK_TYPES:
            best = max(best, _max_depth(child, depth + 1))
        else:
            best = max(best, _max_depth(child, depth))
    return best


def _int_or_none(text: str) -> int | None:
    cleaned = text.replace("_", "")
    return int(cleaned) if cleaned.isdigit() else None


def _for_loop(node: TSNode) -> LoopMarker:
    right = node.child_by_field_name("right")
    bound: int | None = None
    bound_ref: str | None = None
    if right is not None and right.type == "call" and _text(
        right.child_by_field_name("function")
    ) == "range":
        arguments = right.child_by_field_name("arguments")
        values = [c for c in arguments.named_children] if arguments is not None else []
        if values:
            numbers = [_int_or_none(_text(v)) for v in values[:2]]
            if len(values) == 1:
                bound = numbers[0]
                if bound is None and values[0].type in ("identifier", "attribute"):
                    bound_ref = _compact(_text(values[0]))
            elif numbers[0] is not None and numbers[1] is not None:
                bound = max(0, numbers[1] - numbers[0])
            elif values[1].type in ("identifier", "attribute"):
                bound_ref = _compact(_text(values[1]))
    return LoopMarker(kind="for", line=_line(node), bound=bound, bound_ref=bound_ref)


def _while_loop(node: TSNode) -> LoopMarker:
    condition = node.child_by_field_name("condition")
    cond_text = _compact(_text(condition))
    if cond_text in ("True", "1"):
        return LoopMarker(kind="while", line=_line(node), infinite=True)
    bound: int | None = None
    bound_ref: str | None = None
    if condition is not None and condition.type == "comparison_operator":
        operands = condition.named_children
        operators = [c.type for c in condition.children if not c.is_named]
        if len(operands) == 2 and operators and operators[0] in ("<", "<="):
            limit = operands[1]
            value = _int_or_none(_text(limit))
            if value is not None:
                bound = value + 1 if operators[0] == "<=" else value
            elif limit.type in ("identifier", "attribute"):
                bound_ref = _compact(_text(limit))
    return LoopMarker(kind="while", line=_line(node), bound=bound, bound_ref=bound_ref)


def _is_log_statement(stmt: TSNode) -> bool:
    if stmt.type != "expression_statement" or not stmt.named_children:
        return False
    expr = stmt.named_children[0]
    if expr.type == "await" and expr.named_children:
        expr = expr.named_children[0]
    if expr.type != "call":
        return False
    return bool(_LOG_CALL_RE.match(_compact(_text(expr.child_by_field_name("function")))))


def _is_noop(stmt: TSNode) -> bool:
    if stmt.type == "pass_statement":
        return True
    return (
        stmt.type == "expression_statement"
        and len(stmt.named_children) == 1
        and stmt.named_children[0].type == "ellipsis"
    )


def _handler(node: TSNode) -> ErrorHandler:
    block: TSNode | None = None
    caught: list[str] = []
    for child in node.named_children:
        if child.type == "block":
            block = child
        elif child.type != "comment" and not caught:
            expr = child
            if expr.type == "as_pattern" and expr.named_children:
                expr = expr.named_children[0]
            if expr.type in ("tuple", "parenthesized_expression"):
                caught = [_compact(_text(c)) for c in expr.named_children if c.type != "comment"]
            else:
                caught = [_compact(_text(expr))]

    action = "handle"
    if block is not None:
        has_retry = has_raise = has_return = False
        for desc in _walk(block, skip_scopes=True):
            if desc.type == "continue_statement":
                has_retry = True
            elif desc.type == "raise_statement":
                has_raise = True
            elif desc.type == "return_statement":
                has_return = True
            elif desc.type == "call" and _compact(
                _text(desc.child_by_field_name("function"))
            ).endswith("sleep"):
                has_retry = True
        statements = [s for s in block.named_children if s.type != "comment"]
        if has_retry:
            action = "retry"
        elif has_raise:
            action = "rethrow"
        elif has_return:
            action = "fallback"
        elif all(_is_noop(s) for s in statements):
            action = "swallow"
        elif all(_is_log_statement(s) for s in statements):
            action = "log"
    return ErrorHandler(line=_line(node), caught=tuple(caught), action=action)


def _parameter_names(params: TSNode | None) -> tuple[str, ...]:
    if params is None:
        return ()
    names: list[str] = []
    for param in params.named_children:
        kind = param.type
        if kind == "identifier":
            names.append(_text(param))
        elif kind in ("default_parameter", "typed_default_parameter"):
            names.append(_text(param.child_by_field_name("name")))
        elif kind in ("typed_parameter", "list_splat_pattern", "dictionary_splat_pattern"):
            for child in _walk(param):
                if child.type == "identifier":
                    names.append(_text(child))
                    break
    return tuple(name for name in names if name)


def _build_callable(
    node: TSNode,
    decorators: list[TSNode],
    *,
    prefix: str,
    kind: str,
) -> Callable:
    name = _text(node.child_by_field_name("name"))
    body = node.child_by_field_name("body")
    params = node.child_by_field_name("parameters")

    calls: list[CallSite] = []
    loops: list[LoopMarker] = []
    handlers: list[ErrorHandler] = []
    identifiers: set[str] = set(_parameter_names(params))
    literals: list[LiteralToken] = []

    if body is not None:
        for desc in _walk(body):
            if desc.type == "call":
                calls.append(_call_site(desc))
            elif desc.type == "for_statement":
                loops.append(_for_loop(desc))
            elif desc.type == "while_statement":
                loops.append(_while_loop(desc))
            elif desc.type in ("except_clause", "except_group_clause"):
                handlers.append(_handler(desc))
            elif desc.type == "identifier":
                identifiers.add(_text(desc))
        literals.extend(_literal_tokens(body, skip_scopes=False))
        if params is not None:
            literals.extend(_literal_tokens(params, skip_scopes=False))

    decorator_calls: list[CallSite] = []
    for deco in decorators:
        expr = deco.named_children[0] if deco.named_children else None
        if expr is None:
            continue
        if expr.type != "call":
            decorator_calls.append(CallSite(target=_compact(_text(expr)), line=_line(deco)))
        for desc in [expr, *_walk(expr)]:
            if desc.type == "call":
                decorator_calls.append(_call_site(desc))
            elif desc.type == "identifier":
                identifiers.add(_text(desc))
        literals.extend(_literal_tokens(deco, skip_scopes=False))

    return Callable(
        name=name,
        qualname=f"{prefix}{name}",
        kind=kind,
        line_start=_line(node),
        line_end=node.end_point.row + 1,
        params=_parameter_names(params),
        max_nesting=_max_depth(body) if body is not None else 0,
        is_async=any(c.type == "async" for c in node.children),
        calls=tuple(calls),
        decorators=tuple(decorator_calls),
        loops=tuple(loops),
        handlers=tuple(handlers),
        literals=tuple(literals),
        identifiers=tuple(sorted(identifiers)),
    )


# ---------------------------------------------------------------------------
# Module-level extraction
# ---------------------------------------------------------------------------


def _import_edges(path: str, node: TSNode) -> list[DependencyEdge]:
    line = _line(node)
    edges: list[DependencyEdge] = []
    if node.type == "import_statement":
        for child in node.children_by_field_name("name"):
            if child.type == "aliased_import":
                edges.append(
                    DependencyEdge(
                        source=path,
                        target=_text(child.child_by_field_name("name")),
                        line=line,
                        alias=_text(child.child_by_field_name("alias")) or None,
                    )
                )
            else:
                edges.append(DependencyEdge(source=path, target=_text(child), line=line))
        return edges

    module = node.child_by_field_name("module_name")
    module_text = _compact(_text(module))
    level = len(module_text) - len(module_text.lstrip("."))
    target = module_text.lstrip(".")
    names = node.children_by_field_name("name")
    if not names:
        # ``from x import *``
        return [
            DependencyEdge(
                source=path, target=target, line=line, names=("*",), relative_level=level
            )
        ]
    for child in names:
        if child.type == "aliased_import":
            imported = _text(child.child_by_field_name("name"))
            alias = _text(child.child_by_field_name("alias")) or None
        else:
            imported, alias = _text(child), None
        edges.append(
            DependencyEdge(
                source=path,
                target=target,
                line=line,
                names=(imported,),
                alias=alias,
                relative_level=level,
            )
        )
    return edges


class _UnitBuilder:
    """Collects callables and module-scope facts while walking one module."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.callables: list[Callable] = []
        self.literals: list[LiteralToken] = []
        self.annotations: dict[str, str] = {}

    def visit_module(self, root: TSNode) -> None:
        for child in root.named_children:
            if child.type == "comment":
                self.annotations.update(parse_annotations(_text(child)))
                continue
            definition, decorators = _unwrap(child)
            if definition is None:
                continue
            if definition.type == "function_definition":
                self.callables.append(
                    _build_callable(definition, decorators, prefix="", kind="function")
                )
            elif definition.type == "class_definition":
                self.visit_class(definition, decorators, prefix="")
            else:
                self.literals.extend(_literal_tokens(child, skip_scopes=True))

    def visit_class(self, node: TSNode, decorators: list[TSNode], *, prefix: str) -> None:
        name = _text(node.child_by_field_name("name"))
        qualname = f"{prefix}{name}"
        body = node.child_by_field_name("body")
        members = [_unwrap(stmt) for stmt in body.named_children] if body is not None else []
        methods = [
            (defn, decos)
            for defn, decos in members
            if defn is not None and defn.type == "function_definition"
        ]

        for defn, decos in members:
            if defn is not None and defn.type == "class_definition":
                self.visit_class(defn, decos, prefix=f"{qualname}.")

        if not methods:
            # A class with no behaviour is a data-shape declaration.
            literals: list[LiteralToken] = []
            if body is not None:
                literals = _literal_tokens(body, skip_scopes=True)
            self.callables.append(
                Callable(
                    name=name,
                    qualname=qualname,
                    kind="data-shape",
                    line_start=_line(node),
                    line_end=node.end_point.row + 1,
                    decorators=tuple(
                        CallSite(target=_compact(_text(d.named_children[0])), line=_line(d))
                        for d in decorators
                        if d.named_children
                    ),
                    literals=tuple(literals),
                )
            )
            return

        if body is not None:
            self.literals.extend(_literal_tokens(body, skip_scopes=True))
        for defn, decos in methods:
            self.callables.append(
                _build_callable(defn, decos, prefix=f"{qualname}.", kind="method")
            )


def parse_python(path: str, content: bytes) -> SourceUnit:
    """Parse Python *content* into a SourceUnit whose location is *path*.

    Raises :class:`ParseFailure` for undecodable bytes or syntax errors.
    """
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as exc:
        line = content[: exc.start].count(b"\n") + 1
        msg = f"file is not valid UTF-8 ({exc.reason})"
        raise ParseFailure(path, msg, line=line) from exc

    parser = Parser(_PY_LANGUAGE)
    tree = parser.parse(content)
    root = tree.root_node

    if root.has_error:
        bad = _first_error(root) or root
        kind = "missing token" if bad.is_missing else "syntax error"
        raise ParseFailure(
            path,
            f"{kind} near {_squash(_text(bad))[:40]!r}",
            line=bad.start_point.row + 1,
            column=bad.start_point.column + 1,
        )

    builder = _UnitBuilder(path)
    builder.visit_module(root)

    imports: list[DependencyEdge] = []
    for node in _walk(root):
        if node.type in ("import_statement", "import_from_statement"):
            imports.extend(_import_edges(path, node))

    lines = text.splitlines()
    code_lines = sum(
        1 for raw in lines if raw.strip() and not raw.strip().startswith("#")
    )

    return SourceUnit(
        path=path,
        language="python",
        domain=builder.annotations.get("domain") or infer_domain(path),
        line_count=len(lines),
        code_line_count=code_lines,
        callables=tuple(builder.callables),
        imports=tuple(imports),
        literals=tuple(builder.literals),
        annotations=tuple(sorted(builder.annotations.items())),
        content_hash=hashlib.sha256(content).hexdigest(),
    )
