"""
Turns a raw rendering-engine failure into a structured Diagnostic.

classify() matches the engine message against a table of known patterns and
confirms the match against the diagram source. It never raises: anything it
cannot place becomes an UNRECOGNIZED diagnostic that still carries the raw
message and whatever position the engine reported.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from mcp_mermaid_live.models.diagnostic import Diagnostic, DiagnosticKind

from . import sanity

log = logging.getLogger("mcp.mermaid.engine.classifier")

Detector = Callable[[str], Optional[int]]

_RENDER_ID_RE = re.compile(r"mermaid-\d+-\d+")
_LINE_COL_RE = re.compile(r"\bline\s*(\d+)(?:\s*[,:]\s*(?:column|col)\s*(\d+))?", re.IGNORECASE)
_FRAGMENT_RE = re.compile(r"^\.\.\.(.{4,})$", re.MULTILINE)
_CARET_RE = re.compile(r"^(-*)\^\s*$", re.MULTILINE)
_PARSE_ERROR_RE = re.compile(r"parse error|lexical error|syntax error|Expecting", re.IGNORECASE)

# -------- source detectors (1-based line or None) --------

def _flowchart_statements(source: str) -> List[Tuple[int, str]]:
    if not sanity.is_flowchart(source):
        return []
    return sanity.statement_lines(source)

def detect_unknown_type(source: str) -> Optional[int]:
    header = sanity.read_header(source)
    if header is None or header.known:
        return None
    return header.index + 1

def detect_unterminated(source: str) -> Optional[int]:
    for i, line in _flowchart_statements(source):
        if not sanity.scan_delimiters(line).balanced:
            return i + 1
    return None

def detect_arrow_typo(source: str) -> Optional[int]:
    for i, line in _flowchart_statements(source):
        if sanity.find_arrow_typos(line):
            return i + 1
    return None

def detect_trailing_syntax(source: str) -> Optional[int]:
    for i, line in _flowchart_statements(source):
        if sanity.find_trailing_syntax(line):
            return i + 1
    return None

def detect_special_chars(source: str) -> Optional[int]:
    for i, line in _flowchart_statements(source):
        if sanity.find_problem_labels(line):
            return i + 1
    return None

def detect_unclosed_subgraph(source: str) -> Optional[int]:
    if not sanity.is_flowchart(source):
        return None
    idx = sanity.first_unclosed_subgraph(source.split("\n"))
    return None if idx is None else idx + 1

def detect_link_style_hex(source: str) -> Optional[int]:
    for i, line in enumerate(source.split("\n")):
        if sanity.LINK_STYLE_HEX_RE.match(line):
            return i + 1
    return None

_DECLARED_ID_RE = re.compile(r"\b([A-Za-z_]\w*(?:-\w+)*)\s*(?=[\[\(\{>]|-->|---|-\.|==|~~~|&|:::|\s*$|\s+-)")
_REFERENCE_RE = re.compile(r"^\s*(style|class|click)\s+([\w,-]+)")

def detect_undeclared_reference(source: str) -> Optional[int]:
    statements = _flowchart_statements(source)
    if not statements:
        return None
    declared = set()
    for _, line in statements:
        if sanity.is_subgraph_line(line):
            parts = line.split()
            if len(parts) > 1:
                declared.add(re.split(r"[\[\s]", parts[1])[0])
            continue
        declared.update(_DECLARED_ID_RE.findall(line))
    for i, line in enumerate(source.split("\n")):
        m = _REFERENCE_RE.match(line)
        if not m:
            continue
        for ref in m.group(2).split(","):
            if ref and ref not in declared:
                return i + 1
    return None

def _header_fixable(source: str) -> bool:
    header = sanity.read_header(source)
    if header is None:
        return False
    if header.canonical is not None:
        return True
    lines = source.split("\n")
    return any(sanity.has_link(line) for line in lines[header.index:] if sanity.is_statement_line(line))

def _always(_: str) -> bool:
    return True

def _never(_: str) -> bool:
    return False

# -------- pattern table --------

@dataclass(frozen=True)
class ErrorPattern:
    kind: DiagnosticKind
    message: Optional["re.Pattern[str]"]
    detect: Detector
    title: str
    explanation: str
    suggestion: str
    fix_rules: Tuple[str, ...] = ()
    fixable: Callable[[str], bool] = _always
    message_alone: bool = False   # message evidence suffices without a source hit

PATTERNS: Tuple[ErrorPattern, ...] = (
    ErrorPattern(
        kind=DiagnosticKind.UNKNOWN_DIAGRAM_TYPE,
        message=re.compile(r"No diagram type detected|UnknownDiagramError|diagram type", re.IGNORECASE),
        detect=detect_unknown_type,
        title="Unknown diagram type",
        explanation="The first line must name a diagram type such as 'flowchart TD' or 'sequenceDiagram'.",
        suggestion="Fix the spelling of the diagram keyword on the first line, or add 'flowchart TD' above the diagram.",
        fix_rules=("diagram-header",),
        fixable=_header_fixable,
        message_alone=True,
    ),
    ErrorPattern(
        kind=DiagnosticKind.UNTERMINATED_DELIMITER,
        message=re.compile(r"Unterminated|got 'EOF'|got 'NEWLINE'|Expecting .*'(?:SQE|PE|DIAMOND_STOP|STR)'", re.IGNORECASE),
        detect=detect_unterminated,
        title="Unclosed bracket or quote",
        explanation="A node label opens a bracket or a quote that is never closed on the same line.",
        suggestion="Close the bracket or quote; auto-fix inserts the missing closer before the next link.",
        fix_rules=("close-delimiters",),
    ),
    ErrorPattern(
        kind=DiagnosticKind.ARROW_SYNTAX,
        message=re.compile(r"Expecting .*'(?:ARROW|LINK|START_LINK|ARROW_POINT)'|got 'TAGEND'|got 'MINUS'", re.IGNORECASE),
        detect=detect_arrow_typo,
        title="Invalid arrow",
        explanation="Flowchart links are written '-->', '---' or '==>'; '->' and '=>' are not valid links.",
        suggestion="Replace '->' with '-->' and '=>' with '==>'.",
        fix_rules=("arrow-syntax",),
    ),
    ErrorPattern(
        kind=DiagnosticKind.INVALID_TRAILING_SYNTAX,
        message=re.compile(r"got 'COLON'|Expecting .*'COLON'", re.IGNORECASE),
        detect=detect_trailing_syntax,
        title="Text after a node",
        explanation="Text after a node's closing bracket introduced by ':' is not valid; only ':::className' may follow a node.",
        suggestion="Move the annotation into the node label or remove it.",
        fix_rules=("trailing-node-syntax",),
    ),
    ErrorPattern(
        kind=DiagnosticKind.UNQUOTED_SPECIAL_CHARS,
        message=re.compile(r"Expecting .*'(?:SQE|PE|PS|DOUBLECIRCLEEND|STADIUMEND|STR)'|got '(?:PS|STR)'", re.IGNORECASE),
        detect=detect_special_chars,
        title="Special characters in a node label",
        explanation="Parentheses or quotes inside a node label are read as shape syntax unless the label is quoted.",
        suggestion='Wrap the label in double quotes, e.g. A["Text (detail)"].',
        fix_rules=("quote-node-labels",),
    ),
    ErrorPattern(
        kind=DiagnosticKind.UNCLOSED_SUBGRAPH,
        message=re.compile(r"Expecting .*'end'|subgraph", re.IGNORECASE),
        detect=detect_unclosed_subgraph,
        title="Subgraph without 'end'",
        explanation="Every 'subgraph' block needs a matching 'end' line.",
        suggestion="Add an 'end' line after the last statement of each open subgraph.",
        fix_rules=("close-subgraphs",),
    ),
    ErrorPattern(
        kind=DiagnosticKind.LINK_STYLE_COLOR,
        message=re.compile(r"linkStyle|Expecting .*'(?:STYLE_SEPARATOR|COMMA)'", re.IGNORECASE),
        detect=detect_link_style_hex,
        title="linkStyle ends with a colour",
        explanation="A 'linkStyle' statement that ends with a hex colour is not terminated correctly.",
        suggestion="Terminate the style list, e.g. 'stroke:#f00,stroke-opacity:1;'.",
        fix_rules=("link-style-hex",),
    ),
    ErrorPattern(
        kind=DiagnosticKind.UNDECLARED_REFERENCE,
        message=re.compile(r"undefined|not defined|does not exist|unknown (?:node|vertex|id)", re.IGNORECASE),
        detect=detect_undeclared_reference,
        title="Reference to an undeclared node",
        explanation="A 'style', 'class' or 'click' statement names a node that is never declared.",
        suggestion="Declare the node before styling it, or correct the id.",
        fixable=_never,
    ),
)

# -------- positional data --------

def clean_message(message: str) -> str:
    return _RENDER_ID_RE.sub("diagram", message).strip()

def _raw_text(raw_error: object) -> str:
    if raw_error is None:
        return ""
    if isinstance(raw_error, BaseException):
        msg = getattr(raw_error, "message", None) or str(raw_error)
        return msg or raw_error.__class__.__name__
    return str(raw_error)

def _fragment_line(message: str, source: str) -> Optional[int]:
    m = _FRAGMENT_RE.search(message)
    if not m:
        return None
    fragment = m.group(1).strip()
    lines = source.split("\n")
    # the fragment flattens newlines; its tail belongs to the failing line
    for size in (15, 10, 6, 4):
        needle = fragment[-size:] if len(fragment) >= size else fragment
        for i, line in enumerate(lines):
            if needle and needle in line:
                return i + 1
    return None

def _caret_column(message: str, source: str, line: Optional[int]) -> Optional[int]:
    frag = _FRAGMENT_RE.search(message)
    caret = _CARET_RE.search(message)
    lines = source.split("\n")
    if not frag or not caret or line is None or not (1 <= line <= len(lines)):
        return None
    pos = len(caret.group(1)) - 3
    before = frag.group(1)[: max(pos, 0)]
    text = lines[line - 1]
    for cut in range(len(before)):
        tail = before[cut:]
        if len(tail) < 2:
            break
        idx = text.find(tail)
        if idx >= 0:
            return idx + len(tail) + 1
    return None

def _position(raw_error: object, message: str, source: str) -> Tuple[Optional[int], Optional[int]]:
    line = getattr(raw_error, "line", None)
    column = getattr(raw_error, "column", None)
    if line is None:
        m = _LINE_COL_RE.search(message)
        if m:
            line = int(m.group(1))
            column = int(m.group(2)) if m.group(2) else column
    if line is None:
        line = _fragment_line(message, source)
    if column is None:
        column = _caret_column(message, source, line)
    nlines = source.count("\n") + 1
    if not isinstance(line, int) or not (1 <= line <= nlines):
        line = None
    if not isinstance(column, int) or column < 1:
        column = None
    return line, column

def _excerpt(source: str, line: Optional[int]) -> Optional[str]:
    if line is None:
        return None
    lines = source.split("\n")
    return lines[line - 1] if 1 <= line <= len(lines) else None

def _safe_detect(pattern: ErrorPattern, source: str) -> Optional[int]:
    try:
        return pattern.detect(source)
    except Exception:
        log.exception("classifier.detect_failed", extra={"kind": pattern.kind.value})
        return None

def _safe_fixable(pattern: ErrorPattern, source: str) -> bool:
    try:
        return bool(pattern.fixable(source))
    except Exception:
        log.exception("classifier.fixable_failed", extra={"kind": pattern.kind.value})
        return False

def _build(pattern: ErrorPattern, raw: str, source: str, line: Optional[int], column: Optional[int]) -> Diagnostic:
    fixable = _safe_fixable(pattern, source)
    return Diagnostic(
        kind=pattern.kind,
        raw_message=raw,
        line=line,
        column=column,
        title=pattern.title,
        human_message=pattern.explanation,
        suggestion=pattern.suggestion,
        auto_fixable=fixable,
        fix_rules=list(pattern.fix_rules) if fixable else [],
        excerpt=_excerpt(source, line),
    )

def _match(message: str, source: str) -> Optional[Tuple[ErrorPattern, Optional[int]]]:
    # message and source agree
    for p in PATTERNS:
        if p.message is not None and p.message.search(message):
            hit = _safe_detect(p, source)
            if hit is not None:
                return p, hit
    # a generic parse error, explained by the source alone
    if not message or _PARSE_ERROR_RE.search(message):
        for p in PATTERNS:
            hit = _safe_detect(p, source)
            if hit is not None:
                return p, hit
    # message alone
    for p in PATTERNS:
        if p.message_alone and p.message is not None and p.message.search(message):
            return p, None
    return None

def classify(raw_error: object, source: str) -> Diagnostic:
    """
    Classify one engine failure. raw_error may be an exception (optionally
    carrying line/column), a message string, or None.
    """
    source = source if isinstance(source, str) else ""
    raw = _raw_text(raw_error)
    message = clean_message(raw)
    line, column = _position(raw_error, message, source)

    try:
        found = _match(message, source)
    except Exception:
        log.exception("classifier.match_failed")
        found = None

    if found is not None:
        pattern, hit = found
        if line is None:
            line = hit
        diag = _build(pattern, raw, source, line, column)
    else:
        first = message.split("\n", 1)[0] if message else "The diagram could not be rendered."
        diag = Diagnostic(
            kind=DiagnosticKind.UNRECOGNIZED,
            raw_message=raw,
            line=line,
            column=column,
            title="Render error",
            human_message=first,
            suggestion=None,
            auto_fixable=False,
            excerpt=_excerpt(source, line),
        )

    log.debug(
        "classifier.result",
        extra={"kind": diag.kind.value, "line": diag.line, "column": diag.column, "auto_fixable": diag.auto_fixable},
    )
    return diag
