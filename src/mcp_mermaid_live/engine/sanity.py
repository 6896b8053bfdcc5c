from __future__ import annotations

import difflib
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

def sanitize_mermaid(text: str) -> str:
    s = (text or "").strip()
    if s.startswith("```"):
        s = re.sub(r"^```[a-zA-Z0-9]*\s*", "", s)
        s = re.sub(r"\s*```$", "", s)
    return s.strip()

# -------- Diagram headers --------

DIAGRAM_TYPES: Tuple[str, ...] = (
    "flowchart", "flowchart-elk", "graph",
    "sequenceDiagram", "classDiagram", "classDiagram-v2",
    "stateDiagram", "stateDiagram-v2", "erDiagram",
    "journey", "gantt", "pie", "quadrantChart", "requirementDiagram",
    "gitGraph", "mindmap", "timeline", "zenuml", "kanban",
    "C4Context", "C4Container", "C4Component", "C4Dynamic", "C4Deployment",
    "sankey-beta", "xychart-beta", "block-beta", "packet-beta",
    "architecture-beta", "radar-beta",
)
FLOWCHART_TYPES = frozenset({"flowchart", "flowchart-elk", "graph"})

_CANONICAL: Dict[str, str] = {t.lower(): t for t in DIAGRAM_TYPES}

# short view names people type instead of the directive
_HEADER_ALIASES: Dict[str, str] = {
    "flow": "flowchart",
    "sequence": "sequenceDiagram",
    "sequencediagrams": "sequenceDiagram",
    "class": "classDiagram",
    "state": "stateDiagram-v2",
    "er": "erDiagram",
    "git": "gitGraph",
}

@dataclass(frozen=True)
class Header:
    index: int          # 0-based line index in the source
    token: str          # first word as typed
    canonical: Optional[str]

    @property
    def known(self) -> bool:
        return self.canonical is not None and self.canonical == self.token

def header_index(lines: List[str]) -> Optional[int]:
    """Index of the first line that should carry the diagram keyword."""
    i = 0
    n = len(lines)
    # YAML front matter
    while i < n and not lines[i].strip():
        i += 1
    if i < n and lines[i].strip() == "---":
        i += 1
        while i < n and lines[i].strip() != "---":
            i += 1
        i += 1
    while i < n:
        s = lines[i].strip()
        if s and not s.startswith("%%"):
            return i
        i += 1
    return None

def canonical_header(token: str, *, fuzzy: bool = True) -> Optional[str]:
    """Exact keyword, a case/alias correction, or a close typo match."""
    if token in DIAGRAM_TYPES:
        return token
    low = token.lower().rstrip(";:")
    if low in _CANONICAL:
        return _CANONICAL[low]
    if low in _HEADER_ALIASES:
        return _HEADER_ALIASES[low]
    if not fuzzy:
        return None
    close = difflib.get_close_matches(low, list(_CANONICAL), n=1, cutoff=0.8)
    return _CANONICAL[close[0]] if close else None

def read_header(source: str) -> Optional[Header]:
    lines = source.split("\n")
    idx = header_index(lines)
    if idx is None:
        return None
    line = lines[idx]
    token = line.strip().split()[0].rstrip(";")
    # a line holding links or node shapes is a statement, not a misspelt keyword
    statement = has_link(line) or any(c in line for c in "[({")
    return Header(index=idx, token=token, canonical=canonical_header(token, fuzzy=not statement))

def diagram_type(source: str) -> Optional[str]:
    """The declared diagram keyword when it is spelled correctly."""
    header = read_header(source)
    if header is None or not header.known:
        return None
    return header.canonical

def is_flowchart(source: str) -> bool:
    return diagram_type(source) in FLOWCHART_TYPES

# -------- Line classification --------

_SKIP_RE = re.compile(
    r"^\s*(?:%%|classDef\s|class\s|style\s|linkStyle\s|click\s|direction\s|end\s*;?\s*$|$)"
)

def is_statement_line(line: str) -> bool:
    """False for comments, styling directives and block terminators."""
    return not _SKIP_RE.match(line)

def is_subgraph_line(line: str) -> bool:
    return bool(re.match(r"^\s*subgraph\b", line))

def is_end_line(line: str) -> bool:
    return bool(re.match(r"^\s*end\s*;?\s*$", line))

# -------- Links --------

LINK_RE = re.compile(
    r"\s*(?:<?-+>|<?-{3,}|<?--(?=\s)|<?--[xo](?!\w)|<?=+>|={3,}|-\.+->?|~~~)"
)

def find_link(line: str, start: int = 0) -> Optional[int]:
    """Start index (including leading blanks) of the first link at or after start, outside quotes."""
    in_quote = False
    for j in range(start, len(line)):
        ch = line[j]
        if ch == '"':
            in_quote = not in_quote
            continue
        if in_quote:
            continue
        if LINK_RE.match(line, j):
            return j
    return None

def has_link(line: str) -> bool:
    return find_link(line) is not None

# -------- Delimiters --------

OPENERS: Dict[str, str] = {"[": "]", "(": ")", "{": "}"}
CLOSERS: Dict[str, str] = {v: k for k, v in OPENERS.items()}

@dataclass
class DelimiterScan:
    unclosed: List[Tuple[str, int]] = field(default_factory=list)
    open_quote: Optional[int] = None
    top_pairs: Dict[int, int] = field(default_factory=dict)    # outermost opener index -> closer index
    free: List[bool] = field(default_factory=list)

    @property
    def balanced(self) -> bool:
        return not self.unclosed and self.open_quote is None

def scan_delimiters(line: str) -> DelimiterScan:
    """
    Track brackets and double quotes on one line. Quoted text and |edge labels|
    are opaque; a closer that does not match the innermost opener is treated
    as label text.

    ``free`` marks each character that sits outside quotes, edge labels and
    brackets. Every finder below reads the line through this one scan.
    """
    stack: List[Tuple[str, int]] = []
    quote: Optional[int] = None
    in_pipe = False
    top_pairs: Dict[int, int] = {}
    free: List[bool] = []
    for i, ch in enumerate(line):
        if quote is not None:
            free.append(False)
            if ch == '"':
                quote = None
            continue
        if ch == '"':
            quote = i
            free.append(False)
            continue
        if ch == "|" and not stack:
            in_pipe = not in_pipe
            free.append(False)
            continue
        if in_pipe:
            free.append(False)
            continue
        if ch in OPENERS:
            stack.append((ch, i))
            free.append(False)
            continue
        if ch in CLOSERS and stack and stack[-1][0] == CLOSERS[ch]:
            _, opened = stack.pop()
            if not stack:
                top_pairs[opened] = i
            free.append(False)
            continue
        free.append(not stack)
    return DelimiterScan(unclosed=stack, open_quote=quote, top_pairs=top_pairs, free=free)

def free_mask(line: str) -> List[bool]:
    """True for characters outside quotes, edge labels and node labels."""
    return scan_delimiters(line).free

# -------- Label content --------

def is_fully_quoted(s: str) -> bool:
    t = s.strip()
    if len(t) < 2:
        return False
    for q in ('"', "'"):
        if t.startswith(q) and t.endswith(q):
            return t.count(q) == 2
    return False

def has_unquoted_parentheses(content: str) -> bool:
    if not content.strip() or is_fully_quoted(content):
        return False
    in_double = in_single = False
    prev = ""
    for ch in content:
        if ch == '"' and prev != "\\" and not in_single:
            in_double = not in_double
        elif ch == "'" and prev != "\\" and not in_double:
            in_single = not in_single
        elif ch in "()" and not in_double and not in_single:
            return True
        prev = ch
    return False

def has_problematic_content(content: str) -> bool:
    """Parentheses or stray double quotes in a label that is not already a string."""
    if not content.strip() or is_fully_quoted(content):
        return False
    return has_unquoted_parentheses(content) or '"' in content

def safe_quote(content: str) -> str:
    if is_fully_quoted(content):
        return content
    return '"' + content.replace('"', "&quot;") + '"'

# -------- Construct finders (shared by the classifier and the fixer) --------

# (pattern, replacement); only applied where free_mask() is True
ARROW_TYPOS: Tuple[Tuple["re.Pattern[str]", str], ...] = (
    (re.compile(r"(?<![-=.<>])->(?![->])"), "-->"),
    (re.compile(r"(?<![-=.<>])=>(?![=>])"), "==>"),
    (re.compile(r"[—–]+>|→"), "-->"),
)

@dataclass(frozen=True)
class Span:
    start: int
    end: int
    replacement: str = ""

def find_arrow_typos(line: str) -> List[Span]:
    mask = free_mask(line)
    spans: List[Span] = []
    for rx, repl in ARROW_TYPOS:
        for m in rx.finditer(line):
            if all(mask[m.start():m.end()]):
                spans.append(Span(m.start(), m.end(), repl))
    return sorted(spans, key=lambda s: s.start)

# annotation text: no blanks, colons, quotes, pipes or brackets, and never the start of a link
_ANNOTATION = r"(?:(?!-->|-\.->|==>|---|--)[^\s:\"|()\[\]{}])"

# closer, then ":text" that is not a ":::class" suffix, then an optional class
TRAILING_RE = re.compile(
    r"([\]\})])\s*(:(?!::)" + _ANNOTATION + r"*?(?:\([^()\[\]{}\"|]*\))?" + _ANNOTATION + r"*)"
    r"(\s*:::?\w+)?(?=\s|$|-->|-\.->|==>|---|--)"
)

def find_trailing_syntax(line: str) -> List["re.Match[str]"]:
    """``:annotation`` runs that follow the closer of a top-level node shape."""
    found: List["re.Match[str]"] = []
    end = -1
    for closer in sorted(scan_delimiters(line).top_pairs.values()):
        if closer < end:
            continue
        m = TRAILING_RE.match(line, closer)
        if m:
            found.append(m)
            end = m.end()
    return found

# multi-character shapes first so "((" is never read as two "(" labels
_LABEL_SHAPES: Tuple[Tuple[str, str], ...] = (
    ("(((", ")))"), ("([", "])"), ("[[", "]]"), ("[(", ")]"), ("((", "))"),
    ("{{", "}}"), ("[/", "/]"), ("[\\", "\\]"), ("[/", "\\]"), ("[\\", "/]"),
)
_NODE_ID_TAIL_RE = re.compile(r"\w\s*$")

def _label_span(line: str, opener: int, closer: int) -> Span:
    for o, c in _LABEL_SHAPES:
        start, end = opener + len(o), closer + 1 - len(c)
        if start <= end and line.startswith(o, opener) and line.startswith(c, end):
            return Span(start, end)
    return Span(opener + 1, closer)

def find_node_labels(line: str) -> List[Span]:
    """Content spans of node labels (and subgraph id[title] titles), left to right."""
    labels: List[Span] = []
    for opener, closer in sorted(scan_delimiters(line).top_pairs.items()):
        if _NODE_ID_TAIL_RE.search(line[:opener]):
            labels.append(_label_span(line, opener, closer))
    return labels

def find_problem_labels(line: str) -> List[Span]:
    return [s for s in find_node_labels(line) if has_problematic_content(line[s.start:s.end])]

LINK_STYLE_HEX_RE = re.compile(r"^(\s*linkStyle\s.*?#[0-9a-fA-F]{3,8})\s*;?\s*$")

def unclosed_subgraphs(lines: List[str]) -> int:
    depth = 0
    for line in lines:
        if is_subgraph_line(line):
            depth += 1
        elif is_end_line(line) and depth > 0:
            depth -= 1
    return depth

def first_unclosed_subgraph(lines: List[str]) -> Optional[int]:
    """0-based index of the outermost subgraph that is never closed."""
    stack: List[int] = []
    for i, line in enumerate(lines):
        if is_subgraph_line(line):
            stack.append(i)
        elif is_end_line(line) and stack:
            stack.pop()
    return stack[0] if stack else None

def statement_lines(source: str) -> List[Tuple[int, str]]:
    """(index, line) pairs after the header that carry diagram statements."""
    lines = source.split("\n")
    start = header_index(lines)
    start = 0 if start is None else start + 1
    return [(i, lines[i]) for i in range(start, len(lines)) if is_statement_line(lines[i])]
