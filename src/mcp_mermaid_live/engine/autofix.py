"""
Automatic repair of common Mermaid mistakes.

fix() runs RULES once, in order; each rule sees the previous rule's output.
Every rule is a no-op on text that no longer contains its target, which makes
fix(fix(s).code).code == fix(s).code. The line rules also keep brackets
balanced and never create each other's targets: close-delimiters only adds
quotes and closers, trailing-node-syntax only removes balanced annotation
text after a closer, and quote-node-labels only quotes whole top-level labels.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from mcp_mermaid_live.models.diagnostic import DiagnosticKind

from . import sanity

log = logging.getLogger("mcp.mermaid.engine.autofix")

@dataclass(frozen=True)
class AppliedFix:
    rule: str
    line: int           # 1-based, in the text the rule received
    original: str
    fixed: str

@dataclass
class FixResult:
    code: str
    has_changes: bool
    fixes: List[AppliedFix] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "code": self.code,
            "has_changes": self.has_changes,
            "fixes": [asdict(f) for f in self.fixes],
        }

Applier = Callable[[str], Tuple[str, List[AppliedFix]]]

@dataclass(frozen=True)
class FixRule:
    name: str
    targets: Tuple[DiagnosticKind, ...]
    apply_with_report: Applier

    def __call__(self, source: str) -> str:
        return self.apply_with_report(source)[0]

# -------- per-line helper --------

def _per_line(
    name: str,
    source: str,
    fix_line: Callable[[str], str],
    *,
    flowchart_only: bool = True,
) -> Tuple[str, List[AppliedFix]]:
    if flowchart_only and not sanity.is_flowchart(source):
        return source, []
    lines = source.split("\n")
    applied: List[AppliedFix] = []
    for i, line in sanity.statement_lines(source):
        new = fix_line(line)
        if new != line:
            lines[i] = new
            applied.append(AppliedFix(rule=name, line=i + 1, original=line, fixed=new))
    if not applied:
        return source, []
    return "\n".join(lines), applied

# -------- rules --------

def _fix_header(source: str) -> Tuple[str, List[AppliedFix]]:
    header = sanity.read_header(source)
    if header is None or header.known:
        return source, []
    lines = source.split("\n")
    line = lines[header.index]
    if header.canonical is not None:
        start = line.index(header.token)
        keyword = header.canonical
        new = line[:start] + keyword + line[start + len(header.token):]
        lines[header.index] = new
        return "\n".join(lines), [AppliedFix("diagram-header", header.index + 1, line, new)]
    # no keyword at all: a bare list of links is a flowchart
    body = [l for l in lines[header.index:] if sanity.is_statement_line(l)]
    if not any(sanity.has_link(l) for l in body):
        return source, []
    lines.insert(header.index, "flowchart TD")
    return "\n".join(lines), [AppliedFix("diagram-header", header.index + 1, "", "flowchart TD")]

def _fix_arrow_line(line: str) -> str:
    spans = sanity.find_arrow_typos(line)
    for s in reversed(spans):
        line = line[: s.start] + s.replacement + line[s.end:]
    return line

def _stop_position(line: str, start: int, stops: str) -> int:
    """First closer in ``stops`` or link start after ``start`` at the same depth; end of line otherwise."""
    depth = 0
    in_quote = False
    for j in range(start, len(line)):
        ch = line[j]
        if ch == '"':
            in_quote = not in_quote
            continue
        if in_quote:
            continue
        if depth == 0 and (ch in stops or sanity.LINK_RE.match(line, j)):
            return j
        if ch in sanity.OPENERS:
            depth += 1
        elif ch in sanity.CLOSERS and depth > 0:
            depth -= 1
    return len(line.rstrip())

def _quote_stop(line: str, start: int, stops: str) -> int:
    # the rest of the line is inside the open quote, so no quote skipping here
    for j in range(start, len(line)):
        if line[j] in stops or sanity.LINK_RE.match(line, j):
            return j
    return len(line.rstrip())

def _insert(line: str, inserts: List[Tuple[int, str]]) -> str:
    # positions refer to ``line``; equal positions keep their list order
    out: List[str] = []
    prev = 0
    for pos, text in sorted(inserts, key=lambda t: t[0]):
        out.append(line[prev:pos])
        out.append(text)
        prev = pos
    out.append(line[prev:])
    return "".join(out)

def _place_closers(line: str) -> str:
    """One closer per unclosed opener, innermost first, placed against a single scan of ``line``."""
    pending = list(sanity.scan_delimiters(line).unclosed)
    inserts: List[Tuple[int, str]] = []
    while pending:
        opener, idx = pending.pop()
        stops = "".join(sanity.OPENERS[c] for c, _ in pending)
        pos = _stop_position(line, idx + 1, stops)
        inserts.append((pos, sanity.OPENERS[opener]))
        # a closer already at pos now belongs to the next opener out
        if pending and pos < len(line) and line[pos] == sanity.OPENERS[pending[-1][0]]:
            pending.pop()
    return _insert(line, inserts)

def _close_delimiters_line(line: str) -> str:
    scan = sanity.scan_delimiters(line)
    if scan.balanced:
        return line
    fixed = line
    if scan.open_quote is not None:
        stops = "".join(sanity.OPENERS[c] for c, _ in scan.unclosed)
        pos = _quote_stop(line, scan.open_quote + 1, stops)
        fixed = line[:pos] + '"' + line[pos:]
    fixed = _place_closers(fixed)
    if sanity.scan_delimiters(fixed).balanced:
        return fixed
    # close everything where the line ends; this always balances
    end = len(line.rstrip())
    tail = '"' if scan.open_quote is not None else ""
    tail += "".join(sanity.OPENERS[c] for c, _ in reversed(scan.unclosed))
    return line[:end] + tail + line[end:]

def _drop_trailing_line(line: str) -> str:
    # removing one annotation can expose the next, so repeat until none is left
    while True:
        found = sanity.find_trailing_syntax(line)
        if not found:
            return line
        for m in reversed(found):
            line = line[: m.start()] + m.group(1) + (m.group(3) or "") + line[m.end():]

def _quote_labels_line(line: str) -> str:
    for s in reversed(sanity.find_problem_labels(line)):
        content = line[s.start:s.end]
        line = line[: s.start] + sanity.safe_quote(content.strip()) + line[s.end:]
    return line

def _fix_link_style_line(line: str) -> str:
    m = sanity.LINK_STYLE_HEX_RE.match(line)
    if not m:
        return line
    return m.group(1) + ",stroke-opacity:1;"

def _close_subgraphs(source: str) -> Tuple[str, List[AppliedFix]]:
    if not sanity.is_flowchart(source):
        return source, []
    lines = source.split("\n")
    missing = sanity.unclosed_subgraphs(lines)
    if missing <= 0:
        return source, []
    # keep trailing blank lines after the inserted terminators
    cut = len(lines)
    while cut > 0 and not lines[cut - 1].strip():
        cut -= 1
    new_lines = lines[:cut] + ["end"] * missing + lines[cut:]
    applied = [AppliedFix("close-subgraphs", cut + k + 1, "", "end") for k in range(missing)]
    return "\n".join(new_lines), applied

def _link_style(source: str) -> Tuple[str, List[AppliedFix]]:
    lines = source.split("\n")
    applied: List[AppliedFix] = []
    for i, line in enumerate(lines):
        new = _fix_link_style_line(line)
        if new != line:
            lines[i] = new
            applied.append(AppliedFix("link-style-hex", i + 1, line, new))
    return ("\n".join(lines), applied) if applied else (source, [])

RULES: Tuple[FixRule, ...] = (
    FixRule("diagram-header", (DiagnosticKind.UNKNOWN_DIAGRAM_TYPE,), _fix_header),
    FixRule(
        "close-delimiters",
        (DiagnosticKind.UNTERMINATED_DELIMITER,),
        lambda s: _per_line("close-delimiters", s, _close_delimiters_line),
    ),
    FixRule(
        "arrow-syntax",
        (DiagnosticKind.ARROW_SYNTAX,),
        lambda s: _per_line("arrow-syntax", s, _fix_arrow_line),
    ),
    FixRule(
        "trailing-node-syntax",
        (DiagnosticKind.INVALID_TRAILING_SYNTAX,),
        lambda s: _per_line("trailing-node-syntax", s, _drop_trailing_line),
    ),
    FixRule(
        "quote-node-labels",
        (DiagnosticKind.UNQUOTED_SPECIAL_CHARS,),
        lambda s: _per_line("quote-node-labels", s, _quote_labels_line),
    ),
    FixRule("close-subgraphs", (DiagnosticKind.UNCLOSED_SUBGRAPH,), _close_subgraphs),
    FixRule("link-style-hex", (DiagnosticKind.LINK_STYLE_COLOR,), _link_style),
)

_BY_NAME: Dict[str, FixRule] = {r.name: r for r in RULES}

def get_rule(name: str) -> FixRule:
    try:
        return _BY_NAME[name]
    except KeyError:
        raise KeyError(f"Unknown fix rule: {name}") from None

def rules_for(kind: DiagnosticKind) -> List[FixRule]:
    return [r for r in RULES if kind in r.targets]

def fix(source: str, rules: Optional[Tuple[FixRule, ...]] = None) -> FixResult:
    """Run the rules once, in order. Unchanged input comes back verbatim."""
    code = source
    fixes: List[AppliedFix] = []
    for rule in rules if rules is not None else RULES:
        code, applied = rule.apply_with_report(code)
        fixes.extend(applied)
    changed = code != source
    if changed:
        log.info("autofix.applied", extra={"rules": sorted({f.rule for f in fixes}), "fix_count": len(fixes)})
    return FixResult(code=code if changed else source, has_changes=changed, fixes=fixes if changed else [])

# -------- analysis --------

@dataclass(frozen=True)
class Issue:
    rule: str
    kind: DiagnosticKind
    line: int
    original: str
    fixed: str

def analyze(source: str) -> List[Issue]:
    """What each rule would change if applied alone to ``source``; nothing is modified."""
    issues: List[Issue] = []
    for rule in RULES:
        _, applied = rule.apply_with_report(source)
        for a in applied:
            issues.append(Issue(rule=rule.name, kind=rule.targets[0], line=a.line, original=a.original, fixed=a.fixed))
    issues.sort(key=lambda i: (i.line, [r.name for r in RULES].index(i.rule)))
    return issues
