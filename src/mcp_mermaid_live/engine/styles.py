"""
Colour and visibility repairs for Mermaid style statements.

classDef and inline ``style`` lines are parsed into StyleRule values, checked
for WCAG text/fill contrast, and rewritten in place. Like autofix, every
transform here is pure text-to-text and returns the input verbatim when
nothing changes.
"""

from __future__ import annotations

import colorsys
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

from PIL import ImageColor

from . import sanity

log = logging.getLogger("mcp.mermaid.engine.styles")

RGB = Tuple[int, int, int]

AA = 4.5
AAA = 7.0

# defaults the renderer falls back to when a rule leaves them out
DEFAULT_FILL = "#ffffff"
DEFAULT_TEXT = "white"

# -------- colours --------

def parse_color(value: Optional[str]) -> Optional[RGB]:
    """Hex, rgb()/rgba(), hsl() or a CSS colour name; None for transparent or unknown values."""
    if not value:
        return None
    s = value.strip().lower()
    if not s or s == "transparent":
        return None
    try:
        rgb = ImageColor.getrgb(s)
    except ValueError:
        return None
    return rgb[0], rgb[1], rgb[2]

def to_hex(rgb: RGB) -> str:
    return "#" + "".join(f"{max(0, min(255, int(round(c)))):02x}" for c in rgb)

def relative_luminance(rgb: RGB) -> float:
    def channel(v: int) -> float:
        c = v / 255
        return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4

    r, g, b = (channel(v) for v in rgb)
    return 0.2126 * r + 0.7152 * g + 0.0722 * b

@dataclass(frozen=True)
class Contrast:
    ratio: float        # rounded to one decimal
    level: str          # "AAA" | "AA" | "FAIL"

def contrast_ratio(foreground: Optional[str], background: Optional[str]) -> Contrast:
    fg, bg = parse_color(foreground), parse_color(background)
    if fg is None or bg is None:
        return Contrast(1.0, "FAIL")
    l1, l2 = relative_luminance(fg), relative_luminance(bg)
    # graded on the rounded ratio so a reported 4.5 always passes
    ratio = round((max(l1, l2) + 0.05) / (min(l1, l2) + 0.05), 1)
    level = "AAA" if ratio >= AAA else "AA" if ratio >= AA else "FAIL"
    return Contrast(ratio, level)

def suggest_text_color(background: Optional[str]) -> str:
    """Black or white, whichever reads better on ``background``."""
    bg = parse_color(background)
    if bg is None:
        return "#000000"
    return "#000000" if relative_luminance(bg) > 0.179 else "#ffffff"

def _with_lightness(rgb: RGB, lightness: float) -> str:
    h, _, s = colorsys.rgb_to_hls(*(c / 255 for c in rgb))
    r, g, b = colorsys.hls_to_rgb(h, max(0.0, min(1.0, lightness / 100)), s)
    return to_hex((r * 255, g * 255, b * 255))

def _grade(ratio: float) -> int:
    return 2 if ratio >= AAA else 1 if ratio >= AA else 0

@dataclass(frozen=True)
class _Candidate:
    hex: str
    ratio: float
    delta: float        # lightness change, in percent
    lightness: float

def _rank(c: _Candidate) -> Tuple[int, float]:
    # best grade first, then the smallest change; below AA the highest ratio wins
    grade = _grade(c.ratio)
    return (-grade, c.delta if grade else -c.ratio)

def _optimal_lightness(color: str, against: str, darker: bool) -> _Candidate:
    """Shift ``color``'s lightness (hue and saturation kept) until it contrasts with ``against``."""
    rgb = parse_color(color)
    if rgb is None or parse_color(against) is None:
        return _Candidate(color, 1.0, 100.0, 0.0)
    original = colorsys.rgb_to_hls(*(c / 255 for c in rgb))[1] * 100
    direction = -1 if darker else 1

    coarse: List[_Candidate] = []
    for step in range(0, 101, 5):
        lightness = max(0.0, min(100.0, original + direction * step))
        candidate = _with_lightness(rgb, lightness)
        coarse.append(_Candidate(candidate, contrast_ratio(candidate, against).ratio, abs(lightness - original), lightness))
        if lightness in (0.0, 100.0):
            break
    best = min(coarse, key=_rank)

    if best.ratio >= AA:
        for fine in range(-4, 5):
            lightness = max(0.0, min(100.0, best.lightness + fine))
            candidate = _with_lightness(rgb, lightness)
            ratio = contrast_ratio(candidate, against).ratio
            delta = abs(lightness - original)
            if _grade(ratio) > _grade(best.ratio) or (_grade(ratio) == _grade(best.ratio) and delta < best.delta):
                best = _Candidate(candidate, ratio, delta, lightness)
    return best

@dataclass(frozen=True)
class ContrastFix:
    strategy: str               # "none" | "text" | "fill"
    new_color: Optional[str]
    reason: str
    ratio_before: float
    ratio_after: float

def smart_contrast_fix(fill: str, color: str) -> ContrastFix:
    """
    The least visible change that brings ``color`` on ``fill`` to AA.

    Both the text and the fill are tried with their hue kept, and the fill
    change is slightly penalised. Plain black or white text is the fallback.
    """
    current = contrast_ratio(color, fill)
    if current.level != "FAIL":
        return ContrastFix("none", None, "Contrast already meets WCAG AA", current.ratio, current.ratio)

    fill_rgb, text_rgb = parse_color(fill), parse_color(color)
    simple = suggest_text_color(fill)
    if fill_rgb is None or text_rgb is None:
        return ContrastFix("text", simple, "Could not parse colours, using plain text colour", current.ratio, 21.0)

    fill_dark = relative_luminance(fill_rgb) < 0.5
    text_dark = relative_luminance(text_rgb) < 0.5
    if fill_dark == text_dark:
        # both dark: lighten; both light: darken
        text_fix = _optimal_lightness(color, fill, darker=not text_dark)
        fill_fix = _optimal_lightness(fill, color, darker=not fill_dark)
    else:
        text_fix = _optimal_lightness(color, fill, darker=text_dark)
        fill_fix = _optimal_lightness(fill, color, darker=fill_dark)

    options: List[Tuple[float, ContrastFix]] = []
    if text_fix.ratio >= AA:
        plain = text_fix.hex in ("#ffffff", "#000000")
        options.append((
            text_fix.delta + (10 if plain else 0),
            ContrastFix("text", text_fix.hex, f"Adjusted text lightness by {round(text_fix.delta)}%",
                        current.ratio, text_fix.ratio),
        ))
    if fill_fix.ratio >= AA:
        options.append((
            fill_fix.delta * 1.2 + 5,
            ContrastFix("fill", fill_fix.hex, f"Adjusted fill lightness by {round(fill_fix.delta)}%",
                        current.ratio, fill_fix.ratio),
        ))
    name = "white" if simple == "#ffffff" else "black"
    options.append((50, ContrastFix("text", simple, f"Changed text to {name}", current.ratio,
                                    contrast_ratio(simple, fill).ratio)))
    return min(options, key=lambda o: o[0])[1]

# -------- style statements --------

CLASSDEF = "classDef"
INLINE = "inline"

_CLASSDEF_RE = re.compile(r"^(\s*classDef\s+([\w-]+)\s+)(.+?)(\s*;?\s*)$")
_STYLE_RE = re.compile(r"^(\s*style\s+([\w-]+)\s+)(.+?)(\s*;?\s*)$")

@dataclass
class StyleRule:
    id: str                     # class name or node id
    kind: str                   # CLASSDEF | INLINE
    line: int                   # 1-based
    props: Dict[str, str] = field(default_factory=dict)

    def get(self, name: str) -> Optional[str]:
        for key, value in self.props.items():
            if key.lower() == name:
                return value
        return None

    @property
    def fill(self) -> str:
        return self.get("fill") or DEFAULT_FILL

    @property
    def color(self) -> str:
        return self.get("color") or DEFAULT_TEXT

_PROP_SPLIT_RE = re.compile(r",(?![^()]*\))")

def _parse_props(text: str) -> Dict[str, str]:
    props: Dict[str, str] = {}
    for pair in _PROP_SPLIT_RE.split(text):
        key, sep, value = pair.partition(":")
        if sep and key.strip():
            props[key.strip()] = value.strip()
    return props

def _match_style(line: str) -> Tuple[Optional["re.Match[str]"], str]:
    m = _CLASSDEF_RE.match(line)
    if m:
        return m, CLASSDEF
    return _STYLE_RE.match(line), INLINE

def parse_styles(source: str) -> List[StyleRule]:
    rules: List[StyleRule] = []
    for i, line in enumerate((source or "").split("\n")):
        m, kind = _match_style(line)
        if m:
            rules.append(StyleRule(id=m.group(2), kind=kind, line=i + 1, props=_parse_props(m.group(3))))
    return rules

def _update_line(line: str, updates: Dict[str, str]) -> str:
    m, _ = _match_style(line)
    if not m:
        return line
    props = _parse_props(m.group(3))
    for name, value in updates.items():
        key = next((k for k in props if k.lower() == name), name)
        props[key] = value
    suffix = ";" if ";" in m.group(4) else ""
    return m.group(1) + ",".join(f"{k}:{v}" for k, v in props.items()) + suffix

@dataclass(frozen=True)
class StyleIssue:
    id: str
    kind: str
    line: int
    fill: str
    color: str
    ratio: float
    level: str
    suggested_color: str
    needs_fix: bool

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

def analyze_contrast(source: str) -> List[StyleIssue]:
    """One entry per classDef and inline style, with the text/fill contrast it produces."""
    issues: List[StyleIssue] = []
    for rule in parse_styles(source):
        contrast = contrast_ratio(rule.color, rule.fill)
        issues.append(StyleIssue(
            id=rule.id,
            kind=rule.kind,
            line=rule.line,
            fill=rule.fill,
            color=rule.color,
            ratio=contrast.ratio,
            level=contrast.level,
            suggested_color=suggest_text_color(rule.fill),
            # transparent or unknown colours are reported but left alone
            needs_fix=contrast.level == "FAIL"
            and parse_color(rule.fill) is not None
            and parse_color(rule.color) is not None,
        ))
    return issues

@dataclass(frozen=True)
class StyleFix:
    id: str
    kind: str
    line: int
    strategy: str
    old_color: str
    new_color: str
    reason: str

@dataclass
class StyleFixResult:
    code: str
    has_changes: bool
    fixes: List[StyleFix] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {"code": self.code, "has_changes": self.has_changes, "fixes": [asdict(f) for f in self.fixes]}

def _result(source: str, code: str, fixes: List[StyleFix]) -> StyleFixResult:
    changed = code != source
    return StyleFixResult(code=code if changed else source, has_changes=changed, fixes=fixes if changed else [])

def fix_contrast(source: str, *, smart: bool = True) -> StyleFixResult:
    """
    Repair every style whose text fails AA against its fill.

    smart=True keeps hues and may adjust either the text or the fill;
    smart=False only swaps the text to plain black or white.
    """
    lines = (source or "").split("\n")
    fixes: List[StyleFix] = []
    for issue in analyze_contrast(source):
        if not issue.needs_fix:
            continue
        if smart:
            change = smart_contrast_fix(issue.fill, issue.color)
            if change.strategy == "none" or change.new_color is None:
                continue
            strategy, new_color, reason = change.strategy, change.new_color, change.reason
        else:
            strategy, new_color = "text", issue.suggested_color
            reason = f"Changed text to {'white' if new_color == '#ffffff' else 'black'}"
        target = "fill" if strategy == "fill" else "color"
        old_color = issue.fill if strategy == "fill" else issue.color
        lines[issue.line - 1] = _update_line(lines[issue.line - 1], {target: new_color})
        fixes.append(StyleFix(issue.id, issue.kind, issue.line, strategy, old_color, new_color, reason))
    result = _result(source, "\n".join(lines), fixes)
    if result.has_changes:
        log.info("styles.contrast_fixed", extra={"fix_count": len(result.fixes), "smart": smart})
    return result

# -------- high contrast mode --------

HIGH_CONTRAST = {"text": "#ffffff", "bg": "#1a1a1a", "line": "#333333"}

_INIT_RE = re.compile(r"^\s*%%\{\s*init\s*:")
_DEFAULT_LINK_STYLE_RE = re.compile(r"^\s*linkStyle\s+default\b")
_DEFAULT_STYLE_RE = re.compile(r"^\s*(?:linkStyle|classDef)\s+default\b")

def _high_contrast_css(c: Dict[str, str]) -> str:
    return " ".join([
        f".edgeLabel {{ color: {c['text']} !important; opacity: 1 !important; }}",
        f".edgeLabel span, .edgeLabel div, .edgeLabel p {{ background-color: {c['bg']} !important; color: {c['text']} !important; }}",
        f".edgeLabel * {{ color: {c['text']} !important; }}",
        f"g.edgeLabels text {{ fill: {c['text']} !important; }}",
        f"g.edgeLabels rect {{ fill: {c['bg']} !important; opacity: 1 !important; stroke: {c['line']} !important; stroke-width: 1px !important; }}",
        f".label {{ color: {c['text']} !important; fill: {c['text']} !important; }}",
    ])

def high_contrast_directive() -> str:
    c = HIGH_CONTRAST
    config = {
        "theme": "base",
        "themeVariables": {
            "primaryTextColor": c["text"],
            "secondaryTextColor": c["text"],
            "tertiaryTextColor": c["text"],
            "textColor": c["text"],
            "edgeLabelBackground": c["bg"],
            "lineColor": c["line"],
            "mainBkg": "transparent",
            "background": "transparent",
        },
        "themeCSS": _high_contrast_css(c),
    }
    return "%%{init: " + json.dumps(config, separators=(",", ":")) + " }%%"

def _insert_before_trailing_blanks(lines: List[str], new: str) -> List[str]:
    cut = len(lines)
    while cut > 0 and not lines[cut - 1].strip():
        cut -= 1
    return lines[:cut] + [new] + lines[cut:]

def apply_high_contrast(source: str) -> StyleFixResult:
    """
    White text on dark edge labels with dark lines, via an init directive
    (theme variables plus themeCSS) and, for flowcharts, a default linkStyle.
    Earlier directives and default link styles are replaced.
    """
    if not (source or "").strip():
        return _result(source, source, [])
    lines = [l for l in source.split("\n") if not _INIT_RE.match(l) and not _DEFAULT_LINK_STYLE_RE.match(l)]
    # the directive goes right above the diagram keyword, below any front matter
    idx = sanity.header_index(lines)
    lines.insert(0 if idx is None else idx, high_contrast_directive())
    if sanity.is_flowchart("\n".join(lines)):
        lines = _insert_before_trailing_blanks(
            lines, f"linkStyle default stroke:{HIGH_CONTRAST['line']},stroke-width:1px,fill:none;"
        )
    return _result(source, "\n".join(lines), [])

def reset_visibility(source: str) -> StyleFixResult:
    """Drop init directives and default link/class styles."""
    lines = [l for l in (source or "").split("\n") if not _INIT_RE.match(l) and not _DEFAULT_STYLE_RE.match(l)]
    return _result(source, "\n".join(lines), [])

# -------- shapes --------

SPECIAL_SHAPES: Tuple[Tuple[str, str], ...] = (
    ("double_circle", "((("),
    ("circle", "(("),
    ("stadium", "(["),
    ("subroutine", "[["),
    ("cylindrical", "[("),
    ("hexagon", "{{"),
    ("trapezoid", "[/"),
    ("trapezoid_alt", "[\\"),
)

def detect_special_shapes(source: str) -> List[str]:
    """Names of the non-rectangular node shapes the source uses."""
    text = source or ""
    return [name for name, opener in SPECIAL_SHAPES if opener in text]
