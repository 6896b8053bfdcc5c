import pytest

from mcp_mermaid_live.engine.autofix import RULES, rules_for
from mcp_mermaid_live.engine.classifier import PATTERNS, classify, clean_message
from mcp_mermaid_live.errors import RenderEngineError
from mcp_mermaid_live.models.diagnostic import DiagnosticKind

UNTERMINATED_MSG = (
    "Parse error on line 2:\n"
    "...flowchart LR A[Open-->B\n"
    "-----------------------^\n"
    "Expecting 'SQE', 'DOUBLECIRCLEEND', 'PE', '-)', 'STADIUMEND', got 'EOF'"
)


def test_unterminated_bracket():
    diag = classify(RenderEngineError(UNTERMINATED_MSG, line=2), "flowchart LR\nA[Open-->B")
    assert diag.kind is DiagnosticKind.UNTERMINATED_DELIMITER
    assert diag.auto_fixable is True
    assert diag.fix_rules == ["close-delimiters"]
    assert diag.line == 2
    assert diag.excerpt == "A[Open-->B"
    assert diag.raw_message == UNTERMINATED_MSG
    assert diag.human_message != diag.raw_message
    assert diag.suggestion


@pytest.mark.parametrize(
    "message,source,kind,line",
    [
        (
            "No diagram type detected matching given configuration for text: flowchar LR",
            "flowchar LR\nA-->B",
            DiagnosticKind.UNKNOWN_DIAGRAM_TYPE,
            1,
        ),
        (
            "Parse error on line 2:\n...\nExpecting 'AMP', 'COLON', 'LINK', got 'ARROW_POINT'",
            "flowchart LR\nA -> B",
            DiagnosticKind.ARROW_SYNTAX,
            2,
        ),
        (
            "Parse error on line 2:\nExpecting 'SEMI', 'NEWLINE', got 'COLON'",
            "flowchart LR\nA[Text]:(note) --> B",
            DiagnosticKind.INVALID_TRAILING_SYNTAX,
            2,
        ),
        (
            "Parse error on line 2:\nExpecting 'SQE', 'DOUBLECIRCLEEND', 'PE', got 'PS'",
            "flowchart TD\nA[Call foo(x)] --> B",
            DiagnosticKind.UNQUOTED_SPECIAL_CHARS,
            2,
        ),
        (
            "Parse error on line 3:\nExpecting 'SEMI', 'NEWLINE', 'end', got 'EOF'",
            "flowchart TD\nsubgraph one\nA-->B",
            DiagnosticKind.UNCLOSED_SUBGRAPH,
            3,
        ),
        (
            "Parse error on line 3:\nExpecting 'SEMI', got 'EOF'",
            "flowchart LR\nA-->B\nlinkStyle 0 stroke:#ff0000",
            DiagnosticKind.LINK_STYLE_COLOR,
            3,
        ),
    ],
)
def test_known_patterns(message, source, kind, line):
    diag = classify(message, source)
    assert diag.kind is kind
    assert diag.line == line
    assert diag.auto_fixable is True
    assert diag.fix_rules == [r.name for r in rules_for(kind)]
    assert diag.recognized


def test_undeclared_reference_is_not_fixable():
    diag = classify(
        "Cannot read properties of undefined (reading 'id')",
        "flowchart LR\nA-->B\nstyle C fill:#f9f",
    )
    assert diag.kind is DiagnosticKind.UNDECLARED_REFERENCE
    assert diag.line == 3
    assert diag.auto_fixable is False
    assert diag.fix_rules == []


def test_unknown_type_without_a_close_keyword():
    diag = classify("No diagram type detected", "hello world\nfoo bar")
    assert diag.kind is DiagnosticKind.UNKNOWN_DIAGRAM_TYPE
    assert diag.auto_fixable is False


def test_source_evidence_alone_for_generic_parse_errors():
    diag = classify("Parse error", "flowchart LR\nA[Open-->B")
    assert diag.kind is DiagnosticKind.UNTERMINATED_DELIMITER


def test_missing_error_still_classifies_from_source():
    diag = classify(None, "flowchart LR\nA[Open-->B")
    assert diag.kind is DiagnosticKind.UNTERMINATED_DELIMITER
    assert diag.line == 2


def test_unrecognized_keeps_raw_message_and_position():
    diag = classify("boom on line 2, column 5", "graph TD\nA-->B")
    assert diag.kind is DiagnosticKind.UNRECOGNIZED
    assert diag.auto_fixable is False
    assert diag.suggestion is None
    assert diag.raw_message == "boom on line 2, column 5"
    assert (diag.line, diag.column) == (2, 5)
    assert not diag.recognized


@pytest.mark.parametrize("raw", [None, "", 42, ValueError(), object()])
def test_never_raises(raw):
    diag = classify(raw, "")
    assert diag.kind is DiagnosticKind.UNRECOGNIZED
    assert diag.line is None


def test_out_of_range_positions_are_dropped():
    diag = classify("Error on line 99", "graph TD\nA-->B")
    assert diag.line is None
    assert diag.excerpt is None


def test_position_from_exception_attributes():
    diag = classify(RenderEngineError("weird failure", line=2, column=4), "graph TD\nA-->B")
    assert (diag.line, diag.column) == (2, 4)
    assert diag.excerpt == "A-->B"


def test_position_from_excerpt_fragment():
    src = "flowchart TD\nA --> B\nB[Second (x)] --> C"
    diag = classify("Parse error:\n...B[Second (x)] --> C\nExpecting 'SQE', got 'PS'", src)
    assert diag.kind is DiagnosticKind.UNQUOTED_SPECIAL_CHARS
    assert diag.line == 3


def test_render_ids_are_scrubbed_from_human_text():
    diag = classify("Error rendering mermaid-1700000000-42", "graph TD\nA-->B")
    assert "mermaid-1700000000-42" in diag.raw_message
    assert "mermaid-1700000000-42" not in diag.human_message
    assert clean_message("id mermaid-1-2 failed") == "id diagram failed"


def test_fix_rule_names_match_the_registry():
    names = {r.name for r in RULES}
    for pattern in PATTERNS:
        assert set(pattern.fix_rules) <= names
        assert list(pattern.fix_rules) == [r.name for r in rules_for(pattern.kind)]
