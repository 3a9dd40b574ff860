from linestrata.line_classifier import (
    HEURISTIC_CLASSIFIER,
    LexicalLineClassifier,
    classify_lines,
    get_line_classifier,
)
from linestrata.models import LineType

CODE, COMMENT, BLANK = LineType.CODE, LineType.COMMENT, LineType.BLANK


def test_python_comments_and_docstrings():
    lines = [
        '"""Module doc.',
        "",
        'more doc"""',
        'x = "# not a comment"',
        "# real comment",
        "y = 1  # trailing",
        "def f():",
        '    """Return nothing."""',
        '    s = """',
        "inside a string",
        '"""',
    ]
    assert classify_lines("python", lines) == [
        COMMENT,
        BLANK,
        COMMENT,
        CODE,
        COMMENT,
        CODE,
        CODE,
        COMMENT,
        CODE,
        CODE,
        CODE,
    ]


def test_c_block_comments():
    lines = [
        "int a; /* start",
        "   still comment",
        "",
        "*/ int b;",
        "/* one */",
        "// line",
        'char *s = "/* no */";',
        "int c;",
    ]
    assert classify_lines("c", lines) == [CODE, COMMENT, BLANK, CODE, COMMENT, COMMENT, CODE, CODE]


def test_rust_nested_comments():
    lines = [
        "/* outer /* inner */ still outer",
        "more */",
        "fn f<'a>(x: &'a str) {}",
        "// after lifetimes",
    ]
    assert classify_lines("rust", lines) == [COMMENT, COMMENT, CODE, COMMENT]


def test_unterminated_single_line_string_resets():
    lines = ['s = "unterminated', "# comment"]
    assert classify_lines("python", lines) == [CODE, COMMENT]


def test_other_comment_styles():
    assert classify_lines("sql", ["-- note", "SELECT 1; -- x"]) == [COMMENT, CODE]
    assert classify_lines("html", ["<!-- c -->", "<p>hi</p>"]) == [COMMENT, CODE]
    assert classify_lines("lua", ["--[[ block", "]]", "-- line"]) == [COMMENT, COMMENT, COMMENT]


def test_heuristic_for_unknown_languages():
    assert get_line_classifier("unknown") is HEURISTIC_CLASSIFIER
    assert classify_lines("unknown", ["# a", "  // b", "x /* y */", ""]) == [
        COMMENT,
        COMMENT,
        CODE,
        BLANK,
    ]


def test_known_languages_use_lexical_classifier():
    assert isinstance(get_line_classifier("python"), LexicalLineClassifier)
    assert isinstance(get_line_classifier("go"), LexicalLineClassifier)


def test_one_result_per_line():
    lines = ["x"] * 50 + [""] * 5
    assert len(classify_lines("javascript", lines)) == 55
