from edgeinfer.rag.context import (
    CONTEXT_SEPARATOR,
    apply_context_to_template,
    assemble_context,
    build_local_prompt,
    format_source,
    max_context_chars,
    truncate_context,
)


def test_budget_reserves_prompt_tokens():
    assert max_context_chars(1024) == 2472
    assert max_context_chars(2048) == 5544
    assert max_context_chars(100) == 0


def test_truncate_fits_budget_with_ellipsis():
    context, truncated = truncate_context("x" * 10_000, max_context_chars(1024))

    assert truncated is True
    assert len(context) == 2472
    assert context.endswith("...")


def test_truncate_leaves_short_context():
    assert truncate_context("short", 100) == ("short", False)
    assert truncate_context("abcdef", 2) == ("ab", True)


def test_assemble_context_stops_at_first_overflow():
    parts = [format_source("a.txt", "x" * 40), format_source("b.txt", "y" * 200), format_source("c.txt", "z")]

    context, used, truncated = assemble_context(parts, 120)

    assert used == 1
    assert truncated is True
    assert context == parts[0]
    assert "c.txt" not in context


def test_assemble_context_joins_with_separator():
    context, used, truncated = assemble_context(["one", "two"], 100)

    assert context == f"one{CONTEXT_SEPARATOR}two"
    assert used == 2
    assert truncated is False


def test_local_prompt_layout():
    prompt = build_local_prompt("CTX", "What?")

    assert prompt.startswith("You are a helpful assistant. Answer based ONLY on the following context:")
    assert "CTX\n\nQuestion: What?\n\nAnswer:" in prompt


def test_template_substitutes_truncated_context():
    template = "Use this:\nLONG CONTEXT\nQ: why?"

    assert apply_context_to_template(template, "LONG CONTEXT", "SHORT", "why?") == "Use this:\nSHORT\nQ: why?"


def test_template_missing_falls_back_to_local_prompt():
    assert apply_context_to_template("", "ctx", "ctx", "q") == build_local_prompt("ctx", "q")
    assert apply_context_to_template("Just answer", "", "", "q") == "Just answer"
