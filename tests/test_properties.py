import typing

from hypothesis import assume, given, settings
from hypothesis.strategies import booleans, just, lists, one_of, recursive, sampled_from, tuples

from firstnext import (
    EOF,
    Expression,
    FirstNextAnalyzer,
    Grammar,
    Rule,
    alt,
    and_predicate,
    group,
    not_predicate,
    one_or_more,
    opt,
    optional_group,
    seq,
    zero_or_more,
)

# Expressions are described as nested tuples and built fresh each time they
# are needed, since a node can only ever be in one rule.
LEAVES = ["'a'", "'b'", "'c'", "X", "Y"]


UNARY = ["opt", "star", "plus", "group", "optional"]


def descriptions(leaves: list[str], unary: list[str] = UNARY):
    return recursive(
        sampled_from(leaves),
        lambda children: one_of(
            tuples(just("seq"), lists(children, min_size=2, max_size=3)),
            tuples(just("alt"), lists(children, min_size=2, max_size=3)),
            tuples(sampled_from(unary), children),
        ),
        max_leaves=8,
    )


expressions = descriptions(LEAVES)


def build(desc) -> Expression:
    if isinstance(desc, str):
        return seq(desc)

    kind, arg = desc
    match kind:
        case "seq":
            return seq(*[build(d) for d in arg])
        case "alt":
            return alt(*[build(d) for d in arg])
        case "opt":
            return opt(build(arg))
        case "star":
            return zero_or_more(build(arg))
        case "plus":
            return one_or_more(build(arg))
        case "group":
            return group(build(arg))
        case "optional":
            return optional_group(build(arg))
        case "and":
            return and_predicate(build(arg))
        case "not":
            return not_predicate(build(arg))
        case _:
            raise ValueError(kind)


def first_of(expression: Expression) -> set[str]:
    G = Grammar(Rule("r", expression))
    analyzer = FirstNextAnalyzer(G)
    return set(analyzer.render(analyzer.calc_first(G["r"])))


def test_build():
    assert build(("seq", ["'a'", ("star", "X")])).text == "'a' X*"
    assert build(("alt", ["'a'", ("seq", ["X", "Y"])])).text == "'a' | X Y"


@given(expressions)
def test_optional_matches_eof(desc):
    assert "-eof-" in first_of(opt(build(desc)))
    assert "-eof-" in first_of(zero_or_more(build(desc)))
    assert "-eof-" in first_of(optional_group(build(desc)))


@given(expressions)
def test_one_or_more_is_the_same_as_once(desc):
    assert first_of(one_or_more(build(desc))) == first_of(build(desc))


@given(expressions, expressions)
def test_sequence_stops_at_required_item(a, b):
    first_a = first_of(build(a))
    assume("-eof-" not in first_a)
    assert first_of(seq(build(a), build(b))) == first_a


@given(expressions, expressions)
def test_sequence_skips_empty_item(a, b):
    first_a = first_of(opt(build(a)))
    expected = (first_a - {"-eof-"}) | first_of(build(b))
    assert first_of(seq(opt(build(a)), build(b))) == expected


@given(expressions, expressions)
def test_choice_is_the_union(a, b):
    assert first_of(alt(build(a), build(b))) == first_of(build(a)) | first_of(build(b))


@given(expressions)
def test_dead_alternatives_are_dropped(desc):
    dead = seq(and_predicate("'q'"), "'r'")
    assert first_of(alt(build(desc), dead)) == first_of(build(desc))


RULE_NAMES = ["r0", "r1", "r2"]


def grammars(unary: list[str] = UNARY):
    bodies = descriptions(LEAVES + RULE_NAMES, unary)
    return lists(bodies, min_size=len(RULE_NAMES), max_size=len(RULE_NAMES))


def build_grammar(descs: list[typing.Any]) -> Grammar:
    return Grammar(
        *[
            Rule(name, build(desc), private=(name == "r1"))
            for name, desc in zip(RULE_NAMES, descs)
        ]
    )


@settings(max_examples=50)
@given(grammars(), booleans(), booleans())
def test_recursive_grammars(descs, backward, opaque):
    G = build_grammar(descs)
    analyzer = FirstNextAnalyzer(G, backward=backward, public_rule_opaque=opaque)

    for rule in G.rules():
        first = analyzer.calc_first(rule)
        assert len(first) > 0
        assert analyzer.calc_first(rule) == first

        next = analyzer.calc_next(rule)
        assert len(next) > 0
        assert analyzer.calc_next(rule) == next


@settings(max_examples=50)
@given(grammars())
def test_visited_is_unchanged(descs):
    G = build_grammar(descs)
    analyzer = FirstNextAnalyzer(G)

    for rule in G.rules():
        visited = {rule}
        analyzer.calc_first_inner(rule.expression, set(), visited)
        assert visited == {rule}


@settings(max_examples=50)
@given(grammars())
def test_unused_rules_can_end_the_input(descs):
    G = build_grammar(descs)
    analyzer = FirstNextAnalyzer(G)

    for rule in G.rules():
        if len(G.find_usages(rule)) == 0:
            assert EOF in analyzer.calc_next(rule)


@settings(max_examples=50, deadline=None)
@given(grammars(UNARY + ["and", "not"]), booleans())
def test_recursive_grammars_with_predicates(descs, opaque):
    G = build_grammar(descs)
    analyzer = FirstNextAnalyzer(G, public_rule_opaque=opaque)

    for rule in G.rules():
        first = analyzer.calc_first(rule)
        assert len(first) > 0
        assert analyzer.calc_first(rule) == first
        assert len(analyzer.calc_next(rule)) > 0
