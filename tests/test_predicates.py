from firstnext import FirstNextAnalyzer, parse_grammar


def first(src: str, name: str = "r") -> list[str]:
    G = parse_grammar(src)
    analyzer = FirstNextAnalyzer(G)
    return analyzer.render(analyzer.calc_first(G[name]))


def test_and_keeps_what_matches():
    assert first("r ::= &'t' ('t' | 'u')") == ["'t'"]


def test_and_that_never_matches():
    assert first("r ::= &'x' ('t' | 'u')") == ["-never-matches-"]


def test_not_removes_what_matches():
    assert first("r ::= !'t' ('t' | 'u')") == ["'u'"]
    assert first("r ::= !'t' 't'") == ["-never-matches-"]


def test_empty_condition():
    # `&x?` always succeeds, `!x?` never does.
    assert first("r ::= &('t'?) ('t' | 'u')") == ["'t'", "'u'"]
    assert first("r ::= !('t'?) 'u'") == ["-never-matches-"]


def test_sequence_conditions_are_not_checked():
    assert first("r ::= &('a' 'b') ('a' | 'c')") == ["'a'", "'c'"]
    assert first("r ::= !('a' 'b') ('a' | 'c')") == ["'a'", "'c'"]


def test_external_conditions_are_not_checked():
    assert first("r ::= &<<check>> ('a' | 'c')") == ["'a'", "'c'"]
    assert first("r ::= !<<check>> 'a'") == ["'a'"]


def test_conditions_go_through_rules():
    src = """
    r ::= !keyword (keyword | NAME)
    private keyword ::= 'if' | 'else'
    """
    assert first(src) == ["NAME"]


def test_predicate_rule_looks_at_its_usages():
    src = """
    root ::= guarded ('a' | 'b')
    private guarded ::= &'a'
    """
    assert first(src, "root") == ["'a'"]
    assert first(src, "guarded") == ["'a'"]


def test_not_predicate_rule_looks_at_its_usages():
    src = """
    root ::= x 'u' | x 't' 'v'
    private x ::= !'t'
    """
    assert first(src, "x") == ["'u'"]


def test_recovery_predicates():
    positive = """
    item ::= NAME { recoverUntil = item_recover }
    private item_recover ::= &'x'
    """
    assert first(positive, "item_recover") == ["'x'"]

    negative = """
    item ::= NAME { recoverUntil = item_recover }
    private item_recover ::= !'x'
    """
    assert first(negative, "item_recover") == ["-any-"]


def test_predicate_in_a_choice():
    src = """
    r ::= &'a' x | 'c'
    x ::= 'a' | 'b'
    """
    assert first(src) == ["'a'", "'c'"]


def test_backward_predicates_are_transparent():
    G = parse_grammar("r ::= 'a' !'b'")
    analyzer = FirstNextAnalyzer(G, backward=True)
    assert analyzer.render(analyzer.calc_first(G["r"])) == ["'a'"]


def test_predicate_at_the_end_of_a_loop():
    # What follows the predicate includes the loop itself, which leads back
    # to the predicate.
    G = parse_grammar("r ::= ('b'? &'a')* 'z'")
    analyzer = FirstNextAnalyzer(G)
    assert analyzer.render(analyzer.calc_first(G["r"])) == ["'a'", "'b'", "'z'"]
    assert analyzer.render(analyzer.calc_first(G["r"])) == ["'a'", "'b'", "'z'"]


def test_predicate_at_the_end_of_a_loop_in_a_private_rule():
    src = """
    root ::= item ';'
    private item ::= ('b'? !';')+
    """
    G = parse_grammar(src)
    analyzer = FirstNextAnalyzer(G)
    assert analyzer.render(analyzer.calc_first(G["root"])) == ["';'", "'b'", "-any-"]
