"""FIRST and NEXT set analysis for BNF grammars.

Build a grammar, either by hand with the helpers in [grammar] or from text
with the reader in [bnf], and then ask a [analysis.FirstNextAnalyzer] about
it:

    g = parse_grammar('''
        root ::= item *
        item ::= NAME '=' value ';'
        value ::= NUMBER | STRING
    ''')
    analyzer = FirstNextAnalyzer(g)
    analyzer.render(analyzer.calc_first(g["root"]))  # ['-eof-', 'NAME']
    analyzer.render(analyzer.calc_next(g["value"]))  # ["';'"]
"""
from . import analysis
from . import bnf
from . import grammar

from .analysis import ANY, EOF, NOTHING, FirstNextAnalyzer, TextSet
from .bnf import BnfSyntaxError, parse_grammar, read_grammar
from .grammar import *
