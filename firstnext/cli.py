"""Print the FIRST (and NEXT) sets of the rules in a BNF grammar."""

import argparse
import logging
import sys

from . import analysis
from . import bnf


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print FIRST and NEXT sets for the rules of a BNF grammar")
    parser.add_argument("grammar", help="Path to the .bnf file to analyze")
    parser.add_argument(
        "--rule",
        dest="rules",
        action="append",
        default=None,
        help="The name of a rule to analyze. May be given more than once. The default is "
        "every rule in the grammar, in the order they are defined.",
    )
    parser.add_argument(
        "--next",
        action="store_true",
        help="Also print the NEXT set of each rule: what can come after it.",
    )
    parser.add_argument(
        "--backward",
        action="store_true",
        help="Read sequences right to left, so FIRST is what a rule can end with and NEXT is "
        "what can come before it.",
    )
    parser.add_argument(
        "--public-opaque",
        action="store_true",
        help="Don't look inside rules that are not private.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log the traversal")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        grammar = bnf.read_grammar(args.grammar)
    except (OSError, ValueError) as e:
        # Syntax errors and undecodable files are both ValueErrors.
        print(f"{args.grammar}: {e}", file=sys.stderr)
        return 1

    if args.rules is None:
        rules = grammar.rules()
    else:
        rules = []
        for name in args.rules:
            rule = grammar.lookup_rule(name)
            if rule is None:
                print(f"{args.grammar}: no rule named {name}", file=sys.stderr)
                return 1
            rules.append(rule)

    analyzer = analysis.FirstNextAnalyzer(
        grammar,
        backward=args.backward,
        public_rule_opaque=args.public_opaque,
    )
    for rule in rules:
        first = analyzer.render(analyzer.calc_first(rule))
        print(f"first({rule.name}): {' '.join(first)}")
        if args.next:
            next = analyzer.render(analyzer.calc_next(rule))
            print(f"next({rule.name}): {' '.join(next)}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
