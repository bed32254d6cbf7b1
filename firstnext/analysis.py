"""FIRST and NEXT sets over a BNF grammar.

FIRST of an expression is the set of leaves (literals, tokens, opaque rule
references, external method names) that a match of the expression can start
with. NEXT of an expression is the set of leaves that can come right after it,
in every context the expression can be reached from: that means walking up
through the enclosing sequences and loops of its rule, and then out through
every place the rule is used.

Unlike the textbook fixed-point algorithms, these are computed on demand, by
walking the expression trees directly. Recursion is cut with a visited set:
a rule we are already inside of is treated as an opaque leaf. That is good
enough for error recovery and diagnostics, which is what the sets are for,
but it means that the sets for recursive rules are not minimal.

Three sentinels carry the things that are not leaves:

- `EOF`: the expression can match nothing at all, so whatever follows it
  can come first (or, in a NEXT set, nothing follows).
- `NOTHING`: the expression can never match. (A predicate that can never
  succeed, say.)
- `ANY`: we don't know; anything could be here. (We crossed into an external
  rule or a recovery clause, or came back around a loop to a predicate we
  were already looking past.)

Predicates are approximated by looking at a single token: `&x y` starts with
whatever is in both FIRST(x) and FIRST(y), `!x y` with whatever is in FIRST(y)
but not FIRST(x).
"""

import collections.abc
import itertools
import logging
import typing

from .grammar import (
    Choice,
    Expression,
    External,
    Grammar,
    Literal,
    Parenthesized,
    Predicate,
    PredicateSign,
    Quantified,
    Quantifier,
    ReferenceOrToken,
    Rule,
    Sentinel,
    Sequence,
    is_quoted,
    unquote,
)


MATCHES_EOF = "-eof-"
MATCHES_NOTHING = "-never-matches-"
MATCHES_ANY = "-any-"

EOF = Sentinel(MATCHES_EOF)
NOTHING = Sentinel(MATCHES_NOTHING)
ANY = Sentinel(MATCHES_ANY)


log = logging.getLogger("firstnext.analysis")
first_log = logging.getLogger("firstnext.first")
next_log = logging.getLogger("firstnext.next")


class TextSet(collections.abc.MutableSet):
    """A set of expressions where two expressions are the same if they have
    the same text.

    Predicates compare the FIRST sets of different parts of the grammar, and
    the `'+'` in one place is not the same object as the `'+'` in the other.
    The first expression added for a given text is the one that is kept.
    """

    _items: dict[str, Expression]

    def __init__(self, items: typing.Iterable[Expression] = ()):
        self._items = {}
        self.update(items)

    def __contains__(self, item: object) -> bool:
        return isinstance(item, Expression) and item.text in self._items

    def __iter__(self) -> typing.Iterator[Expression]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: Expression):
        self._items.setdefault(item.text, item)

    def discard(self, item: Expression):
        self._items.pop(item.text, None)

    def update(self, items: typing.Iterable[Expression]):
        for item in items:
            self.add(item)

    def __repr__(self) -> str:
        return "TextSet({" + ", ".join(self._items) + "})"


ExpressionSet = typing.MutableSet[Expression]


def _remove(result: ExpressionSet, item: Expression) -> bool:
    """Remove the item from the set and return True if it was there."""
    if item in result:
        result.discard(item)
        return True
    return False


class FirstNextAnalyzer:
    """Compute FIRST and NEXT sets for the rules of a grammar.

    `backward` turns the analysis around: sequences are read right to left,
    so "FIRST" becomes the set of things a match can end with and "NEXT"
    the set of things that can come right before. Predicates are transparent
    in that direction.

    `public_rule_opaque` stops the analysis from looking inside any rule that
    is not private: a reference to a public rule is a leaf of its own. (That
    is what you want if you are going to report the sets in terms of the
    nodes the parser will produce.)
    """

    grammar: Grammar
    backward: bool
    public_rule_opaque: bool
    _predicates_in_progress: set[Predicate]

    def __init__(
        self,
        grammar: Grammar,
        *,
        backward: bool = False,
        public_rule_opaque: bool = False,
    ):
        self.grammar = grammar
        self.backward = backward
        self.public_rule_opaque = public_rule_opaque
        self._predicates_in_progress = set()

    def calc_first(self, target: Rule | Expression) -> set[Expression]:
        """The FIRST set of a rule (or of any expression in it)."""
        visited: set[Rule] = set()
        if isinstance(target, Rule):
            visited.add(target)
            target = target.expression
        result = typing.cast(set[Expression], self.calc_first_inner(target, set(), visited))
        if len(result) == 0:
            # Only opaque predicate rules; we can't say what comes first.
            result.add(ANY)
        return result

    def calc_next(self, target: Rule | Expression) -> dict[Expression, Expression | None]:
        """The NEXT set of a rule (or of any expression in it).

        The result maps each thing that can follow to the reference the
        search was at when it was found, which is where it came from: if
        `b` follows `x` because of `a ::= x b` and `c ::= a`, the origin of
        `b` is the reference to `x`. The origin is None if the search
        started at something other than a reference.
        """
        if isinstance(target, Rule):
            target = target.expression
        return self._calc_next_inner(target, {}, set())

    def calc_first_inner(
        self,
        expression: Expression,
        result: ExpressionSet,
        visited: set[Rule],
        forced_next: list[Expression] | None = None,
    ) -> ExpressionSet:
        """Add the FIRST set of `expression` to `result`, and return `result`.

        `visited` is the set of rules we are currently inside of; a reference
        to one of them is not expanded again. It is the same when this
        returns as it was when it was called.

        `forced_next` is what follows `expression` in the sequence we are in
        the middle of, if we know. Predicates use it to see what they apply
        to; if it is None they go and compute the NEXT set instead.
        """
        match expression:
            case Literal() | Sentinel():
                result.add(expression)

            case ReferenceOrToken():
                self._calc_reference_first(expression, result, visited, forced_next)

            case Parenthesized(expression=inner, optional=optional):
                self.calc_first_inner(inner, result, visited, forced_next)
                if optional:
                    result.add(EOF)

            case Choice(alternatives=alternatives):
                # A choice only never matches if none of its alternatives
                # can match.
                matches_nothing = _remove(result, NOTHING)
                matches_something = False
                for alternative in alternatives:
                    self.calc_first_inner(alternative, result, visited, forced_next)
                    matches_something |= not _remove(result, NOTHING)
                if not matches_something or matches_nothing:
                    result.add(NOTHING)

            case Sequence(items=items):
                self._calc_sequence_first(items, result, visited)

            case Quantified(expression=inner, quantifier=quantifier):
                self.calc_first_inner(inner, result, visited, forced_next)
                if quantifier in (Quantifier.OPTIONAL, Quantifier.ZERO_OR_MORE):
                    result.add(EOF)

            case External():
                self._calc_external_first(expression, result, visited, forced_next)

            case Predicate():
                if self.backward:
                    result.add(EOF)
                else:
                    self._calc_predicate_first(expression, result, visited, forced_next)

            case _:
                typing.assert_never(expression)

        return result

    def _calc_reference_first(
        self,
        expression: ReferenceOrToken,
        result: ExpressionSet,
        visited: set[Rule],
        forced_next: list[Expression] | None,
    ):
        rule = self.grammar.lookup_rule(expression.name)
        if rule is None:
            # A token, or something we know nothing about.
            result.add(expression)
            return

        if rule.external:
            arguments = self.grammar.external_call_arguments(rule)
            call = arguments[0] if len(arguments) > 0 else None
            if isinstance(call, ReferenceOrToken) and self.grammar.lookup_rule(call.name) is None:
                result.add(call)
                return

        if (self.public_rule_opaque and not rule.private) or rule in visited:
            fl = first_log
            if fl.isEnabledFor(logging.DEBUG):
                fl.debug(f"{expression.name} is opaque here")

            # A rule that is nothing but a predicate contributes nothing on
            # its own, it only filters what comes after it.
            if not isinstance(self.grammar.first_not_trivial(rule), Predicate):
                result.add(expression)
            return

        visited.add(rule)
        self.calc_first_inner(rule.expression, result, visited, forced_next)
        assert rule in visited, "path corruption detected"
        visited.remove(rule)

    def _calc_sequence_first(
        self,
        items: list[Expression],
        result: ExpressionSet,
        visited: set[Rule],
    ) -> ExpressionSet:
        """Add the FIRST set of a sequence of expressions to `result`.

        Walk the items for as long as everything so far could match nothing,
        i.e., for as long as EOF is still in the result. EOF is left in the
        result at the end if every item could match nothing, or if it was
        there to begin with.

        A pinned item commits the parse: once we are past it, the rest of the
        sequence is allowed to be missing.
        """
        matches_eof = EOF in result
        result.add(EOF)

        pinned: set[Expression]
        if self.backward:
            pinned = set()
            items = list(reversed(items))
        else:
            if len(items) == 0:
                return result
            pinned = self.grammar.pinned_commitment_points(self.grammar.rule_of(items[0]))

        pin_applied = False
        for index, item in enumerate(items):
            if not _remove(result, EOF):
                break
            matches_eof |= pin_applied

            tail = items[index + 1 :] if index < len(items) - 1 else None
            self.calc_first_inner(item, result, visited, tail)
            pin_applied |= item in pinned

        if matches_eof:
            result.add(EOF)
        return result

    def _calc_external_first(
        self,
        expression: External,
        result: ExpressionSet,
        visited: set[Rule],
        forced_next: list[Expression] | None,
    ):
        arguments = expression.arguments
        owner = expression.rule
        if len(arguments) == 1 and owner is not None and owner.meta:
            # A parameter: we can't say anything until we know what it is
            # bound to, which is the job of whoever calls this meta rule.
            result.add(expression)
            return

        callee = arguments[0]
        meta_results = self.calc_first_inner(callee, set(), visited, forced_next)

        params: list[str] | None = None
        for e in meta_results:
            if not isinstance(e, External):
                result.add(e)
                continue

            if params is None:
                meta_rule = None
                if isinstance(callee, ReferenceOrToken):
                    meta_rule = self.grammar.lookup_rule(callee.name)
                if meta_rule is None:
                    log.error(
                        "Unable to resolve the meta rule for %s (first: %s)",
                        callee.text,
                        ", ".join(self.render(meta_results)),
                    )
                    continue
                params = self.grammar.collect_meta_parameters(meta_rule)

            name = e.parameter_name
            if name is not None and name in params:
                index = params.index(name)
                if index + 1 < len(arguments):
                    self.calc_first_inner(arguments[index + 1], result, visited, None)

    def _calc_predicate_first(
        self,
        expression: Predicate,
        result: ExpressionSet,
        visited: set[Rule],
        forced_next: list[Expression] | None,
    ):
        # Only the first token is taken into account, which isn't exactly
        # right, but is better than nothing.
        predicate_expression = expression.expression
        conditions = self.calc_first_inner(predicate_expression, TextSet(), visited)

        next_set: ExpressionSet
        if forced_next is None:
            if expression in self._predicates_in_progress:
                # We came back around a loop while working out what follows
                # this predicate.
                next_set = TextSet([ANY])
            else:
                self._predicates_in_progress.add(expression)
                try:
                    next_set = TextSet(self._calc_next_inner(expression, {}, visited))
                finally:
                    self._predicates_in_progress.remove(expression)
        else:
            next_set = self._calc_sequence_first(forced_next, TextSet(), visited)

        if isinstance(predicate_expression, Parenthesized) and not predicate_expression.optional:
            predicate_expression = predicate_expression.expression

        # TODO: Compute the minimum length of the condition instead of giving
        #       up on every sequence.
        skip = isinstance(predicate_expression, Sequence) and len(predicate_expression.items) > 1
        if not skip:
            # External methods can match anything at all.
            skip = any(
                self.grammar.is_external_reference(e) for e in itertools.chain(next_set, conditions)
            )

        mixed = TextSet()
        if skip:
            mixed.update(next_set)
            mixed.discard(EOF)
            if len(mixed) == 0:
                mixed.add(ANY)

        elif expression.sign == PredicateSign.AND:
            if EOF in conditions:
                mixed.update(next_set)
            elif ANY in next_set:
                mixed.update(conditions)
            else:
                mixed.update(e for e in next_set if e in conditions)
                if len(mixed) == 0:
                    mixed.add(NOTHING)

        else:
            if EOF in conditions:
                mixed.add(NOTHING)
            else:
                mixed.update(e for e in next_set if e not in conditions)
                if len(mixed) == 0:
                    mixed.add(NOTHING)

        fl = first_log
        if fl.isEnabledFor(logging.DEBUG):
            fl.debug(f"{expression.text}: {', '.join(self.render(mixed))}")

        result.update(mixed)

    def _calc_next_inner(
        self,
        target: Expression,
        result: dict[Expression, Expression | None],
        visited: set[Rule],
    ) -> dict[Expression, Expression | None]:
        # Walk up from the target until we find something that has to come
        # next. If we walk off the top of a rule then whatever comes after
        # the rule comes next, so go and look at all the places the rule is
        # used. Each rule only gets expanded once per call, which is what
        # makes this terminate on recursive grammars.
        stack: list[Expression] = [target]
        total_visited: set[Rule] = set()

        nl = next_log
        while len(stack) > 0:
            cur = stack.pop()
            starting_expr = cur if isinstance(cur, ReferenceOrToken) else None
            if nl.isEnabledFor(logging.DEBUG):
                nl.debug(f"from {cur.text}")

            parent = cur.parent
            while isinstance(parent, Expression):
                grandparent = parent.parent
                if (isinstance(grandparent, Rule) and grandparent.external) or isinstance(
                    grandparent, External
                ):
                    result[ANY] = starting_expr
                    break

                if isinstance(parent, Sequence):
                    items = parent.items
                    index = next(i for i, item in enumerate(items) if item is cur)
                    rest = items[:index] if self.backward else items[index + 1 :]
                    first = self._calc_sequence_first(rest, set(), visited)
                    for e in first:
                        result[e] = starting_expr
                    if EOF not in first:
                        # The rest of the sequence decides what comes next,
                        # no need to go any higher.
                        break

                elif isinstance(parent, Quantified) and parent.quantifier in (
                    Quantifier.ZERO_OR_MORE,
                    Quantifier.ONE_OR_MORE,
                ):
                    # Around the loop again.
                    for e in self.calc_first_inner(parent, set(), visited):
                        result[e] = starting_expr

                cur = parent
                parent = grandparent

            if isinstance(parent, Rule) and parent not in total_visited:
                total_visited.add(parent)
                for usage in self.grammar.find_usages(parent):
                    if self.grammar.inside_predicate(usage):
                        continue

                    if self.grammar.in_recovery_clause(usage):
                        result[ANY] = starting_expr
                    elif self.grammar.enclosing_attribute(usage) is None:
                        stack.append(usage)

        if len(result) == 0:
            result[EOF] = None
        return result

    def render(self, expressions: typing.Iterable[Expression]) -> list[str]:
        """Format a set of expressions for people, sorted and without
        duplicates. Strings are always shown in single quotes and external
        method names get a `#` in front of them.
        """
        result: set[str] = set()
        for expression in expressions:
            text = expression.text
            if isinstance(expression, Literal):
                result.add(f"'{unquote(text)}'" if is_quoted(text) else text)
            elif self.grammar.is_external_reference(expression):
                result.add("#" + text)
            else:
                result.add(text)
        return sorted(result)
