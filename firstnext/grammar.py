"""The grammar model that FIRST/NEXT analysis runs over.

A grammar is a set of named `Rule`s. Each rule owns a tree of `Expression`s,
written the way you would write them in a BNF file:

    root ::= statement *
    private statement ::= assignment | call ';'
    assignment ::= id '=' expr { pin = 2 recoverUntil = statement_recover }

The expression kinds form a closed set (`Literal`, `ReferenceOrToken`,
`Parenthesized`, `Choice`, `Sequence`, `Quantified`, `External`, `Predicate`,
plus the `Sentinel` markers the analysis injects into its results), so the
analysis dispatches on them with `match` rather than with methods on the
nodes.

Every expression knows its parent, which is how the NEXT analysis walks up
from a point in a rule to find what can follow it. The parent link is set
exactly once, when a `Rule` (or one of its `Attribute`s) adopts the tree.
After that the model is read-only: nothing in the analysis modifies it.

You can build grammars by hand with the helpers at the bottom of this module:

    Grammar(
        Rule("expr", alt(seq("term", "'+'", "expr"), "term")),
        Rule("term", alt("NUMBER", group("'('", "expr", "')'"))),
    )

or read them from text with `firstnext.bnf.parse_grammar`.
"""

import collections
import dataclasses
import enum
import re
import typing

__all__ = [
    "PIN",
    "RECOVER_UNTIL",
    "RECOVER_WHILE",
    "Attribute",
    "AttributeValue",
    "Choice",
    "Expression",
    "External",
    "Grammar",
    "Literal",
    "Parenthesized",
    "Predicate",
    "PredicateSign",
    "Quantified",
    "Quantifier",
    "ReferenceOrToken",
    "Rule",
    "Sentinel",
    "Sequence",
    "alt",
    "and_predicate",
    "call",
    "group",
    "is_quoted",
    "lit",
    "not_predicate",
    "one_or_more",
    "opt",
    "optional_group",
    "param",
    "ref",
    "seq",
    "unquote",
    "zero_or_more",
]


RECOVER_UNTIL = "recoverUntil"
# Older grammars spell the recovery attribute this way.
RECOVER_WHILE = "recoverWhile"
PIN = "pin"


def is_quoted(text: str) -> bool:
    return len(text) > 1 and text[0] in "'\"" and text[-1] == text[0]


def unquote(text: str) -> str:
    if is_quoted(text):
        return text[1:-1]
    return text


class Quantifier(enum.Enum):
    OPTIONAL = "?"
    ZERO_OR_MORE = "*"
    ONE_OR_MORE = "+"


class PredicateSign(enum.Enum):
    AND = "&"
    NOT = "!"


class Expression:
    """A node in the derivation tree of a rule.

    Expressions compare and hash by identity: two `'+'` literals in different
    places in the grammar are different expressions. (Use `text` if you want
    to compare what they look like.)
    """

    parent: "Expression | Rule | Attribute | None" = None

    @property
    def text(self) -> str:
        """The canonical grammar text of this expression."""
        raise NotImplementedError()

    def children(self) -> typing.Sequence["Expression"]:
        return ()

    def walk(self) -> typing.Iterator["Expression"]:
        """All the expressions in this tree, this one included, in
        pre-order.
        """
        stack: list[Expression] = [self]
        while len(stack) > 0:
            expression = stack.pop()
            yield expression
            stack.extend(reversed(expression.children()))

    @property
    def rule(self) -> "Rule | None":
        """The rule this expression belongs to, if it has been adopted by
        one.
        """
        node = self.parent
        while isinstance(node, Expression):
            node = node.parent
        if isinstance(node, Attribute):
            return node.rule
        return node

    def __or__(self, other: "Expression | str") -> "Expression":
        return alt(self, other)

    def __add__(self, other: "Expression | str") -> "Expression":
        return seq(self, other)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.text}>"


@dataclasses.dataclass(eq=False, repr=False)
class Sentinel(Expression):
    """An out-of-band marker in a result set. Never part of a rule."""

    name: str

    @property
    def text(self) -> str:
        return self.name


@dataclasses.dataclass(eq=False, repr=False)
class Literal(Expression):
    """A quoted string or a number, exactly as written in the grammar."""

    value: str

    @property
    def text(self) -> str:
        return self.value


@dataclasses.dataclass(eq=False, repr=False)
class ReferenceOrToken(Expression):
    """An identifier. If the grammar has a rule with this name then this is
    a reference to that rule, otherwise it is an opaque token.
    """

    name: str

    @property
    def text(self) -> str:
        return self.name


@dataclasses.dataclass(eq=False, repr=False)
class Parenthesized(Expression):
    """`( ... )`, or `[ ... ]` if optional."""

    expression: Expression
    optional: bool = False

    @property
    def text(self) -> str:
        if self.optional:
            return f"[{self.expression.text}]"
        return f"({self.expression.text})"

    def children(self) -> typing.Sequence[Expression]:
        return (self.expression,)


@dataclasses.dataclass(eq=False, repr=False)
class Choice(Expression):
    alternatives: list[Expression]

    @property
    def text(self) -> str:
        return " | ".join(a.text for a in self.alternatives)

    def children(self) -> typing.Sequence[Expression]:
        return self.alternatives


@dataclasses.dataclass(eq=False, repr=False)
class Sequence(Expression):
    items: list[Expression]

    @property
    def text(self) -> str:
        return " ".join(i.text for i in self.items)

    def children(self) -> typing.Sequence[Expression]:
        return self.items


@dataclasses.dataclass(eq=False, repr=False)
class Quantified(Expression):
    expression: Expression
    quantifier: Quantifier

    @property
    def text(self) -> str:
        return f"{self.expression.text}{self.quantifier.value}"

    def children(self) -> typing.Sequence[Expression]:
        return (self.expression,)


@dataclasses.dataclass(eq=False, repr=False)
class External(Expression):
    """A call: `<<callee arg ...>>`.

    The callee (the first argument) is either a meta rule, in which case
    the rest of the arguments are substituted for its parameters, or the
    name of some externally implemented method. Inside a meta rule, a call
    with nothing but a callee (`<<p>>`) is a reference to the parameter `p`.
    """

    arguments: list[Expression]

    @property
    def text(self) -> str:
        return "<<" + " ".join(a.text for a in self.arguments) + ">>"

    def children(self) -> typing.Sequence[Expression]:
        return self.arguments

    @property
    def parameter_name(self) -> str | None:
        if len(self.arguments) == 1:
            return self.arguments[0].text
        return None


@dataclasses.dataclass(eq=False, repr=False)
class Predicate(Expression):
    """A zero-width lookahead: `&x` or `!x`."""

    sign: PredicateSign
    expression: Expression

    @property
    def text(self) -> str:
        return f"{self.sign.value}{self.expression.text}"

    def children(self) -> typing.Sequence[Expression]:
        return (self.expression,)


AttributeValue = typing.Union[int, str, Expression]


class Attribute:
    """One `name = value` entry in the attribute block of a rule.

    Expression values take part in the usage index just like references in
    the rule body; their parent is this attribute.
    """

    rule: "Rule"
    name: str
    value: AttributeValue

    def __init__(self, rule: "Rule", name: str, value: "AttributeValue"):
        if isinstance(value, Expression):
            _adopt(value, self)
        self.rule = rule
        self.name = name
        self.value = value

    def __repr__(self) -> str:
        value = self.value.text if isinstance(self.value, Expression) else repr(self.value)
        return f"{self.name}={value}"


class Rule:
    """A named production in the grammar.

    `private` rules are helpers that do not produce a node of their own,
    `external` rules name an externally implemented method (plus the
    arguments to call it with) and `meta` rules are parameterized: they
    refer to their parameters as `<<p>>` and are called as `<<rule a b>>`.
    """

    name: str
    expression: Expression
    private: bool
    external: bool
    meta: bool
    attributes: dict[str, Attribute]

    def __init__(
        self,
        name: str,
        expression: "Expression | str",
        *,
        private: bool = False,
        external: bool = False,
        meta: bool = False,
        attributes: "dict[str, AttributeValue] | None" = None,
    ):
        self.name = name
        self.expression = _coerce(expression)
        self.private = private
        self.external = external
        self.meta = meta

        _adopt(self.expression, self)

        self.attributes = {}
        for attr_name, value in (attributes or {}).items():
            self.attributes[attr_name] = Attribute(self, attr_name, value)

    def attribute(self, name: str) -> AttributeValue | None:
        attr = self.attributes.get(name)
        if attr is None:
            return None
        return attr.value

    def __repr__(self) -> str:
        modifiers = [
            m for m, on in (("private", self.private), ("external", self.external), ("meta", self.meta)) if on
        ]
        return " ".join(modifiers + [self.name, "::=", self.expression.text])


def _adopt(expression: Expression, parent: "Expression | Rule | Attribute"):
    if expression.parent is not None:
        raise ValueError(
            f"The expression '{expression.text}' is already part of a rule; "
            "build a new expression instead of sharing one"
        )
    expression.parent = parent
    for child in expression.children():
        _adopt(child, expression)


class Grammar:
    """A read-only collection of rules, and the queries the analysis needs to
    make about them.

    The reverse-usage index (which references point at which rule) is built
    once, here, so that `find_usages` is just a lookup.
    """

    _rules: dict[str, Rule]
    _usages: dict[str, list[ReferenceOrToken]]

    def __init__(self, *rules: Rule):
        self._rules = {}
        for rule in rules:
            if rule.name in self._rules:
                raise ValueError(f"Found more than one rule named {rule.name}")
            self._rules[rule.name] = rule

        self._usages = collections.defaultdict(list)
        for rule in rules:
            roots = [rule.expression] + [
                attr.value for attr in rule.attributes.values() if isinstance(attr.value, Expression)
            ]
            for root in roots:
                for expression in root.walk():
                    if isinstance(expression, ReferenceOrToken):
                        self._usages[expression.name].append(expression)

    def rules(self) -> list[Rule]:
        return list(self._rules.values())

    def lookup_rule(self, name: str) -> Rule | None:
        return self._rules.get(name)

    def __getitem__(self, name: str) -> Rule:
        return self._rules[name]

    def find_usages(self, rule: Rule) -> list[ReferenceOrToken]:
        """Every reference to `rule`, in rule bodies and attribute values."""
        return list(self._usages.get(rule.name, ()))

    def rule_of(self, expression: Expression) -> Rule | None:
        return expression.rule

    def enclosing_attribute(self, expression: Expression) -> Attribute | None:
        node = expression.parent
        while isinstance(node, Expression):
            node = node.parent
        if isinstance(node, Attribute):
            return node
        return None

    def in_recovery_clause(self, expression: Expression) -> bool:
        attr = self.enclosing_attribute(expression)
        return attr is not None and attr.name in (RECOVER_UNTIL, RECOVER_WHILE)

    def inside_predicate(self, expression: Expression) -> bool:
        node = expression.parent
        while isinstance(node, Expression):
            if isinstance(node, Predicate):
                return True
            node = node.parent
        return False

    def external_call_arguments(self, rule: Rule) -> list[Expression]:
        """For `external r ::= method a b`, the list `[method, a, b]`."""
        if isinstance(rule.expression, Sequence):
            return list(rule.expression.items)
        return [rule.expression]

    def collect_meta_parameters(self, rule: Rule) -> list[str]:
        """The parameter names of a meta (or external) rule, in the order
        they first appear in its body.
        """
        if not (rule.meta or rule.external):
            return []

        result: list[str] = []
        for expression in rule.expression.walk():
            if isinstance(expression, External):
                name = expression.parameter_name
                if name is not None and name not in result:
                    result.append(name)
        return result

    def pinned_commitment_points(self, rule: Rule | None) -> set[Expression]:
        """The sequence items selected by the rule's `pin` attribute.

        An integer pin is a 1-based position in the rule's top-level sequence.
        A string pin is a regular expression, matched against the text of the
        items of every sequence in the rule.
        """
        result: set[Expression] = set()
        if rule is None:
            return result

        pin = rule.attribute(PIN)
        if isinstance(pin, int):
            body = rule.expression
            if isinstance(body, Sequence) and 0 < pin <= len(body.items):
                result.add(body.items[pin - 1])

        elif isinstance(pin, str):
            pattern = re.compile(pin)
            for expression in rule.expression.walk():
                if isinstance(expression, Sequence):
                    for item in expression.items:
                        if pattern.fullmatch(item.text):
                            result.add(item)

        return result

    def is_external_reference(self, expression: Expression) -> bool:
        """True if the expression names an external method: the callee of a
        `<<call>>`, or the first item of an external rule's body.
        """
        parent = expression.parent
        if isinstance(parent, External) and parent.arguments[0] is expression:
            return True
        if isinstance(parent, Sequence) and parent.items[0] is expression:
            parent = parent.parent
        return isinstance(parent, Rule) and parent.external

    def first_not_trivial(self, rule: Rule) -> Expression:
        """The first expression in the rule body that does something, i.e.,
        that isn't just a wrapper around a single other expression.
        """
        expression = rule.expression
        while True:
            match expression:
                case Parenthesized(expression=inner, optional=False):
                    expression = inner
                case Sequence(items=[only]) | Choice(alternatives=[only]):
                    expression = only
                case _:
                    return expression


###############################################################################
# Sugar for constructing grammars
###############################################################################
def _coerce(value: Expression | str) -> Expression:
    if isinstance(value, Expression):
        return value
    if is_quoted(value) or value.isdigit():
        return Literal(value)
    return ReferenceOrToken(value)


def _grouped(args: tuple[Expression | str, ...]) -> Expression:
    # A quantifier or predicate applies to one expression; anything bigger
    # goes in parentheses, the same way it would be written.
    expression = seq(*args)
    if isinstance(expression, (Sequence, Choice)):
        return Parenthesized(expression)
    return expression


def lit(value: str) -> Literal:
    return Literal(value)


def ref(name: str) -> ReferenceOrToken:
    return ReferenceOrToken(name)


def seq(*args: Expression | str) -> Expression:
    """A sequence of expressions. (A single expression is just itself.)"""
    if len(args) == 0:
        raise ValueError("A sequence needs at least one expression")

    items: list[Expression] = []
    for arg in args:
        item = _coerce(arg)
        if isinstance(item, Sequence) and item.parent is None:
            items.extend(item.items)
        else:
            items.append(item)

    if len(items) == 1:
        return items[0]
    return Sequence([Parenthesized(i) if isinstance(i, Choice) else i for i in items])


def alt(*args: Expression | str) -> Expression:
    """A choice between alternatives. (A single one is just itself.)"""
    if len(args) == 0:
        raise ValueError("A choice needs at least one alternative")

    alternatives: list[Expression] = []
    for arg in args:
        alternative = _coerce(arg)
        if isinstance(alternative, Choice) and alternative.parent is None:
            alternatives.extend(alternative.alternatives)
        else:
            alternatives.append(alternative)

    if len(alternatives) == 1:
        return alternatives[0]
    return Choice(alternatives)


def group(*args: Expression | str) -> Parenthesized:
    return Parenthesized(seq(*args))


def optional_group(*args: Expression | str) -> Parenthesized:
    """`[ ... ]`"""
    return Parenthesized(seq(*args), optional=True)


def opt(*args: Expression | str) -> Quantified:
    return Quantified(_grouped(args), Quantifier.OPTIONAL)


def zero_or_more(*args: Expression | str) -> Quantified:
    return Quantified(_grouped(args), Quantifier.ZERO_OR_MORE)


def one_or_more(*args: Expression | str) -> Quantified:
    return Quantified(_grouped(args), Quantifier.ONE_OR_MORE)


def call(callee: Expression | str, *args: Expression | str) -> External:
    """`<<callee args...>>`"""
    return External([_coerce(callee)] + [_coerce(a) for a in args])


def param(name: str) -> External:
    """`<<name>>`, a parameter reference inside a meta rule."""
    return External([ReferenceOrToken(name)])


def and_predicate(*args: Expression | str) -> Predicate:
    return Predicate(PredicateSign.AND, _grouped(args))


def not_predicate(*args: Expression | str) -> Predicate:
    return Predicate(PredicateSign.NOT, _grouped(args))
