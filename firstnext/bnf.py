"""Read grammars written in BNF.

The notation is the one used by Grammar-Kit style `.bnf` files:

    {
      // A leading block of global attributes is allowed, and skipped.
    }

    root ::= item *
    private item ::= property | !'}' <<recover>>
    property ::= key '=' value { pin = 2 recoverUntil = property_recover }
    private property_recover ::= !(';' | '}')
    meta comma_list ::= <<p>> (',' <<p>>) *
    external recover ::= recoverUntilSemicolon

Rules end where the next rule begins (a name followed by `::=`) or at an
optional `;`. Everything is read into the model in `firstnext.grammar`.
"""

import pathlib
import re
import typing

from . import grammar
from .grammar import (
    Choice,
    Expression,
    External,
    Literal,
    Parenthesized,
    Predicate,
    PredicateSign,
    Quantified,
    Quantifier,
    ReferenceOrToken,
    Rule,
    Sequence,
)


class BnfSyntaxError(ValueError):
    def __init__(self, message: str, line: int, column: int):
        super().__init__(f"{line}:{column}: {message}")
        self.message = message
        self.line = line
        self.column = column


class Token(typing.NamedTuple):
    kind: str
    value: str
    line: int
    column: int


_TOKEN_SPEC = [
    ("COMMENT", r"//[^\n]*"),
    ("BLOCK_COMMENT", r"/\*.*?\*/"),
    ("WS", r"\s+"),
    ("DEFINE", r"::="),
    ("LEXTERNAL", r"<<"),
    ("REXTERNAL", r">>"),
    ("STRING", r"'(?:\\.|[^'\\\n])*'|\"(?:\\.|[^\"\\\n])*\""),
    ("NUMBER", r"\d+"),
    ("ID", r"[A-Za-z_][A-Za-z0-9_]*"),
    ("PUNCT", r"[|()\[\]{}?*+&!=;]"),
]
_MASTER_RE = re.compile("|".join(f"(?P<{n}>{p})" for n, p in _TOKEN_SPEC), re.S)
_SKIP = {"COMMENT", "BLOCK_COMMENT", "WS"}

MODIFIERS = {"private", "external", "meta", "left", "inner", "upper", "fake"}


def tokenize(src: str) -> list[Token]:
    tokens: list[Token] = []
    line = 1
    line_start = 0
    pos = 0
    while pos < len(src):
        match = _MASTER_RE.match(src, pos)
        if match is None:
            raise BnfSyntaxError(f"Unexpected character {src[pos]!r}", line, pos - line_start + 1)

        kind = match.lastgroup
        assert kind is not None
        value = match.group(0)
        if kind not in _SKIP:
            if kind == "PUNCT":
                kind = value
            tokens.append(Token(kind, value, line, pos - line_start + 1))

        newlines = value.count("\n")
        if newlines > 0:
            line += newlines
            line_start = pos + value.rfind("\n") + 1
        pos = match.end()

    tokens.append(Token("EOF", "", line, pos - line_start + 1))
    return tokens


class GrammarReader:
    """A recursive-descent reader for BNF text.

        rule      := modifier* ID '::=' choice attributes? ';'?
        choice    := sequence ('|' sequence)*
        sequence  := postfix+
        postfix   := prefix ('?' | '*' | '+')*
        prefix    := ('&' | '!') prefix | atom
        atom      := STRING | NUMBER | ID | '(' choice ')' | '[' choice ']'
                   | '<<' postfix+ '>>'
        attributes := '{' (ID '=' value ';'?)* '}'
    """

    tokens: list[Token]
    index: int

    def __init__(self, src: str):
        self.tokens = tokenize(src)
        self.index = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def peek(self, offset: int) -> Token:
        index = min(self.index + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def advance(self) -> Token:
        token = self.current
        if token.kind != "EOF":
            self.index += 1
        return token

    def error(self, message: str, token: Token | None = None) -> BnfSyntaxError:
        if token is None:
            token = self.current
        found = "end of input" if token.kind == "EOF" else repr(token.value)
        return BnfSyntaxError(f"{message}, found {found}", token.line, token.column)

    def expect(self, kind: str, what: str) -> Token:
        if self.current.kind != kind:
            raise self.error(f"Expected {what}")
        return self.advance()

    def at_rule_start(self) -> bool:
        """Are we looking at `modifier* name ::=`?"""
        offset = 0
        while self.peek(offset).kind == "ID" and self.peek(offset).value in MODIFIERS:
            if self.peek(offset + 1).kind == "DEFINE":
                # A rule that happens to be named like a modifier.
                return True
            offset += 1
        return self.peek(offset).kind == "ID" and self.peek(offset + 1).kind == "DEFINE"

    def at_atom_start(self) -> bool:
        kind = self.current.kind
        if kind == "ID":
            return not self.at_rule_start()
        return kind in ("STRING", "NUMBER", "(", "[", "LEXTERNAL", "&", "!")

    def read_grammar(self) -> grammar.Grammar:
        if self.current.kind == "{":
            self.skip_block()

        rules: dict[str, Rule] = {}
        while self.current.kind != "EOF":
            start = self.current
            rule = self.read_rule()
            if rule.name in rules:
                raise BnfSyntaxError(
                    f"Found more than one rule named {rule.name}", start.line, start.column
                )
            rules[rule.name] = rule
        return grammar.Grammar(*rules.values())

    def skip_block(self):
        start = self.expect("{", "'{'")
        depth = 1
        while depth > 0:
            token = self.advance()
            if token.kind == "EOF":
                raise self.error("Unterminated attribute block", start)
            elif token.kind == "{":
                depth += 1
            elif token.kind == "}":
                depth -= 1

    def read_rule(self) -> Rule:
        modifiers: set[str] = set()
        while (
            self.current.kind == "ID"
            and self.current.value in MODIFIERS
            and self.peek(1).kind != "DEFINE"
        ):
            modifiers.add(self.advance().value)

        name = self.expect("ID", "a rule name").value
        self.expect("DEFINE", "'::='")
        body = self.read_choice()

        attributes: dict[str, grammar.AttributeValue] = {}
        if self.current.kind == "{":
            attributes = self.read_attributes()

        if self.current.kind == ";":
            self.advance()

        return Rule(
            name,
            body,
            private="private" in modifiers,
            external="external" in modifiers,
            meta="meta" in modifiers,
            attributes=attributes,
        )

    def read_attributes(self) -> dict[str, grammar.AttributeValue]:
        self.expect("{", "'{'")
        attributes: dict[str, grammar.AttributeValue] = {}
        while self.current.kind != "}":
            name = self.expect("ID", "an attribute name")
            self.expect("=", "'='")
            if name.value in attributes:
                raise self.error(f"Duplicate attribute {name.value}", name)

            value: grammar.AttributeValue
            if self.current.kind == "NUMBER":
                value = int(self.advance().value)
            elif self.current.kind == "STRING":
                value = grammar.unquote(self.advance().value)
            else:
                value = self.read_postfix()
            attributes[name.value] = value

            if self.current.kind == ";":
                self.advance()
        self.expect("}", "'}'")
        return attributes

    def read_choice(self) -> Expression:
        alternatives = [self.read_sequence()]
        while self.current.kind == "|":
            self.advance()
            alternatives.append(self.read_sequence())

        if len(alternatives) == 1:
            return alternatives[0]
        return Choice(alternatives)

    def read_sequence(self) -> Expression:
        if not self.at_atom_start():
            raise self.error("Expected an expression")

        items = [self.read_postfix()]
        while self.at_atom_start():
            items.append(self.read_postfix())

        if len(items) == 1:
            return items[0]
        return Sequence(items)

    def read_postfix(self) -> Expression:
        expression = self.read_prefix()
        while self.current.kind in ("?", "*", "+"):
            expression = Quantified(expression, Quantifier(self.advance().kind))
        return expression

    def read_prefix(self) -> Expression:
        if self.current.kind in ("&", "!"):
            sign = PredicateSign(self.advance().kind)
            return Predicate(sign, self.read_prefix())
        return self.read_atom()

    def read_atom(self) -> Expression:
        token = self.current
        match token.kind:
            case "STRING" | "NUMBER":
                self.advance()
                return Literal(token.value)

            case "ID":
                self.advance()
                return ReferenceOrToken(token.value)

            case "(":
                self.advance()
                inner = self.read_choice()
                self.expect(")", "')'")
                return Parenthesized(inner)

            case "[":
                self.advance()
                inner = self.read_choice()
                self.expect("]", "']'")
                return Parenthesized(inner, optional=True)

            case "LEXTERNAL":
                self.advance()
                arguments = [self.read_postfix()]
                while self.current.kind != "REXTERNAL":
                    if not self.at_atom_start():
                        raise self.error("Expected '>>'")
                    arguments.append(self.read_postfix())
                self.advance()
                return External(arguments)

            case _:
                raise self.error("Expected an expression")


def parse_grammar(src: str) -> grammar.Grammar:
    """Read a grammar from BNF text."""
    return GrammarReader(src).read_grammar()


def read_grammar(path: str | pathlib.Path) -> grammar.Grammar:
    """Read a grammar from a .bnf file."""
    return parse_grammar(pathlib.Path(path).read_text(encoding="utf-8"))
