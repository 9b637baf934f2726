"""Parsers for the free-text item cell of POS exports.

Three grammars are supported:

* bracketed:  ``2 Burger [1 Cheese, 1 Bacon], 1 Fries``
* nx:         ``1x Burger (Cheese), 2x Fries``
* plain:      ``Burger\\nFries Note: no salt`` (comma or newline list)

None of them raise on malformed input; anything unrecognised degrades to
quantity 1 with the trimmed text as the name.
"""
import re
from dataclasses import dataclass, field

GRAMMAR_BRACKETED = 'bracketed'
GRAMMAR_NX = 'nx'
GRAMMAR_PLAIN = 'plain'
GRAMMARS = (GRAMMAR_BRACKETED, GRAMMAR_NX, GRAMMAR_PLAIN)


@dataclass
class Modifier:
    qty: int
    name: str


@dataclass
class ParsedItem:
    qty: int
    name: str
    modifiers: list = field(default_factory=list)


# commas/newlines that are not inside [...]
_BRACKET_SPLIT = re.compile(r"[,\n](?![^\[]*\])")
_BRACKET_ITEM = re.compile(r"^(?:(\d+)\s+)?(.*?)((?:\s*\[[^\]]*\])*)\s*$", re.S)
_BRACKET_GROUP = re.compile(r"\[([^\]]*)\]")
_LEADING_QTY = re.compile(r"^(\d+)\s+(.*)$", re.S)

# split before the next "<n>x" token only
_NX_SPLIT = re.compile(r"[,\n]\s*(?=\d+\s*[xX])")
_NX_ITEM = re.compile(r"^(\d+)\s*[xX]\s*(.*)$", re.S)
_PAREN_GROUP = re.compile(r"\(([^)]*)\)")

_PLAIN_SPLIT = re.compile(r"[,\n]")
_NOTE_SUFFIX = re.compile(r"\bnotes?\s*:.*$", re.I | re.S)
_TRAILING_PARENS = re.compile(r"(?:\s*\([^)]*\))+\s*$")
_PLAIN_QTY = (
    re.compile(r"^(\d+)\s*[xX*]\s+(.+)$", re.S),
    re.compile(r"^(\d+)\s*\*\s*(.+)$", re.S),
    re.compile(r"^(\d+)\s+(.+)$", re.S),
)

_SNIFF_NX = re.compile(r"^\s*\d+\s*[xX]\s")
_SNIFF_NUMBERED = re.compile(r"^\s*\d+\s")


def _clean(text):
    return re.sub(r"\s+", " ", text or '').strip()


def _to_qty(digits):
    try:
        return int(digits)
    except (TypeError, ValueError):
        return 1


def _parse_modifier(text):
    text = _clean(text)
    m = _LEADING_QTY.match(text)
    if m:
        return Modifier(_to_qty(m.group(1)), _clean(m.group(2)))
    return Modifier(1, text)


def _strip_notes(text):
    # a note runs to the end of its line, commas included
    return '\n'.join(_NOTE_SUFFIX.sub('', line) for line in (text or '').splitlines())


def parse_bracketed(line):
    results = []
    for segment in _BRACKET_SPLIT.split(_strip_notes(line)):
        segment = segment.strip()
        if not segment:
            continue
        m = _BRACKET_ITEM.match(segment)
        if not m:
            results.append(ParsedItem(1, _clean(segment)))
            continue
        qty = _to_qty(m.group(1)) if m.group(1) else 1
        modifiers = []
        for group in _BRACKET_GROUP.findall(m.group(3) or ''):
            for mod_text in group.split(','):
                mod = _parse_modifier(mod_text)
                if mod.name:
                    modifiers.append(mod)
        results.append(ParsedItem(qty, _clean(m.group(2)), modifiers))
    return results


def parse_nx(line):
    results = []
    for segment in _NX_SPLIT.split(_strip_notes(line)):
        segment = segment.strip().strip(',').strip()
        if not segment:
            continue
        m = _NX_ITEM.match(segment)
        if m:
            qty, rest = _to_qty(m.group(1)), m.group(2)
        else:
            qty, rest = 1, segment
        modifiers = [Modifier(1, _clean(g)) for g in _PAREN_GROUP.findall(rest) if _clean(g)]
        name = _clean(_PAREN_GROUP.sub(' ', rest))
        results.append(ParsedItem(qty, name, modifiers))
    return results


def _parse_plain_segment(segment):
    text = _clean(_TRAILING_PARENS.sub('', segment))
    for pattern in _PLAIN_QTY:
        m = pattern.match(text)
        if m:
            return ParsedItem(_to_qty(m.group(1)), _clean(m.group(2)))
    return ParsedItem(1, text)


def parse_plain(text):
    results = []
    for line in _strip_notes(text).splitlines():
        for segment in _PLAIN_SPLIT.split(line):
            if not segment.strip():
                continue
            results.append(_parse_plain_segment(segment))
    return results


def sniff_grammar(text, channel=None):
    if _SNIFF_NX.match(text):
        return GRAMMAR_NX
    if _SNIFF_NUMBERED.match(text) or '[' in text:
        return GRAMMAR_BRACKETED
    if channel == 'TALABAT':
        return GRAMMAR_BRACKETED
    return GRAMMAR_PLAIN


_PARSERS = {
    GRAMMAR_BRACKETED: parse_bracketed,
    GRAMMAR_NX: parse_nx,
    GRAMMAR_PLAIN: parse_plain,
}


def parse_items(text, grammar=None, channel=None):
    """Parse an item cell into ParsedItems, dropping zero-length names."""
    if text is None:
        return []
    text = str(text)
    if not text.strip():
        return []
    if grammar not in _PARSERS:
        grammar = sniff_grammar(text, channel)
    items = _PARSERS[grammar](text)
    return [item for item in items if item.name]
