from salesledger.utils.item_parser import (
    GRAMMAR_BRACKETED,
    GRAMMAR_NX,
    GRAMMAR_PLAIN,
    Modifier,
    ParsedItem,
    parse_items,
    sniff_grammar,
)


def test_bracketed_items_with_modifiers():
    items = parse_items("2 Burger [1 Cheese, 1 Bacon], 1 Fries")
    assert items == [
        ParsedItem(2, 'Burger', [Modifier(1, 'Cheese'), Modifier(1, 'Bacon')]),
        ParsedItem(1, 'Fries', []),
    ]


def test_nx_items_with_paren_modifiers():
    items = parse_items("1x Burger (Cheese), 2x Fries")
    assert items == [
        ParsedItem(1, 'Burger', [Modifier(1, 'Cheese')]),
        ParsedItem(2, 'Fries', []),
    ]


def test_bracketed_modifier_without_quantity_defaults_to_one():
    items = parse_items("Burger [Cheese, 2 Pickles]", grammar=GRAMMAR_BRACKETED)
    assert items == [ParsedItem(1, 'Burger', [Modifier(1, 'Cheese'), Modifier(2, 'Pickles')])]


def test_bracketed_newline_separated_items():
    items = parse_items("1 Latte [1 Oat Milk]\n3 Croissant")
    assert [(i.qty, i.name) for i in items] == [(1, 'Latte'), (3, 'Croissant')]
    assert items[0].modifiers == [Modifier(1, 'Oat Milk')]


def test_bracketed_and_nx_strip_notes():
    assert parse_items("2 Burger\nFries Note: no salt") == [
        ParsedItem(2, 'Burger', []),
        ParsedItem(1, 'Fries', []),
    ]
    assert parse_items("1 Burger [1 Cheese] Note: well done, cut in half") == [
        ParsedItem(1, 'Burger', [Modifier(1, 'Cheese')]),
    ]
    assert parse_items("1x Burger (Cheese) Note: rare\n2x Fries") == [
        ParsedItem(1, 'Burger', [Modifier(1, 'Cheese')]),
        ParsedItem(2, 'Fries', []),
    ]


def test_plain_list_strips_notes_and_parens():
    items = parse_items("Burger (well done)\nFries Note: no salt, extra ketchup\n2x Cola")
    assert [(i.qty, i.name) for i in items] == [(1, 'Burger'), (1, 'Fries'), (2, 'Cola')]


def test_plain_star_quantity():
    items = parse_items("Shawarma, 3*Hummus", grammar=GRAMMAR_PLAIN)
    assert [(i.qty, i.name) for i in items] == [(1, 'Shawarma'), (3, 'Hummus')]


def test_note_only_line_is_dropped():
    assert parse_items("Note: void") == []
    assert parse_items("Burger\nNotes: customer complained") == [ParsedItem(1, 'Burger', [])]


def test_empty_and_whitespace_input():
    assert parse_items(None) == []
    assert parse_items("") == []
    assert parse_items("   \n  ") == []


def test_malformed_prefix_falls_back_to_quantity_one():
    items = parse_items("x2 Burger", grammar=GRAMMAR_PLAIN)
    assert items == [ParsedItem(1, 'x2 Burger', [])]


def test_sniffing():
    assert sniff_grammar("1x Burger") == GRAMMAR_NX
    assert sniff_grammar("2 Burger [1 Cheese]") == GRAMMAR_BRACKETED
    assert sniff_grammar("Burger [Cheese]") == GRAMMAR_BRACKETED
    assert sniff_grammar("Burger, Fries") == GRAMMAR_PLAIN
    assert sniff_grammar("Burger, Fries", channel='TALABAT') == GRAMMAR_BRACKETED
