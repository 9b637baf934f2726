import logging
from collections import defaultdict

from .. import config
from .numbers import ZERO, parse_numeric

logger = logging.getLogger(__name__)

STATUS_OK = 'ok'
STATUS_UNMAPPED = 'unmapped'
STATUS_ZERO_COST = 'zero_cost'


def normalize_pos_string(name):
    return ' '.join(str(name or '').split()).lower()


def _num(val):
    parsed = parse_numeric(val)
    return parsed if parsed is not None else ZERO


def resolve_recipe_costs(ingredient_rows):
    """Sum ingredient quantity x product cost per recipe_id."""
    totals = defaultdict(lambda: ZERO)
    for r in ingredient_rows:
        totals[r.get('recipe_id')] += _num(r.get('quantity')) * _num(r.get('product_cost'))
    return dict(totals)


def resolve_mapping_cost(mapping, recipe_costs):
    """Unit cost for one product_mappings row.

    A product mapping costs product.cost x mapping.quantity; a recipe mapping
    costs the sum of its ingredients.
    """
    if mapping is None:
        return {
            "status": STATUS_UNMAPPED,
            "unit_cost": ZERO,
            "source": None
        }
    if mapping.get('product_id') is not None:
        unit_cost = _num(mapping.get('product_cost')) * _num(mapping.get('quantity') or 1)
        source = 'product'
    elif mapping.get('recipe_id') is not None:
        unit_cost = recipe_costs.get(mapping.get('recipe_id'), ZERO)
        source = 'recipe'
    else:
        return {
            "status": STATUS_UNMAPPED,
            "unit_cost": ZERO,
            "source": None
        }
    return {
        "status": STATUS_OK if unit_cost > 0 else STATUS_ZERO_COST,
        "unit_cost": unit_cost,
        "source": source,
        "product_id": mapping.get('product_id'),
        "recipe_id": mapping.get('recipe_id')
    }


def build_cost_table(names, mapping_rows, ingredient_rows):
    """Resolve every name against already-fetched mapping and ingredient rows."""
    by_key = {normalize_pos_string(m.get('pos_string')): m for m in mapping_rows}
    recipe_costs = resolve_recipe_costs(ingredient_rows)
    table = {}
    for name in names:
        table[name] = resolve_mapping_cost(by_key.get(normalize_pos_string(name)), recipe_costs)
    return table


def load_cost_table(store, names):
    """Batch-resolve unit costs for a set of item/modifier names.

    Two queries in total: the mappings for every distinct name, then the
    ingredients of every recipe those mappings reference.
    """
    names = sorted({n for n in names if n})
    if not names:
        return {}
    keys = sorted({normalize_pos_string(n) for n in names})
    mapping_rows = store.fetch_product_mappings(keys)
    recipe_ids = sorted({m['recipe_id'] for m in mapping_rows if m.get('recipe_id') is not None})
    ingredient_rows = store.fetch_recipe_ingredients(recipe_ids) if recipe_ids else []
    table = build_cost_table(names, mapping_rows, ingredient_rows)
    logger.debug("resolved %d names (%d mapped)", len(names), len(mapping_rows))
    return table


class CostGapTally:
    """Counts unmapped / zero-cost instances and keeps a bounded name sample."""

    def __init__(self, sample_limit=None):
        self.sample_limit = config.ZERO_COST_SAMPLE_LIMIT if sample_limit is None else sample_limit
        self.unmapped_count = 0
        self.zero_cost_count = 0
        self.culprits = []

    @property
    def total(self):
        return self.unmapped_count + self.zero_cost_count

    def record(self, name, resolution):
        status = resolution.get('status')
        if status == STATUS_OK:
            return
        if status == STATUS_UNMAPPED:
            self.unmapped_count += 1
        else:
            self.zero_cost_count += 1
        if len(self.culprits) < self.sample_limit and not any(c['name'] == name for c in self.culprits):
            self.culprits.append({'name': name, 'reason': status})
