"""
Efetivo Navigator — DDQOD Reconciliation Engine
Predicted establishment ("previsto") vs. actual staffing ("real"), rolled up
by named unit groups.

  1. category_of   — rank label + class → normalised staffing category
  2. compute_actual / compute_predicted — per group, per category
  3. reconcile     — diff, status, group and grand-total deficit/surplus

DDQOD state shape:
    {'grupos':  [{'id': str, 'nome': str, 'locais': [unit]}],
     'previsto': {unit: {category: int}},
     'info':    {'descricao': str, 'ultimaAtualizacao': str | None}}
"""
import logging
import uuid
from datetime import datetime

from engines.errors import ValidationError, DuplicateNameError
from engines.roster import deduplicate

# Civilian specialists: class code overrides whatever rank label they carry
ENLISTED_EQUIV_CLASS = 'QPE'
OFFICER_EQUIV_CLASS = 'QOE'

RANK_CATEGORY = {
    'Cel': 'MAJ', 'Ten Cel': 'MAJ', 'Maj': 'MAJ',
    'Cap': 'CAP',
    '1º Ten': 'TEN', '2º Ten': 'TEN', 'Asp': 'TEN',
    'ST': 'SGT', '1º Sgt': 'SGT', '2º Sgt': 'SGT', '3º Sgt': 'SGT',
    'Cb': 'CB/SD', 'Sd': 'CB/SD',
}

CATEGORIES = ['MAJ', 'CAP', 'TEN', OFFICER_EQUIV_CLASS, 'SGT', 'CB/SD', ENLISTED_EQUIV_CLASS]

PERCENT_CAP = 150


def empty_ddqod():
    return {'grupos': [], 'previsto': {}, 'info': {'descricao': '', 'ultimaAtualizacao': None}}


def category_of(rank, rank_class):
    if rank_class == ENLISTED_EQUIV_CLASS:
        return ENLISTED_EQUIV_CLASS
    if rank_class == OFFICER_EQUIV_CLASS:
        return OFFICER_EQUIV_CLASS
    return RANK_CATEGORY.get(rank, rank)


def percent_for_display(actual, predicted):
    if predicted > 0:
        return min(PERCENT_CAP, round(actual / predicted * 100, 1))
    return PERCENT_CAP if actual > 0 else 0


def _category_vector(extra=()):
    cats = list(CATEGORIES)
    for c in extra:
        if c and c not in cats:
            cats.append(c)
    return cats


def compute_actual(groups, persons):
    """{group id: {category: count}} over the deduplicated roster."""
    unique = deduplicate(persons)
    result = {}
    for g in groups:
        members = set(g['locais'])
        tally = dict.fromkeys(CATEGORIES, 0)
        for p in unique:
            if p['LOCAL'] in members:
                cat = category_of(p['POST/GRAD'], p['CLASSE'])
                tally[cat] = tally.get(cat, 0) + 1
        result[g['id']] = tally
    return result


def compute_predicted(groups, predicted):
    result = {}
    for g in groups:
        tally = dict.fromkeys(CATEGORIES, 0)
        for unit in g['locais']:
            for cat, qty in (predicted.get(unit) or {}).items():
                tally[cat] = tally.get(cat, 0) + int(qty or 0)
        result[g['id']] = tally
    return result


def _status(diff):
    if diff < 0:
        return 'deficit'
    if diff > 0:
        return 'surplus'
    return 'ok'


def reconcile(groups, predicted, persons):
    actual = compute_actual(groups, persons)
    planned = compute_predicted(groups, predicted)
    extra = set()
    for tallies in (actual, planned):
        for t in tallies.values():
            extra.update(t)
    categories = _category_vector(sorted(extra - set(CATEGORIES)))

    by_cat = {c: {'previsto': 0, 'real': 0, 'diff': 0} for c in categories}
    group_rows = []
    grand = {'previsto': 0, 'real': 0, 'deficit': 0, 'surplus': 0}

    for g in groups:
        a, p = actual[g['id']], planned[g['id']]
        rows, deficit, surplus = [], 0, 0
        for c in categories:
            real, prev = a.get(c, 0), p.get(c, 0)
            diff = real - prev
            if diff < 0:
                deficit += -diff
            elif diff > 0:
                surplus += diff
            rows.append({'categoria': c, 'previsto': prev, 'real': real, 'diff': diff,
                         'status': _status(diff), 'pct': percent_for_display(real, prev)})
            by_cat[c]['previsto'] += prev
            by_cat[c]['real'] += real
            by_cat[c]['diff'] += diff

        total_prev, total_real = sum(p.values()), sum(a.values())
        group_rows.append({
            'id': g['id'], 'nome': g['nome'], 'locais': list(g['locais']),
            'rows': rows, 'previsto': total_prev, 'real': total_real,
            'deficit': deficit, 'surplus': surplus,
            'status': 'deficit' if deficit else 'surplus' if surplus else 'ok',
            'pct': percent_for_display(total_real, total_prev),
        })
        grand['previsto'] += total_prev
        grand['real'] += total_real
        grand['deficit'] += deficit
        grand['surplus'] += surplus

    grand['pct'] = percent_for_display(grand['real'], grand['previsto'])
    return {
        'categories': categories,
        'groups': group_rows,
        'byCategory': [dict(v, categoria=c, status=_status(v['diff'])) for c, v in by_cat.items()],
        'totals': grand,
    }


# ══════════════════════════════════════════════════════════════
#  MUTATIONS (groups, predicted table, info)
# ══════════════════════════════════════════════════════════════

def touch(ddqod):
    ddqod['info']['ultimaAtualizacao'] = datetime.now().isoformat(timespec='seconds')


def find_group(ddqod, group_id):
    for g in ddqod['grupos']:
        if g['id'] == group_id:
            return g
    return None


def _validate_group(ddqod, name, units, known_units, group_id=None):
    name = '' if name is None else str(name).strip()
    if not name:
        raise ValidationError('Group name is required')
    if any(g['nome'] == name and g['id'] != group_id for g in ddqod['grupos']):
        raise DuplicateNameError(f"Group '{name}' already exists")
    clean = []
    for u in units or []:
        u = str(u).strip()
        if u and u not in clean:
            clean.append(u)
    unknown = [u for u in clean if u not in known_units]
    if unknown:
        raise ValidationError(f"Unknown unit(s): {', '.join(unknown)}", units=unknown)
    return name, clean


def add_group(ddqod, name, units, known_units):
    name, units = _validate_group(ddqod, name, units, known_units)
    group = {'id': uuid.uuid4().hex[:8], 'nome': name, 'locais': units}
    ddqod['grupos'].append(group)
    touch(ddqod)
    return group


def edit_group(ddqod, group_id, name, units, known_units):
    group = find_group(ddqod, group_id)
    if group is None:
        raise ValidationError(f"Group '{group_id}' does not exist")
    group['nome'], group['locais'] = _validate_group(ddqod, name, units, known_units, group_id)
    touch(ddqod)
    return group


def delete_group(ddqod, group_id):
    if find_group(ddqod, group_id) is None:
        raise ValidationError(f"Group '{group_id}' does not exist")
    ddqod['grupos'] = [g for g in ddqod['grupos'] if g['id'] != group_id]
    touch(ddqod)


def coerce_quantity(value):
    try:
        qty = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Quantity must be a number, got {value!r}')
    if qty < 0 or qty != int(qty):
        raise ValidationError(f'Quantity must be a non-negative integer, got {value!r}')
    return int(qty)


def set_predicted(ddqod, unit, category, value, known_units):
    unit = '' if unit is None else str(unit).strip()
    category = '' if category is None else str(category).strip()
    if unit not in known_units:
        raise ValidationError(f"Unknown unit '{unit}'")
    if not category:
        raise ValidationError('Category is required')
    qty = coerce_quantity(value)
    table = ddqod['previsto']
    if qty:
        table.setdefault(unit, {})[category] = qty
    elif unit in table:
        table[unit].pop(category, None)
        if not table[unit]:
            del table[unit]
    touch(ddqod)
    return qty


def set_info(ddqod, descricao):
    ddqod['info']['descricao'] = '' if descricao is None else str(descricao)
    touch(ddqod)


def rename_unit(ddqod, old, new):
    """Keep group membership and predicted keys in step with a unit rename."""
    if old == new:
        return
    for g in ddqod['grupos']:
        g['locais'] = [new if u == old else u for u in g['locais']]
    if old in ddqod['previsto']:
        ddqod['previsto'].setdefault(new, {}).update(ddqod['previsto'].pop(old))


def drop_unit(ddqod, name):
    for g in ddqod['grupos']:
        if name in g['locais']:
            g['locais'] = [u for u in g['locais'] if u != name]
    if ddqod['previsto'].pop(name, None) is not None:
        logging.info(f"[ddqod] predicted entries for deleted unit '{name}' removed")


def default_groups(config):
    """One group per root unit, holding the root and all its descendants."""
    names = {u['nome'] for u in config['locais']}
    children = {}
    for u in config['locais']:
        if u['pai'] in names:
            children.setdefault(u['pai'], []).append(u['nome'])
    groups = []
    for u in config['locais']:
        if u['pai'] in names:
            continue
        members, stack = [], [u['nome']]
        while stack:
            name = stack.pop(0)
            if name in members:
                continue
            members.append(name)
            stack.extend(children.get(name, []))
        groups.append({'id': uuid.uuid4().hex[:8], 'nome': u['nome'], 'locais': members})
    return groups
