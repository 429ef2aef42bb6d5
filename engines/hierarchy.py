"""
Efetivo Navigator — Hierarchy Builder
Turns the configured unit list into an org-chart forest.

Units whose parent is missing become extra roots. Units caught in a parent
cycle are unreachable from any root; they are left out of the tree and
reported in `warnings` so the build always terminates.
"""
import logging
from collections import defaultdict

from engines.config_store import ordered_roles
from engines.roster import deduplicate, UNASSIGNED_UNIT


def build_forest(units, counts=None):
    """
    Args:
        units: [{'nome', 'pai'}] from the configuration store
        counts: optional {unit name: direct person count}

    Returns:
        {'roots': [node], 'warnings': [str], 'excluded': [unit name]}
        node = {'nome', 'count', 'children': [node]}
    """
    counts = counts or {}
    names = [u['nome'] for u in units]
    known = set(names)
    children = defaultdict(list)
    roots = []
    for u in units:
        parent = u.get('pai')
        if not parent:
            roots.append(u['nome'])
        elif parent not in known:
            logging.warning(f"[hierarchy] unit '{u['nome']}' references unknown parent '{parent}', shown as root")
            roots.append(u['nome'])
        else:
            children[parent].append(u['nome'])

    visited = set()

    def _node(name):
        visited.add(name)
        return {
            'nome': name,
            'count': counts.get(name, 0),
            'children': [_node(c) for c in children[name] if c not in visited],
        }

    forest = [_node(r) for r in roots]

    excluded = [n for n in names if n not in visited]
    warnings = []
    if excluded:
        warnings.append(f"Units in a parent cycle were left out of the chart: {', '.join(excluded)}")
        logging.warning(f"[hierarchy] cycle detected, excluded: {excluded}")
    return {'roots': forest, 'warnings': warnings, 'excluded': excluded}


def direct_counts(persons):
    counts = defaultdict(int)
    for p in deduplicate(persons):
        counts[p['LOCAL']] += 1
    return dict(counts)


def build_org_chart(config, persons):
    """Forest with per-unit direct counts, plus a synthetic bucket for orphans."""
    counts = direct_counts(persons)
    result = build_forest(config['locais'], counts)
    known = {u['nome'] for u in config['locais']}
    orphan_count = sum(n for unit, n in counts.items() if unit not in known)
    if orphan_count:
        result['roots'].append({'nome': UNASSIGNED_UNIT, 'count': orphan_count,
                                'children': [], 'synthetic': True})
    return result


def unit_details(config, persons, unit):
    """People of one unit grouped by role, in role display order."""
    known_units = {u['nome'] for u in config['locais']}
    if unit == UNASSIGNED_UNIT:
        members = [p for p in deduplicate(persons) if p['LOCAL'] not in known_units]
    else:
        members = [p for p in deduplicate(persons) if p['LOCAL'] == unit]

    by_role = defaultdict(list)
    for p in members:
        by_role[p['FUNÇÃO']].append(p)

    role_order = [r['nome'] for r in ordered_roles(config)]
    colors = {r['nome']: r['cor'] for r in config['funcoes']}
    extra = sorted(r for r in by_role if r not in role_order)
    sections = []
    for role in role_order + extra:
        if by_role.get(role):
            sections.append({'funcao': role, 'cor': colors.get(role), 'count': len(by_role[role]),
                             'pessoas': by_role[role]})
    return {'local': unit, 'total': len(members), 'sections': sections}
