"""
Efetivo Navigator — Configuration Store
User-editable taxonomy: units (with optional parent), roles (ordered, coloured),
rank classes and rank labels. Source of truth for dropdowns, filters and the
org-chart hierarchy.

Config shape:
    {'locais':  [{'nome': str, 'pai': str | None}],
     'funcoes': [{'nome': str, 'ordem': int, 'cor': str}],
     'classes': [str],
     'postos':  [str]}

Every mutator validates first and only then touches state, so a raised error
means nothing changed.
"""
import logging
import re

from engines.errors import (
    ValidationError, DuplicateNameError, InvalidParentError, SelfParentError,
    CycleError, InUseError, HasChildrenError,
)
from engines.roster import usage_count

DEFAULT_ROLE_COLOR = '#718096'
ROLE_COLORS = ['#1a365d', '#3182ce', '#38a169', '#ed8936', '#805ad5', '#d53f8c', '#2c7a7b']

# Naming convention used when seeding units from the roster:
# (pattern, canonical parent). Applied only if the parent itself exists.
UNIT_PREFIX_PARENTS = [
    (re.compile(r'^SDTS\d+$'), 'SDTS'),
    (re.compile(r'^NTS$'), 'SDTS'),
    (re.compile(r'^(NTS|NST)\s+\S'), 'NTS'),
]

# flat set key -> person field it is referenced by
FLAT_SETS = {'classes': 'CLASSE', 'postos': 'POST/GRAD'}


def empty_config():
    return {'locais': [], 'funcoes': [], 'classes': [], 'postos': []}


def _clean(name, what='name'):
    name = '' if name is None else str(name).strip()
    if not name:
        raise ValidationError(f'{what} is required')
    return name


def _parent(value):
    value = '' if value is None else str(value).strip()
    return value or None


# ══════════════════════════════════════════════════════════════
#  LOAD-TIME MIGRATION / SEEDING
# ══════════════════════════════════════════════════════════════

def migrate_config(raw):
    """Normalise a stored config (legacy bare strings included) to the structured form."""
    raw = raw or {}
    config = empty_config()

    seen = set()
    for entry in raw.get('locais') or []:
        if isinstance(entry, dict):
            name, parent = str(entry.get('nome') or '').strip(), _parent(entry.get('pai'))
        else:
            name, parent = str(entry or '').strip(), None
        if name and name not in seen:
            seen.add(name)
            config['locais'].append({'nome': name, 'pai': parent})

    roles = []
    for i, entry in enumerate(raw.get('funcoes') or []):
        if isinstance(entry, dict):
            name = str(entry.get('nome') or '').strip()
            order = entry.get('ordem')
            color = entry.get('cor') or ROLE_COLORS[i % len(ROLE_COLORS)]
        else:
            name, order, color = str(entry or '').strip(), None, ROLE_COLORS[i % len(ROLE_COLORS)]
        if name and name not in {r['nome'] for r in roles}:
            roles.append({'nome': name, 'ordem': order, 'cor': color, '_pos': i})
    # Missing / duplicated orders fall back to stored position
    roles.sort(key=lambda r: (r['ordem'] if isinstance(r['ordem'], int) else float('inf'), r['_pos']))
    config['funcoes'] = [{'nome': r['nome'], 'ordem': n, 'cor': r['cor']} for n, r in enumerate(roles, 1)]

    for key in FLAT_SETS:
        values = []
        for entry in raw.get(key) or []:
            v = entry.get('nome') if isinstance(entry, dict) else entry
            v = str(v or '').strip()
            if v and v not in values:
                values.append(v)
        config[key] = values
    return config


def _canonical_parent(name, names):
    for pattern, parent in UNIT_PREFIX_PARENTS:
        if pattern.match(name) and parent in names and parent != name:
            return parent
    return None


def seed_config(persons):
    """Derive a first configuration from the distinct values in the roster."""
    units = sorted({p['LOCAL'] for p in persons if p['LOCAL']})
    roles = sorted({p['FUNÇÃO'] for p in persons if p['FUNÇÃO']})
    names = set(units)
    config = empty_config()
    config['locais'] = [{'nome': u, 'pai': _canonical_parent(u, names)} for u in units]
    config['funcoes'] = [{'nome': r, 'ordem': i, 'cor': ROLE_COLORS[(i - 1) % len(ROLE_COLORS)]}
                         for i, r in enumerate(roles, 1)]
    config['classes'] = sorted({p['CLASSE'] for p in persons if p['CLASSE']})
    config['postos'] = sorted({p['POST/GRAD'] for p in persons if p['POST/GRAD']})
    logging.info(f"[config] seeded {len(units)} units, {len(roles)} roles, "
                 f"{len(config['classes'])} classes, {len(config['postos'])} ranks from roster")
    return config


def merge_missing(config, persons):
    """Add roster values the configuration does not know yet (imports)."""
    seeded = seed_config(persons)
    known = set(unit_names(config))
    for u in seeded['locais']:
        # seeded parents always name a unit from the same roster
        if u['nome'] not in known:
            config['locais'].append(dict(u))
    for r in seeded['funcoes']:
        if not find_role(config, r['nome']):
            add_role(config, r['nome'], r['cor'])
    for key in FLAT_SETS:
        for v in seeded[key]:
            if v not in config[key]:
                config[key].append(v)
    return config


# ══════════════════════════════════════════════════════════════
#  UNITS
# ══════════════════════════════════════════════════════════════

def unit_names(config):
    return [u['nome'] for u in config['locais']]


def find_unit(config, name):
    for u in config['locais']:
        if u['nome'] == name:
            return u
    return None


def ancestors(config, name):
    """Parent chain of `name` (nearest first). Stops on a repeated node."""
    parents = {u['nome']: u['pai'] for u in config['locais']}
    chain, seen = [], {name}
    cur = parents.get(name)
    while cur and cur not in seen:
        chain.append(cur)
        seen.add(cur)
        cur = parents.get(cur)
    return chain


def add_unit(config, name, parent=None):
    name, parent = _clean(name, 'Unit name'), _parent(parent)
    if find_unit(config, name):
        raise DuplicateNameError(f"Unit '{name}' already exists")
    if parent == name:
        raise SelfParentError(f"Unit '{name}' cannot be its own parent")
    if parent and not find_unit(config, parent):
        raise InvalidParentError(f"Parent unit '{parent}' does not exist")
    unit = {'nome': name, 'pai': parent}
    config['locais'].append(unit)
    return unit


def edit_unit(config, persons, old_name, new_name, new_parent=None):
    unit = find_unit(config, old_name)
    if unit is None:
        raise ValidationError(f"Unit '{old_name}' does not exist")
    new_name, new_parent = _clean(new_name, 'Unit name'), _parent(new_parent)
    if new_name != old_name and find_unit(config, new_name):
        raise DuplicateNameError(f"Unit '{new_name}' already exists")
    if new_parent in (old_name, new_name):
        raise SelfParentError(f"Unit '{new_name}' cannot be its own parent")
    if new_parent and not find_unit(config, new_parent):
        raise InvalidParentError(f"Parent unit '{new_parent}' does not exist")
    if new_parent and old_name in ancestors(config, new_parent):
        raise CycleError(f"Moving '{new_name}' under '{new_parent}' would create a cycle",
                         parent=new_parent)

    unit['nome'], unit['pai'] = new_name, new_parent
    if new_name != old_name:
        for u in config['locais']:
            if u['pai'] == old_name:
                u['pai'] = new_name
        moved = 0
        for p in persons:
            if p['LOCAL'] == old_name:
                p['LOCAL'] = new_name
                moved += 1
        logging.info(f"[config] unit '{old_name}' renamed to '{new_name}' ({moved} person(s) updated)")
    return unit


def delete_unit(config, persons, name):
    if find_unit(config, name) is None:
        raise ValidationError(f"Unit '{name}' does not exist")
    children = [u['nome'] for u in config['locais'] if u['pai'] == name]
    if children:
        raise HasChildrenError(f"Unit '{name}' has child units", children=children)
    used = usage_count(persons, 'LOCAL', name)
    if used:
        raise InUseError(f"Unit '{name}' is assigned to {used} person(s)", count=used)
    config['locais'] = [u for u in config['locais'] if u['nome'] != name]


# ══════════════════════════════════════════════════════════════
#  ROLES
# ══════════════════════════════════════════════════════════════

def ordered_roles(config):
    return sorted(config['funcoes'], key=lambda r: r['ordem'])


def find_role(config, name):
    for r in config['funcoes']:
        if r['nome'] == name:
            return r
    return None


def _recompact_roles(config):
    for i, r in enumerate(ordered_roles(config), 1):
        r['ordem'] = i


def add_role(config, name, color=None):
    name = _clean(name, 'Role name')
    if find_role(config, name):
        raise DuplicateNameError(f"Role '{name}' already exists")
    order = max((r['ordem'] for r in config['funcoes']), default=0) + 1
    role = {'nome': name, 'ordem': order, 'cor': color or DEFAULT_ROLE_COLOR}
    config['funcoes'].append(role)
    return role


def edit_role(config, persons, old_name, new_name, color=None):
    role = find_role(config, old_name)
    if role is None:
        raise ValidationError(f"Role '{old_name}' does not exist")
    new_name = _clean(new_name, 'Role name')
    if new_name != old_name and find_role(config, new_name):
        raise DuplicateNameError(f"Role '{new_name}' already exists")
    role['nome'] = new_name
    if color:
        role['cor'] = color
    if new_name != old_name:
        for p in persons:
            if p['FUNÇÃO'] == old_name:
                p['FUNÇÃO'] = new_name
    return role


def delete_role(config, persons, name):
    if find_role(config, name) is None:
        raise ValidationError(f"Role '{name}' does not exist")
    used = usage_count(persons, 'FUNÇÃO', name)
    if used:
        raise InUseError(f"Role '{name}' is assigned to {used} person(s)", count=used)
    config['funcoes'] = [r for r in config['funcoes'] if r['nome'] != name]
    _recompact_roles(config)


def move_role(config, name, direction):
    if direction not in ('up', 'down'):
        raise ValidationError(f"Direction must be 'up' or 'down', got {direction!r}")
    roles = ordered_roles(config)
    idx = next((i for i, r in enumerate(roles) if r['nome'] == name), None)
    if idx is None:
        raise ValidationError(f"Role '{name}' does not exist")
    other = idx - 1 if direction == 'up' else idx + 1
    if 0 <= other < len(roles):
        roles[idx]['ordem'], roles[other]['ordem'] = roles[other]['ordem'], roles[idx]['ordem']
    return ordered_roles(config)


# ══════════════════════════════════════════════════════════════
#  FLAT SETS (rank classes, rank labels)
# ══════════════════════════════════════════════════════════════

def _flat_key(key):
    if key not in FLAT_SETS:
        raise ValidationError(f'Unknown configuration set: {key}')
    return FLAT_SETS[key]


def add_value(config, key, value):
    _flat_key(key)
    value = _clean(value, 'Value')
    if value in config[key]:
        raise DuplicateNameError(f"'{value}' already exists in {key}")
    config[key].append(value)
    return value


def edit_value(config, persons, key, old, new):
    field = _flat_key(key)
    if old not in config[key]:
        raise ValidationError(f"'{old}' does not exist in {key}")
    new = _clean(new, 'Value')
    if new != old and new in config[key]:
        raise DuplicateNameError(f"'{new}' already exists in {key}")
    config[key][config[key].index(old)] = new
    for p in persons:
        if p[field] == old:
            p[field] = new
    return new


def delete_value(config, persons, key, value):
    field = _flat_key(key)
    if value not in config[key]:
        raise ValidationError(f"'{value}' does not exist in {key}")
    used = usage_count(persons, field, value)
    if used:
        raise InUseError(f"'{value}' is used by {used} person(s)", count=used)
    config[key].remove(value)


def filter_options(config):
    return {
        'locais': unit_names(config),
        'classes': list(config['classes']),
        'funcoes': [r['nome'] for r in ordered_roles(config)],
        'postos': list(config['postos']),
    }
