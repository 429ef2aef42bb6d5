"""
Efetivo Navigator — Roster Store
Flat person list + derived unit → class grouping, deduplication-aware
statistics, and the table helpers (filter / sort / paginate).

The grouping is a projection of the flat list and is rebuilt after every
mutation, never the other way round.
"""
import logging
import math
from collections import Counter, OrderedDict

from engines.errors import ValidationError

FIELDS = ['NUMERO', 'POST/GRAD', 'NOME', 'LOCAL', 'FUNÇÃO', 'CLASSE']
REQUIRED_FIELDS = ('NUMERO', 'NOME', 'LOCAL', 'CLASSE')
SEARCH_FIELDS = ('NOME', 'NUMERO', 'POST/GRAD')

# Reserved "vacant slot" identifier: every occurrence is a distinct person.
SENTINEL_ID = 'xxx.xxx-x'
UNASSIGNED_UNIT = 'SEM LOCAL'
OFFICER_CLASS = 'OF'

ITEMS_PER_PAGE = 20
MAX_PAGE_BUTTONS = 5

# Hierarchical order for the rank statistics panel (highest first).
RANK_ORDER = ['Cel', 'Ten Cel', 'Maj', 'Cap', '1º Ten', '2º Ten', 'Asp',
              'ST', '1º Sgt', '2º Sgt', '3º Sgt', 'Cb', 'Sd']


def normalize_person(raw):
    """Coerce a raw record into the six-field person shape (all strings)."""
    if not isinstance(raw, dict):
        raise ValidationError('Person record must be an object')
    person = {}
    for f in FIELDS:
        v = raw.get(f)
        person[f] = '' if v is None else str(v).strip()
    return person


def validate_person(person):
    missing = [f for f in REQUIRED_FIELDS if not person.get(f)]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}", fields=missing)


def flatten(grouping):
    """{unit: {class: [person]}} -> flat list, in file order."""
    persons = []
    for unit, classes in (grouping or {}).items():
        if not isinstance(classes, dict):
            continue
        for cls, people in classes.items():
            for p in people or []:
                person = normalize_person(p)
                # The grouping keys win over stale fields inside the record
                person['LOCAL'] = person['LOCAL'] or unit
                person['CLASSE'] = person['CLASSE'] or cls
                persons.append(person)
    return persons


def group_by_unit(persons):
    grouping = OrderedDict()
    for p in persons:
        grouping.setdefault(p['LOCAL'], OrderedDict()).setdefault(p['CLASSE'], []).append(p)
    return grouping


def upsert_person(persons, person, index=None):
    """Replace the person at `index` in place, or append when index is None."""
    person = normalize_person(person)
    validate_person(person)
    if index is None:
        persons.append(person)
        return person
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(persons):
        raise ValidationError(f'Person index out of range: {index}')
    previous = persons[index]
    persons[index] = person
    logging.info(f"[roster] replaced {previous['NUMERO']} / {previous['NOME']} @ {previous['LOCAL']}")
    return person


def delete_person(persons, index):
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(persons):
        raise ValidationError(f'Person index out of range: {index}')
    return persons.pop(index)


def deduplicate(persons):
    """First occurrence per NUMERO wins; the sentinel id and blank ids are never merged."""
    seen = set()
    unique = []
    for p in persons:
        pid = (p.get('NUMERO') or '').strip()
        if not pid or pid == SENTINEL_ID:
            unique.append(p)
            continue
        if pid in seen:
            continue
        seen.add(pid)
        unique.append(p)
    return unique


def count_unique(persons):
    return len(deduplicate(persons))


def orphans(persons, unit_names):
    known = set(unit_names)
    return [p for p in persons if p['LOCAL'] not in known]


def usage_count(persons, field, value):
    return sum(1 for p in persons if p.get(field) == value)


# ══════════════════════════════════════════════════════════════
#  STATISTICS
# ══════════════════════════════════════════════════════════════

def rank_sort_key(rank):
    if rank in RANK_ORDER:
        return (0, RANK_ORDER.index(rank), rank)
    return (1, 0, rank)


def build_stats(persons):
    """Dashboard KPIs and breakdowns, all over the deduplicated roster."""
    unique = deduplicate(persons)
    total = len(unique)
    officers = sum(1 for p in unique if p['CLASSE'] == OFFICER_CLASS)

    class_count = Counter(p['CLASSE'] for p in unique)
    unit_count = Counter(p['LOCAL'] for p in unique)
    role_count = Counter(p['FUNÇÃO'] for p in unique)
    rank_count = Counter(p['POST/GRAD'] for p in unique)

    def pct(n):
        return round(n / total * 100, 1) if total else 0

    return {
        'kpis': {
            'totalEfetivo': total, 'totalOficiais': officers,
            'totalPracas': total - officers, 'totalUnidades': len(unit_count),
            'totalRegistros': len(persons),
        },
        'byClass': [{'classe': c, 'count': n, 'pct': pct(n)} for c, n in class_count.items()],
        'byUnit': [{'local': u, 'count': n}
                   for u, n in sorted(unit_count.items(), key=lambda x: (-x[1], x[0]))],
        'byRole': [{'funcao': f, 'count': n, 'pct': pct(n)}
                   for f, n in sorted(role_count.items(), key=lambda x: (-x[1], x[0]))],
        'byRank': [{'posto': r, 'count': rank_count[r], 'pct': pct(rank_count[r])}
                   for r in sorted(rank_count, key=rank_sort_key)],
    }


def build_unit_cards(persons):
    cards = []
    for unit, classes in group_by_unit(deduplicate(persons)).items():
        cards.append({
            'local': unit,
            'total': sum(len(v) for v in classes.values()),
            'classes': [{'classe': c, 'count': len(v)} for c, v in classes.items()],
        })
    return cards


# ══════════════════════════════════════════════════════════════
#  TABLE: FILTER / SORT / PAGINATE
# ══════════════════════════════════════════════════════════════

def filter_persons(persons, search='', local='', classe='', funcao=''):
    """Returns (index, person) pairs so edits can address the flat list."""
    term = (search or '').strip().lower()
    out = []
    for i, p in enumerate(persons):
        if term and not any(term in p.get(f, '').lower() for f in SEARCH_FIELDS):
            continue
        if local and p['LOCAL'] != local:
            continue
        if classe and p['CLASSE'] != classe:
            continue
        if funcao and p['FUNÇÃO'] != funcao:
            continue
        out.append((i, p))
    return out


def sort_persons(rows, column=None, direction='asc'):
    if not column:
        return list(rows)
    if column not in FIELDS:
        raise ValidationError(f'Unknown sort column: {column}')
    return sorted(rows, key=lambda r: r[1].get(column, '').lower(), reverse=(direction == 'desc'))


def page_window(current, total_pages, max_buttons=MAX_PAGE_BUTTONS):
    """Page buttons: first/last anchors with '...' gaps around a sliding window."""
    if total_pages <= 1:
        return []
    start = max(1, current - max_buttons // 2)
    end = min(total_pages, start + max_buttons - 1)
    if end - start < max_buttons - 1:
        start = max(1, end - max_buttons + 1)
    pages = []
    if start > 1:
        pages.append(1)
        if start > 2:
            pages.append('...')
    pages.extend(range(start, end + 1))
    if end < total_pages:
        if end < total_pages - 1:
            pages.append('...')
        pages.append(total_pages)
    return pages


def paginate(rows, page=1, per_page=ITEMS_PER_PAGE):
    total = len(rows)
    total_pages = max(1, math.ceil(total / per_page))
    page = min(max(1, int(page or 1)), total_pages)
    start = (page - 1) * per_page
    plural = '' if total == 1 else 's'
    return {
        'rows': [dict(p, _index=i) for i, p in rows[start:start + per_page]],
        'page': page, 'totalPages': total_pages, 'total': total,
        'pages': page_window(page, total_pages),
        'label': f"{total} registro{plural} encontrado{plural}",
    }
