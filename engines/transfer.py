"""
Efetivo Navigator — Import / Export
Portable formats for the roster and the DDQOD bundle:
  - full backup JSON (roster + configuration + DDQOD), or a bare roster file
  - filtered roster CSV (fixed 6-column header, every field quoted)
  - DDQOD bundle as JSON {info, grupos, previsto, exportDate, version}
  - DDQOD workbook (sheets Grupos / Info / Previsto) read & written with openpyxl
"""
import csv
import io
import logging
import re
import uuid
from datetime import datetime

import openpyxl
from openpyxl.styles import Font, PatternFill, Alignment, Border, Side

from engines.errors import ImportFormatError, ValidationError
from engines.roster import FIELDS, REQUIRED_FIELDS, flatten, group_by_unit

BUNDLE_VERSION = '2.0'

# ── Spreadsheet column aliases (matched case/accents-insensitively) ──
UNIT_ALIASES = ('local', 'unidade', 'unit', 'om', 'secao', 'locais')
CATEGORY_ALIASES = ('categoria', 'category', 'cat', 'posto', 'posto/grad', 'post/grad')
QUANTITY_ALIASES = ('quantidade', 'qtd', 'qtde', 'quantity', 'qty', 'previsto', 'efetivo previsto')
GROUP_ALIASES = ('grupo', 'group', 'nome', 'name', 'nome do grupo')
GROUP_ID_ALIASES = ('id', 'codigo', 'code')
INFO_KEY_ALIASES = ('campo', 'chave', 'key', 'parametro', 'parameter')
INFO_VALUE_ALIASES = ('valor', 'value')

SHEET_GRUPOS = 'Grupos'
SHEET_INFO = 'Info'
SHEET_PREVISTO = 'Previsto'
SHEET_RECONCILIACAO = 'Reconciliacao'

_ACCENTS = str.maketrans('áàâãéêíóôõúçÁÀÂÃÉÊÍÓÔÕÚÇ', 'aaaaeeiooouc' 'AAAAEEIOOOUC')


def _norm(label):
    return re.sub(r'\s+', ' ', str(label or '').translate(_ACCENTS).strip().lower())


def _find_column(headers, aliases):
    normalized = {_norm(h): h for h in headers}
    for alias in aliases:
        if alias in normalized:
            return normalized[alias]
    return None


# ══════════════════════════════════════════════════════════════
#  ROSTER
# ══════════════════════════════════════════════════════════════

def export_roster_bundle(persons, config, ddqod):
    return {
        'dados': group_by_unit(persons),
        'config': config,
        'ddqod': {'grupos': ddqod['grupos'], 'previsto': ddqod['previsto'], 'info': ddqod['info']},
        'exportDate': datetime.now().isoformat(timespec='seconds'),
        'version': BUNDLE_VERSION,
    }


def _looks_like_grouping(payload):
    return isinstance(payload, dict) and payload and all(
        isinstance(classes, dict) and all(isinstance(v, list) for v in classes.values())
        for classes in payload.values())


def _check_config(config):
    if not isinstance(config, dict):
        raise ImportFormatError("Backup 'config' must be an object")
    bad = [k for k in ('locais', 'funcoes', 'classes', 'postos')
           if k in config and config[k] is not None and not isinstance(config[k], list)]
    if bad:
        raise ImportFormatError(f"Backup 'config' entries must be lists: {', '.join(bad)}", keys=bad)


def parse_roster_import(payload):
    """
    Accepts a backup bundle ({'dados', 'config'?, 'ddqod'?}) or a bare
    {unit: {class: [person]}} roster. Returns (persons, config | None, ddqod | None).
    Every record must carry the fields the person form requires.
    """
    if isinstance(payload, dict) and 'dados' in payload:
        grouping, config, ddqod = payload['dados'], payload.get('config'), payload.get('ddqod')
    else:
        grouping, config, ddqod = payload, None, None
    if not _looks_like_grouping(grouping):
        raise ImportFormatError('Roster file must map unit → class → list of people')
    if config is not None:
        _check_config(config)
    try:
        persons = flatten(grouping)
    except ValidationError as e:
        raise ImportFormatError(f'Roster file has a malformed record: {e.message}')
    if not persons:
        raise ImportFormatError('Roster file contains no people')
    invalid = []
    for n, p in enumerate(persons, 1):
        missing = [f for f in REQUIRED_FIELDS if not p[f]]
        if missing:
            invalid.append(f"#{n} {p['NOME'] or '?'} @ {p['LOCAL']} (missing {', '.join(missing)})")
    if invalid:
        raise ImportFormatError(f"{len(invalid)} record(s) lack required fields: {'; '.join(invalid[:5])}",
                                records=invalid)
    if ddqod is not None:
        ddqod = parse_ddqod_json(ddqod, require_rows=False)
    return persons, config, ddqod


def export_csv(persons):
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(FIELDS)
    for p in persons:
        writer.writerow([p.get(f, '') for f in FIELDS])
    return buf.getvalue()


def csv_filename(today=None):
    return f"efetivo_{(today or datetime.now()).strftime('%Y-%m-%d')}.csv"


# ══════════════════════════════════════════════════════════════
#  DDQOD JSON
# ══════════════════════════════════════════════════════════════

def export_ddqod(ddqod):
    return {
        'info': dict(ddqod['info']),
        'grupos': [dict(g, locais=list(g['locais'])) for g in ddqod['grupos']],
        'previsto': {u: dict(c) for u, c in ddqod['previsto'].items()},
        'exportDate': datetime.now().isoformat(timespec='seconds'),
        'version': BUNDLE_VERSION,
    }


def _positive_int(value):
    try:
        qty = float(value)
    except (TypeError, ValueError):
        return 0
    return int(qty) if qty > 0 and qty == int(qty) else 0


def parse_previsto(raw):
    previsto, rows = {}, 0
    for unit, cats in raw.items():
        unit = str(unit).strip()
        if not unit or not isinstance(cats, dict):
            continue
        for cat, qty in cats.items():
            cat, qty = str(cat).strip(), _positive_int(qty)
            if cat and qty:
                previsto.setdefault(unit, {})[cat] = previsto.get(unit, {}).get(cat, 0) + qty
                rows += 1
    return previsto, rows


def parse_groups(raw):
    groups, names = [], set()
    for g in raw or []:
        if not isinstance(g, dict):
            continue
        name = str(g.get('nome') or '').strip()
        if not name or name in names:
            continue
        names.add(name)
        units = g.get('locais') or []
        if isinstance(units, str):
            units = re.split(r'[,;]', units)
        groups.append({'id': str(g.get('id') or uuid.uuid4().hex[:8]), 'nome': name,
                       'locais': [u for u in dict.fromkeys(str(x).strip() for x in units) if u]})
    return groups


def parse_ddqod_json(payload, require_rows=True):
    if not isinstance(payload, dict) or not isinstance(payload.get('previsto'), dict):
        raise ImportFormatError("DDQOD file must contain a 'previsto' object")
    if 'grupos' in payload and not isinstance(payload['grupos'], list):
        raise ImportFormatError("'grupos' must be a list")
    previsto, rows = parse_previsto(payload['previsto'])
    if require_rows and not rows:
        raise ImportFormatError('DDQOD file has no valid predicted entries')
    info = payload.get('info') if isinstance(payload.get('info'), dict) else {}
    return {
        'grupos': parse_groups(payload['grupos']) if 'grupos' in payload else None,
        'previsto': previsto,
        'info': {'descricao': str(info.get('descricao') or ''),
                 'ultimaAtualizacao': info.get('ultimaAtualizacao')},
    }


# ══════════════════════════════════════════════════════════════
#  DDQOD WORKBOOK
# ══════════════════════════════════════════════════════════════

def read_xlsx_sheet(wb, sheet_name=None):
    ws = wb[sheet_name] if sheet_name else wb.active
    rows = list(ws.iter_rows(values_only=True))
    if len(rows) < 2:
        return []
    headers = [str(h).strip() if h else f'col_{i}' for i, h in enumerate(rows[0])]
    return [dict(zip(headers, row)) for row in rows[1:] if any(v not in (None, '') for v in row)]


def _sheet(wb, name):
    for title in wb.sheetnames:
        if _norm(title) == _norm(name):
            return title
    return None


def _read_previsto_rows(rows):
    if not rows:
        return {}, 0
    headers = list(rows[0].keys())
    ucol, ccol, qcol = (_find_column(headers, UNIT_ALIASES), _find_column(headers, CATEGORY_ALIASES),
                        _find_column(headers, QUANTITY_ALIASES))
    if not (ucol and ccol and qcol):
        raise ImportFormatError('Predicted sheet needs unit, category and quantity columns',
                                headers=headers)
    previsto, valid = {}, 0
    for r in rows:
        unit, cat = str(r.get(ucol) or '').strip(), str(r.get(ccol) or '').strip()
        qty = _positive_int(r.get(qcol))
        if not unit or not cat or not qty:
            continue
        previsto.setdefault(unit, {})
        previsto[unit][cat] = previsto[unit].get(cat, 0) + qty
        valid += 1
    return previsto, valid


def _read_group_rows(rows):
    if not rows:
        return []
    headers = list(rows[0].keys())
    gcol, ucol = _find_column(headers, GROUP_ALIASES), _find_column(headers, UNIT_ALIASES)
    icol = _find_column(headers, GROUP_ID_ALIASES)
    if not (gcol and ucol):
        raise ImportFormatError('Groups sheet needs group and unit columns', headers=headers)
    merged = {}
    for r in rows:
        name = str(r.get(gcol) or '').strip()
        if not name:
            continue
        # a row with an empty unit still declares the group
        g = merged.setdefault(name, {'id': str(r.get(icol) or '').strip() if icol else '',
                                     'nome': name, 'locais': []})
        for u in re.split(r'[,;]', str(r.get(ucol) or '')):
            u = u.strip()
            if u and u not in g['locais']:
                g['locais'].append(u)
    return parse_groups(merged.values())


def _read_info_rows(rows):
    info = {'descricao': '', 'ultimaAtualizacao': None}
    if not rows:
        return info
    headers = list(rows[0].keys())
    dcol = _find_column(headers, ('descricao', 'description'))
    if dcol:
        info['descricao'] = str(rows[0].get(dcol) or '')
        ucol = _find_column(headers, ('ultimaatualizacao', 'ultima atualizacao', 'updated'))
        if ucol and rows[0].get(ucol):
            info['ultimaAtualizacao'] = str(rows[0][ucol])
        return info
    kcol, vcol = _find_column(headers, INFO_KEY_ALIASES), _find_column(headers, INFO_VALUE_ALIASES)
    if not (kcol and vcol):
        return info
    for r in rows:
        key = _norm(r.get(kcol)).replace(' ', '')
        if key in ('descricao', 'description'):
            info['descricao'] = str(r.get(vcol) or '')
        elif key in ('ultimaatualizacao', 'updated'):
            info['ultimaAtualizacao'] = str(r.get(vcol) or '') or None
    return info


def read_ddqod_workbook(source):
    """`source` is a path or binary file object."""
    try:
        wb = openpyxl.load_workbook(source, read_only=True, data_only=True)
    except Exception as e:
        raise ImportFormatError(f'Not a readable workbook: {e}')
    try:
        prev_sheet = _sheet(wb, SHEET_PREVISTO)
        if not prev_sheet:
            raise ImportFormatError(f"Workbook has no '{SHEET_PREVISTO}' sheet", sheets=wb.sheetnames)
        previsto, valid = _read_previsto_rows(read_xlsx_sheet(wb, prev_sheet))
        if not valid:
            raise ImportFormatError('Predicted sheet has no valid rows')
        grp_sheet, info_sheet = _sheet(wb, SHEET_GRUPOS), _sheet(wb, SHEET_INFO)
        groups = _read_group_rows(read_xlsx_sheet(wb, grp_sheet)) if grp_sheet else None
        info = _read_info_rows(read_xlsx_sheet(wb, info_sheet)) if info_sheet else {'descricao': '', 'ultimaAtualizacao': None}
    finally:
        wb.close()
    logging.info(f"[transfer] workbook import: {valid} predicted row(s), "
                 f"{len(groups) if groups is not None else 'no'} group(s)")
    return {'grupos': groups, 'previsto': previsto, 'info': info}


def _ws_write(ws, headers, rows):
    hf = Font(bold=True, color='FFFFFF', size=11)
    hfill = PatternFill(start_color='1A365D', end_color='1A365D', fill_type='solid')
    tb = Border(left=Side(style='thin'), right=Side(style='thin'),
                top=Side(style='thin'), bottom=Side(style='thin'))
    for c, h in enumerate(headers, 1):
        cell = ws.cell(row=1, column=c, value=h)
        cell.font = hf; cell.fill = hfill; cell.alignment = Alignment(horizontal='center'); cell.border = tb
    for r, row in enumerate(rows, 2):
        for c, val in enumerate(row, 1):
            ws.cell(row=r, column=c, value=val).border = tb
    for col in ws.columns:
        ml = max(len(str(cell.value or '')) for cell in col)
        ws.column_dimensions[col[0].column_letter].width = min(ml + 2, 40)


def write_ddqod_workbook(ddqod, reconciliation=None):
    """Returns the workbook as bytes."""
    wb = openpyxl.Workbook()
    ws = wb.active; ws.title = SHEET_GRUPOS
    _ws_write(ws, ['ID', 'Grupo', 'Local'],
              [[g['id'], g['nome'], u] for g in ddqod['grupos'] for u in (g['locais'] or [''])])

    _ws_write(wb.create_sheet(SHEET_INFO), ['Campo', 'Valor'], [
        ['descricao', ddqod['info'].get('descricao', '')],
        ['ultimaAtualizacao', ddqod['info'].get('ultimaAtualizacao') or ''],
    ])

    _ws_write(wb.create_sheet(SHEET_PREVISTO), ['Local', 'Categoria', 'Quantidade'],
              [[u, c, q] for u, cats in ddqod['previsto'].items() for c, q in cats.items()])

    if reconciliation:
        _ws_write(wb.create_sheet(SHEET_RECONCILIACAO),
                  ['Grupo', 'Categoria', 'Previsto', 'Real', 'Diferenca', 'Situacao', '%'],
                  [[g['nome'], r['categoria'], r['previsto'], r['real'], r['diff'], r['status'], r['pct']]
                   for g in reconciliation['groups'] for r in g['rows']])

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
