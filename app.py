"""
Efetivo Navigator — Flask API Server
Local, single-user JSON API for the roster dashboard.
Every mutation endpoint returns the recomputed dashboard so the frontend
never renders stale counts, filters, org-chart or DDQOD totals.
"""
import io
import json
import logging
import os
import traceback

from flask import Flask, jsonify, request, send_file, Response

from engines.errors import RosterError, ImportFormatError, ValidationError
from engines.transfer import (
    export_roster_bundle, export_ddqod, parse_ddqod_json, read_ddqod_workbook,
    write_ddqod_workbook, csv_filename,
)
from engines.workspace import Workspace

app = Flask(__name__)

STATE = {'workspace': Workspace(), 'loaded': False, '_load_error': None}


def _ws():
    return STATE['workspace']


@app.before_request
def _ensure_loaded():
    if not STATE['loaded'] and not STATE.get('_load_error'):
        try:
            _ws().load()
            STATE['loaded'] = True
            print("[OK] Efetivo workspace loaded")
        except Exception as e:
            err_msg = f"{type(e).__name__}: {e}"
            STATE['_load_error'] = err_msg
            print(f"\n{'='*60}")
            print(f"[!] WORKSPACE LOAD FAILED")
            print(f"[!] Error: {err_msg}")
            print(f"[!] Check the data directory, then restart python app.py")
            print(f"{'='*60}\n")
            traceback.print_exc()
    if not STATE['loaded']:
        return _not_loaded()


@app.errorhandler(RosterError)
def _roster_error(e):
    return jsonify(e.to_dict()), e.status


def _not_loaded():
    return jsonify({'error': 'Data not loaded', 'reason': STATE.get('_load_error', 'Unknown — check terminal')}), 503


def _body():
    body = request.get_json(force=True, silent=True)
    if not isinstance(body, dict):
        raise ValidationError('JSON object body required')
    return body


def _synced(result=None, **extra):
    """Standard mutation response: result + every recomputed view."""
    ws = _ws()
    out = {
        'status': 'ok', 'result': result,
        'data': ws.dashboard(),
        'hierarchy': ws.views['hierarchy'],
        'persistWarning': ws.persist_warning,
    }
    if ws.active_view == 'ddqod':
        out['reconciliation'] = ws.reconciliation
    out.update(extra)
    return jsonify(out)


def _table_args():
    a = request.args
    return {
        'search': a.get('search', ''), 'local': a.get('local', ''),
        'classe': a.get('classe', ''), 'funcao': a.get('funcao', ''),
        'sort': a.get('sort') or None, 'direction': a.get('dir', 'asc'),
    }


# ══════════════════════════════════════════════════════════════
#  READ ROUTES
# ══════════════════════════════════════════════════════════════

@app.route('/api/data')
def api_data():
    return jsonify(_ws().dashboard())


@app.route('/api/roster')
def api_roster():
    page = request.args.get('page', 1, type=int)
    return jsonify(_ws().table(page=page, **_table_args()))


@app.route('/api/config')
def api_config():
    return jsonify(_ws().config)


@app.route('/api/orgchart')
def api_orgchart():
    return jsonify(_ws().views['hierarchy'])


@app.route('/api/orgchart/<path:unit>')
def api_orgchart_unit(unit):
    return jsonify(_ws().unit_details(unit))


@app.route('/api/ddqod')
def api_ddqod():
    ws = _ws()
    return jsonify({
        'reconciliation': ws.reconciliation,
        'grupos': ws.ddqod['grupos'], 'previsto': ws.ddqod['previsto'], 'info': ws.ddqod['info'],
    })


@app.route('/api/view', methods=['POST'])
def api_view():
    view = _ws().set_active_view(_body().get('view'))
    return _synced(view)


# ══════════════════════════════════════════════════════════════
#  PERSON CRUD
# ══════════════════════════════════════════════════════════════

@app.route('/api/person', methods=['POST'])
def api_save_person():
    body = _body()
    person = body.get('person')
    if not isinstance(person, dict):
        return jsonify({'error': 'person required'}), 400
    return _synced(_ws().save_person(person, body.get('index')))


@app.route('/api/person/<int:index>', methods=['DELETE'])
def api_delete_person(index):
    return _synced(_ws().delete_person(index))


# ══════════════════════════════════════════════════════════════
#  CONFIGURATION
# ══════════════════════════════════════════════════════════════

@app.route('/api/config/locais', methods=['POST', 'PUT'])
def api_unit():
    body = _body()
    if request.method == 'POST':
        return _synced(_ws().add_unit(body.get('nome'), body.get('pai')))
    if not body.get('old'):
        return jsonify({'error': 'old required'}), 400
    return _synced(_ws().edit_unit(body['old'], body.get('nome'), body.get('pai')))


@app.route('/api/config/locais/<path:name>', methods=['DELETE'])
def api_delete_unit(name):
    return _synced(_ws().delete_unit(name))


@app.route('/api/config/funcoes', methods=['POST', 'PUT'])
def api_role():
    body = _body()
    if request.method == 'POST':
        return _synced(_ws().add_role(body.get('nome'), body.get('cor')))
    if not body.get('old'):
        return jsonify({'error': 'old required'}), 400
    return _synced(_ws().edit_role(body['old'], body.get('nome'), body.get('cor')))


@app.route('/api/config/funcoes/move', methods=['POST'])
def api_move_role():
    body = _body()
    return _synced(_ws().move_role(body.get('nome'), body.get('direction')))


@app.route('/api/config/funcoes/<path:name>', methods=['DELETE'])
def api_delete_role(name):
    return _synced(_ws().delete_role(name))


@app.route('/api/config/<key>', methods=['POST', 'PUT'])
def api_flat_value(key):
    body = _body()
    if request.method == 'POST':
        return _synced(_ws().add_value(key, body.get('valor')))
    if not body.get('old'):
        return jsonify({'error': 'old required'}), 400
    return _synced(_ws().edit_value(key, body['old'], body.get('valor')))


@app.route('/api/config/<key>/<path:value>', methods=['DELETE'])
def api_delete_flat_value(key, value):
    return _synced(_ws().delete_value(key, value))


# ══════════════════════════════════════════════════════════════
#  DDQOD
# ══════════════════════════════════════════════════════════════

@app.route('/api/ddqod/previsto', methods=['POST'])
def api_set_predicted():
    body = _body()
    qty = _ws().set_predicted(body.get('local'), body.get('categoria'), body.get('quantidade'))
    return _synced(qty, reconciliation=_ws().reconciliation)


@app.route('/api/ddqod/grupos', methods=['POST'])
def api_add_group():
    body = _body()
    return _synced(_ws().add_group(body.get('nome'), body.get('locais', [])),
                   reconciliation=_ws().reconciliation)


@app.route('/api/ddqod/grupos/<group_id>', methods=['PUT', 'DELETE'])
def api_group(group_id):
    if request.method == 'DELETE':
        return _synced(_ws().delete_group(group_id), reconciliation=_ws().reconciliation)
    body = _body()
    return _synced(_ws().edit_group(group_id, body.get('nome'), body.get('locais', [])),
                   reconciliation=_ws().reconciliation)


@app.route('/api/ddqod/info', methods=['POST'])
def api_ddqod_info():
    return _synced(_ws().set_info(_body().get('descricao')))


# ══════════════════════════════════════════════════════════════
#  IMPORT / EXPORT
# ══════════════════════════════════════════════════════════════

def _uploaded_json():
    upload = request.files.get('file')
    if upload is None:
        return request.get_json(force=True, silent=True)
    try:
        return json.load(upload.stream)
    except ValueError as e:
        raise ImportFormatError(f'Invalid JSON file: {e}')


@app.route('/api/import/roster', methods=['POST'])
def api_import_roster():
    payload = _uploaded_json()
    if payload is None:
        raise ImportFormatError('No roster file received')
    notes = _ws().import_roster(payload)
    return _synced(len(_ws().persons), notes=notes)


@app.route('/api/import/ddqod', methods=['POST'])
def api_import_ddqod():
    upload = request.files.get('file')
    if upload is not None and upload.filename.lower().endswith(('.xlsx', '.xlsm')):
        bundle = read_ddqod_workbook(io.BytesIO(upload.read()))
    else:
        payload = _uploaded_json()
        if payload is None:
            raise ImportFormatError('No DDQOD file received')
        bundle = parse_ddqod_json(payload)
    notes = _ws().import_ddqod(bundle)
    return _synced(len(bundle['previsto']), notes=notes, reconciliation=_ws().reconciliation)


@app.route('/api/export/roster')
def api_export_roster():
    ws = _ws()
    body = json.dumps(export_roster_bundle(ws.persons, ws.config, ws.ddqod), ensure_ascii=False, indent=2)
    return Response(body, mimetype='application/json',
                    headers={'Content-Disposition': 'attachment; filename=efetivo_backup.json'})


@app.route('/api/export/csv')
def api_export_csv():
    csv_text = _ws().filtered_csv(**_table_args())
    return Response('\ufeff' + csv_text, mimetype='text/csv; charset=utf-8',
                    headers={'Content-Disposition': f'attachment; filename={csv_filename()}'})


@app.route('/api/export/ddqod')
def api_export_ddqod():
    body = json.dumps(export_ddqod(_ws().ddqod), ensure_ascii=False, indent=2)
    return Response(body, mimetype='application/json',
                    headers={'Content-Disposition': 'attachment; filename=ddqod.json'})


@app.route('/api/export/ddqod.xlsx')
def api_export_ddqod_xlsx():
    ws = _ws()
    data = write_ddqod_workbook(ws.ddqod, ws.reconciliation)
    return send_file(io.BytesIO(data), as_attachment=True, download_name='ddqod.xlsx',
                     mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(message)s')
    app.run(debug=False, host=os.environ.get('EFETIVO_HOST', '127.0.0.1'),
            port=int(os.environ.get('PORT', 5000)))
