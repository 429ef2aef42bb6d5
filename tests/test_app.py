import io

import openpyxl
import pytest

import app as server


@pytest.fixture()
def client(workspace, monkeypatch):
    monkeypatch.setitem(server.STATE, 'workspace', workspace)
    monkeypatch.setitem(server.STATE, 'loaded', True)
    monkeypatch.setitem(server.STATE, '_load_error', None)
    server.app.config['TESTING'] = True
    with server.app.test_client() as c:
        yield c


def test_data_endpoint(client):
    resp = client.get('/api/data')
    assert resp.status_code == 200
    kpis = resp.get_json()['kpis']
    assert kpis['totalEfetivo'] == 6
    assert kpis['totalRegistros'] == 7


def test_roster_search_and_bad_sort(client):
    body = client.get('/api/roster?search=ana').get_json()
    assert body['total'] == 1
    assert body['rows'][0]['NOME'] == 'ANA'
    resp = client.get('/api/roster?sort=IDADE')
    assert resp.status_code == 400
    assert resp.get_json()['type'] == 'ValidationError'


def test_save_person_returns_synced_views(client):
    resp = client.post('/api/person', json={'person': {
        'NUMERO': '9', 'POST/GRAD': 'Cap', 'NOME': 'ZECA', 'LOCAL': 'NTS', 'FUNÇÃO': 'AUX', 'CLASSE': 'OF'}})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['status'] == 'ok'
    assert body['data']['kpis']['totalEfetivo'] == 7
    nts = next(n for n in body['hierarchy']['roots'][0]['children'] if n['nome'] == 'NTS')
    assert nts['count'] == 2


def test_save_person_validation(client):
    resp = client.post('/api/person', json={'person': {'NUMERO': '9', 'NOME': ''}})
    assert resp.status_code == 400
    assert 'NOME' in resp.get_json()['details']['fields']
    assert client.post('/api/person', json={'index': 0}).status_code == 400


def test_config_errors_map_to_status_codes(client):
    dup = client.post('/api/config/locais', json={'nome': 'SDTS'})
    assert dup.status_code == 400
    assert dup.get_json()['type'] == 'DuplicateNameError'
    assert client.delete('/api/config/locais/SDTS').status_code == 409
    assert client.delete('/api/config/classes/OF').status_code == 409
    cycle = client.put('/api/config/locais', json={'old': 'SDTS', 'nome': 'SDTS', 'pai': 'NTS'})
    assert cycle.get_json()['type'] == 'CycleError'


def test_role_move(client):
    body = client.post('/api/config/funcoes/move', json={'nome': 'AUX', 'direction': 'up'}).get_json()
    assert [r['nome'] for r in body['result']] == ['CHEFE', 'AUX', 'ADJ']


def test_view_switch_includes_reconciliation(client):
    body = client.post('/api/view', json={'view': 'ddqod'}).get_json()
    assert body['reconciliation']['totals']['deficit'] == 1
    assert client.post('/api/view', json={'view': 'nope'}).status_code == 400


def test_group_and_predicted_endpoints(client):
    body = client.post('/api/ddqod/grupos', json={'nome': 'NTS', 'locais': ['NTS']}).get_json()
    group_id = body['result']['id']
    client.post('/api/ddqod/previsto', json={'local': 'NTS', 'categoria': 'CAP', 'quantidade': 1})
    rec = client.get('/api/ddqod').get_json()['reconciliation']
    nts = next(g for g in rec['groups'] if g['id'] == group_id)
    assert (nts['previsto'], nts['real']) == (1, 1)
    assert client.delete(f'/api/ddqod/grupos/{group_id}').status_code == 200
    bad = client.post('/api/ddqod/previsto', json={'local': 'NTS', 'categoria': 'CAP', 'quantidade': -2})
    assert bad.status_code == 400


def test_ddqod_import_rejects_empty_table(client):
    resp = client.post('/api/import/ddqod', json={'previsto': {}})
    assert resp.status_code == 422
    assert resp.get_json()['type'] == 'ImportFormatError'


def test_ddqod_workbook_upload(client):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = 'Previsto'
    ws.append(['Local', 'Categoria', 'Quantidade'])
    ws.append(['SDTS', 'MAJ', 2])
    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    resp = client.post('/api/import/ddqod', data={'file': (buf, 'ddqod.xlsx')},
                       content_type='multipart/form-data')
    assert resp.status_code == 200
    assert resp.get_json()['reconciliation']['totals']['deficit'] == 0


def test_roster_import_rejects_garbage_file(client):
    resp = client.post('/api/import/roster', data={'file': (io.BytesIO(b'{not json'), 'x.json')},
                       content_type='multipart/form-data')
    assert resp.status_code == 422


def test_csv_export_has_bom(client):
    resp = client.get('/api/export/csv?local=NTS')
    text = resp.get_data().decode('utf-8')
    assert text.startswith('\ufeff"NUMERO","POST/GRAD","NOME","LOCAL","FUNÇÃO","CLASSE"')
    assert len(text.strip().splitlines()) == 3
    assert 'attachment; filename=efetivo_' in resp.headers['Content-Disposition']


def test_backup_and_workbook_exports(client):
    bundle = client.get('/api/export/roster').get_json()
    assert set(bundle) == {'dados', 'config', 'ddqod', 'exportDate', 'version'}
    resp = client.get('/api/export/ddqod.xlsx')
    assert resp.status_code == 200
    assert resp.get_data()[:2] == b'PK'


def test_unloaded_workspace_returns_503(monkeypatch):
    monkeypatch.setitem(server.STATE, 'loaded', False)
    monkeypatch.setitem(server.STATE, '_load_error', 'OSError: boom')
    resp = server.app.test_client().get('/api/data')
    assert resp.status_code == 503
    assert resp.get_json()['reason'] == 'OSError: boom'
