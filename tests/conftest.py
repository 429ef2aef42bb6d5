import pytest

from engines.storage import BlobStore
from engines.workspace import Workspace


def person(numero, nome, local, classe, posto='Sd', funcao='AUX'):
    return {'NUMERO': numero, 'POST/GRAD': posto, 'NOME': nome,
            'LOCAL': local, 'FUNÇÃO': funcao, 'CLASSE': classe}


ROSTER = {
    'SDTS': {
        'OF': [person('1', 'ANA', 'SDTS', 'OF', 'Maj', 'CHEFE'),
               person('2', 'BETO', 'SDTS', 'OF', 'Maj', 'ADJ')],
        'SGT': [person('3', 'CAIO', 'SDTS', 'SGT', '1º Sgt')],
    },
    'SDTS1': {
        'CB/SD': [person('xxx.xxx-x', 'CLARO', 'SDTS1', 'CB/SD'),
                  person('xxx.xxx-x', 'CLARO', 'SDTS1', 'CB/SD')],
    },
    'NTS': {
        'OF': [person('4', 'DORA', 'NTS', 'OF', 'Cap', 'CHEFE')],
        'SGT': [person('3', 'CAIO', 'NTS', 'SGT', '1º Sgt')],
    },
}


@pytest.fixture()
def store(tmp_path):
    return BlobStore(str(tmp_path / 'store'))


@pytest.fixture()
def workspace(store, tmp_path):
    store.set('efetivo_dados', ROSTER)
    store.set('efetivo_config', {
        'locais': [{'nome': 'SDTS', 'pai': None}, {'nome': 'SDTS1', 'pai': 'SDTS'},
                   {'nome': 'NTS', 'pai': 'SDTS'}],
        'funcoes': [{'nome': 'CHEFE', 'ordem': 1, 'cor': '#1a365d'},
                    {'nome': 'ADJ', 'ordem': 2, 'cor': '#3182ce'},
                    {'nome': 'AUX', 'ordem': 3, 'cor': '#38a169'}],
        'classes': ['CB/SD', 'OF', 'SGT'],
        'postos': ['1º Sgt', 'Cap', 'Maj', 'Sd'],
    })
    store.set('ddqod_grupos', [{'id': 'g1', 'nome': 'SDTS', 'locais': ['SDTS']}])
    store.set('ddqod_previsto', {'SDTS': {'MAJ': 3}})
    return Workspace(store=store, data_dir=str(tmp_path)).load()
