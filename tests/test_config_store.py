import copy

import pytest

from conftest import person
from engines import config_store as cs
from engines.errors import (
    ValidationError, DuplicateNameError, InvalidParentError, SelfParentError,
    CycleError, InUseError, HasChildrenError,
)


@pytest.fixture()
def config():
    c = cs.empty_config()
    cs.add_unit(c, 'SDTS')
    cs.add_unit(c, 'SDTS1', 'SDTS')
    cs.add_unit(c, 'NTS', 'SDTS')
    cs.add_unit(c, 'NTS TELECOM', 'NTS')
    for role in ('CHEFE', 'ADJ', 'AUX'):
        cs.add_role(c, role)
    c['classes'] = ['OF', 'SGT']
    c['postos'] = ['Cap', '1º Sgt']
    return c


def _orders(config):
    return sorted(r['ordem'] for r in config['funcoes'])


def test_add_unit_validation(config):
    with pytest.raises(DuplicateNameError):
        cs.add_unit(config, 'SDTS')
    with pytest.raises(InvalidParentError):
        cs.add_unit(config, 'X', 'NOPE')
    with pytest.raises(SelfParentError):
        cs.add_unit(config, 'X', 'X')
    with pytest.raises(ValidationError):
        cs.add_unit(config, '   ')
    assert cs.add_unit(config, 'X', '') == {'nome': 'X', 'pai': None}


def test_delete_unit_with_children_fails():
    c = cs.empty_config()
    cs.add_unit(c, 'SDTS')
    cs.add_unit(c, 'SDTS1', 'SDTS')
    with pytest.raises(HasChildrenError):
        cs.delete_unit(c, [], 'SDTS')
    assert cs.unit_names(c) == ['SDTS', 'SDTS1']


def test_delete_unit_in_use_fails(config):
    people = [person('1', 'A', 'SDTS1', 'OF')]
    with pytest.raises(InUseError):
        cs.delete_unit(config, people, 'SDTS1')
    cs.delete_unit(config, [], 'SDTS1')
    assert 'SDTS1' not in cs.unit_names(config)


def test_rename_propagates_to_people_and_children(config):
    people = [person('1', 'A', 'NTS', 'OF'), person('2', 'B', 'NTS TELECOM', 'SGT'),
              person('3', 'C', 'NTS', 'SGT')]
    cs.edit_unit(config, people, 'NTS', 'NTS-NOVO', 'SDTS')
    assert [p['LOCAL'] for p in people] == ['NTS-NOVO', 'NTS TELECOM', 'NTS-NOVO']
    assert cs.find_unit(config, 'NTS TELECOM')['pai'] == 'NTS-NOVO'
    assert cs.find_unit(config, 'NTS') is None


def test_edit_unit_rejects_cycle_and_leaves_graph_unchanged(config):
    before = copy.deepcopy(config)
    with pytest.raises(CycleError):
        cs.edit_unit(config, [], 'SDTS', 'SDTS', 'NTS TELECOM')
    with pytest.raises(SelfParentError):
        cs.edit_unit(config, [], 'NTS', 'NTS', 'NTS')
    with pytest.raises(DuplicateNameError):
        cs.edit_unit(config, [], 'NTS', 'SDTS1', 'SDTS')
    with pytest.raises(InvalidParentError):
        cs.edit_unit(config, [], 'NTS', 'NTS', 'GHOST')
    assert config == before


def test_edit_unit_can_move_to_sibling_branch(config):
    cs.edit_unit(config, [], 'NTS TELECOM', 'NTS TELECOM', 'SDTS1')
    assert cs.ancestors(config, 'NTS TELECOM') == ['SDTS1', 'SDTS']


def test_role_orders_stay_dense(config):
    assert _orders(config) == [1, 2, 3]
    cs.add_role(config, 'CMTE', '#000000')
    assert cs.find_role(config, 'CMTE')['ordem'] == 4
    cs.delete_role(config, [], 'ADJ')
    assert _orders(config) == [1, 2, 3]
    assert [r['nome'] for r in cs.ordered_roles(config)] == ['CHEFE', 'AUX', 'CMTE']
    cs.move_role(config, 'CMTE', 'up')
    assert [r['nome'] for r in cs.ordered_roles(config)] == ['CHEFE', 'CMTE', 'AUX']
    assert _orders(config) == [1, 2, 3]


def test_move_role_is_noop_at_boundaries(config):
    cs.move_role(config, 'CHEFE', 'up')
    cs.move_role(config, 'AUX', 'down')
    assert [r['nome'] for r in cs.ordered_roles(config)] == ['CHEFE', 'ADJ', 'AUX']
    with pytest.raises(ValidationError):
        cs.move_role(config, 'AUX', 'sideways')


def test_edit_role_keeps_order_and_renames_people(config):
    people = [person('1', 'A', 'SDTS', 'OF', funcao='ADJ')]
    cs.edit_role(config, people, 'ADJ', 'SUBCHEFE', '#ff0000')
    role = cs.find_role(config, 'SUBCHEFE')
    assert role['ordem'] == 2 and role['cor'] == '#ff0000'
    assert people[0]['FUNÇÃO'] == 'SUBCHEFE'
    with pytest.raises(DuplicateNameError):
        cs.edit_role(config, people, 'SUBCHEFE', 'CHEFE')


def test_delete_role_in_use(config):
    with pytest.raises(InUseError):
        cs.delete_role(config, [person('1', 'A', 'SDTS', 'OF', funcao='AUX')], 'AUX')
    assert _orders(config) == [1, 2, 3]


def test_flat_sets(config):
    people = [person('1', 'A', 'SDTS', 'SGT', '1º Sgt')]
    cs.add_value(config, 'classes', 'QPE')
    with pytest.raises(DuplicateNameError):
        cs.add_value(config, 'classes', 'QPE')
    cs.edit_value(config, people, 'postos', '1º Sgt', '1º SGT')
    assert people[0]['POST/GRAD'] == '1º SGT'
    with pytest.raises(InUseError):
        cs.delete_value(config, people, 'classes', 'SGT')
    cs.delete_value(config, people, 'classes', 'QPE')
    assert config['classes'] == ['OF', 'SGT']
    with pytest.raises(ValidationError):
        cs.add_value(config, 'locais', 'X')


def test_seed_config_is_sorted_and_applies_prefix_parents():
    people = [person('1', 'A', 'NTS TELECOM', 'SGT', '2º Sgt', 'AUX'),
              person('2', 'B', 'SDTS', 'OF', 'Maj', 'CHEFE'),
              person('3', 'C', 'SDTS2', 'OF', 'Cap', 'CHEFE'),
              person('4', 'D', 'NTS', 'OF', 'Cap', 'ADJ'),
              person('5', 'E', 'OUTRA', 'SGT', '1º Sgt', 'AUX')]
    config = cs.seed_config(people)
    assert config['locais'] == [
        {'nome': 'NTS', 'pai': 'SDTS'}, {'nome': 'NTS TELECOM', 'pai': 'NTS'},
        {'nome': 'OUTRA', 'pai': None}, {'nome': 'SDTS', 'pai': None}, {'nome': 'SDTS2', 'pai': 'SDTS'},
    ]
    assert [(r['nome'], r['ordem']) for r in config['funcoes']] == [('ADJ', 1), ('AUX', 2), ('CHEFE', 3)]
    assert config['classes'] == ['OF', 'SGT']


def test_prefix_parent_requires_parent_present():
    config = cs.seed_config([person('1', 'A', 'SDTS1', 'OF')])
    assert config['locais'] == [{'nome': 'SDTS1', 'pai': None}]


def test_migrate_legacy_string_entries():
    config = cs.migrate_config({
        'locais': ['SDTS', {'nome': 'NTS', 'pai': 'SDTS'}, 'SDTS'],
        'funcoes': ['CHEFE', {'nome': 'AUX', 'ordem': 1, 'cor': '#123456'}],
        'classes': ['OF', {'nome': 'SGT'}],
    })
    assert config['locais'] == [{'nome': 'SDTS', 'pai': None}, {'nome': 'NTS', 'pai': 'SDTS'}]
    assert [(r['nome'], r['ordem']) for r in config['funcoes']] == [('AUX', 1), ('CHEFE', 2)]
    assert config['classes'] == ['OF', 'SGT']
    assert config['postos'] == []


def test_merge_missing_adds_unknown_values(config):
    cs.merge_missing(config, [person('9', 'Z', 'NTS CONTRATOS', 'QOE', '1º Ten', 'CMTE')])
    assert cs.find_unit(config, 'NTS CONTRATOS') == {'nome': 'NTS CONTRATOS', 'pai': None}
    assert cs.find_role(config, 'CMTE')['ordem'] == 4
    assert 'QOE' in config['classes'] and '1º Ten' in config['postos']


def test_in_use_count_is_reported():
    c = cs.empty_config()
    cs.add_unit(c, 'SDTS')
    people = [person('1', 'A', 'SDTS', 'OF'), person('2', 'B', 'SDTS', 'OF')]
    with pytest.raises(InUseError) as exc:
        cs.delete_unit(c, people, 'SDTS')
    assert exc.value.details == {'count': 2}
