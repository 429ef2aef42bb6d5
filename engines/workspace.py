"""
Efetivo Navigator — Workspace (view synchronizer)
Owns the session state: roster, configuration and DDQOD tables. Every
mutation goes through `_mutate`, which

  1. snapshots state,
  2. runs the store operation (validation errors restore the snapshot),
  3. recomputes every derived view,
  4. persists all blobs (a failed write is kept as a warning, never rolled back).

Reconciliation is only recomputed eagerly while the DDQOD view is active;
otherwise it is marked stale and rebuilt on next access.
"""
import copy
import logging

from engines import config_store, ddqod as ddqod_engine, hierarchy, roster, transfer
from engines.errors import PersistenceError, ValidationError
from engines.storage import (
    BlobStore, load_seed_roster,
    KEY_DADOS, KEY_CONFIG, KEY_PREVISTO, KEY_GRUPOS, KEY_INFO,
)

VIEWS = ('dashboard', 'tabela', 'organograma', 'ddqod', 'config')


class Workspace:
    def __init__(self, store=None, data_dir=None):
        self.store = store or BlobStore()
        self.data_dir = data_dir
        self.persons = []
        self.config = config_store.empty_config()
        self.ddqod = ddqod_engine.empty_ddqod()
        self.active_view = 'dashboard'
        self.views = {}
        self.warnings = []
        self.load_warnings = []
        self.persist_warning = None
        self._recon_stale = True
        self.loaded = False

    # ══════════════════════════════════════════════════════════════
    #  LOAD
    # ══════════════════════════════════════════════════════════════

    def _read(self, key):
        try:
            return self.store.get(key)
        except PersistenceError as e:
            self.load_warnings.append(e.message)
            return None

    def load(self):
        """Restore from the blob store, or seed from the shipped roster file.

        The demo roster is only used when the store holds nothing at all. An
        unreadable blob is set aside by the store; the session starts without
        it and nothing is written back until the next edit.
        """
        self.load_warnings = []
        fresh = self.store.is_empty()
        seeded = False
        grouping = self._read(KEY_DADOS)
        if grouping is None and fresh:
            grouping = load_seed_roster(self.data_dir) or {}
            seeded = bool(grouping)
        self.persons = roster.flatten(grouping)

        raw_config = self._read(KEY_CONFIG)
        if raw_config:
            self.config = config_store.migrate_config(raw_config)
        else:
            self.config = config_store.seed_config(self.persons)
            seeded = True

        self.ddqod = ddqod_engine.empty_ddqod()
        self.ddqod['previsto'], _ = transfer.parse_previsto(self._read(KEY_PREVISTO) or {})
        self.ddqod['info'].update(self._read(KEY_INFO) or {})
        groups = self._read(KEY_GRUPOS)
        if groups is None:
            self.ddqod['grupos'] = ddqod_engine.default_groups(self.config)
            seeded = True
        else:
            self.ddqod['grupos'] = transfer.parse_groups(groups)

        self._recompute()
        if self.load_warnings:
            self.persist_warning = '; '.join(self.load_warnings)
        elif seeded:
            self._persist()
        self.loaded = True
        logging.info(f"[workspace] loaded {len(self.persons)} record(s), "
                     f"{len(self.config['locais'])} unit(s), {len(self.ddqod['grupos'])} group(s)")
        return self

    # ══════════════════════════════════════════════════════════════
    #  SYNC CYCLE
    # ══════════════════════════════════════════════════════════════

    def _snapshot(self):
        return copy.deepcopy((self.persons, self.config, self.ddqod))

    def _mutate(self, fn, *args, **kwargs):
        snap = self._snapshot()
        try:
            result = fn(*args, **kwargs)
            self._recompute()
        except Exception:
            self.persons, self.config, self.ddqod = snap
            self._recompute()
            raise
        self._persist()
        return result

    def _recompute(self):
        hier = hierarchy.build_org_chart(self.config, self.persons)
        self.warnings = list(self.load_warnings) + list(hier['warnings'])
        orphan_count = len(roster.orphans(self.persons, config_store.unit_names(self.config)))
        if orphan_count:
            self.warnings.append(f"{orphan_count} record(s) reference a unit that is not configured")
        self.views = {
            'uniqueCount': roster.count_unique(self.persons),
            'stats': roster.build_stats(self.persons),
            'unitCards': roster.build_unit_cards(self.persons),
            'hierarchy': hier,
            'filterOptions': config_store.filter_options(self.config),
            'reconciliation': self.views.get('reconciliation'),
        }
        self._recon_stale = True
        if self.active_view == 'ddqod':
            self._refresh_reconciliation()

    def _refresh_reconciliation(self):
        self.views['reconciliation'] = ddqod_engine.reconcile(
            self.ddqod['grupos'], self.ddqod['previsto'], self.persons)
        self._recon_stale = False

    def _persist(self):
        try:
            self.store.set_many(self.blobs())
            self.persist_warning = None
        except PersistenceError as e:
            self.persist_warning = e.message
            logging.warning(f"[workspace] state kept in memory only: {e.message}")

    def blobs(self):
        return {
            KEY_DADOS: roster.group_by_unit(self.persons),
            KEY_CONFIG: self.config,
            KEY_PREVISTO: self.ddqod['previsto'],
            KEY_GRUPOS: self.ddqod['grupos'],
            KEY_INFO: self.ddqod['info'],
        }

    @property
    def reconciliation(self):
        if self._recon_stale or self.views.get('reconciliation') is None:
            self._refresh_reconciliation()
        return self.views['reconciliation']

    def set_active_view(self, view):
        if view not in VIEWS:
            raise ValidationError(f'Unknown view: {view}')
        self.active_view = view
        if view == 'ddqod' and self._recon_stale:
            self._refresh_reconciliation()
        return view

    def _unit_names(self):
        return set(config_store.unit_names(self.config))

    # ══════════════════════════════════════════════════════════════
    #  PERSON CRUD
    # ══════════════════════════════════════════════════════════════

    def save_person(self, person, index=None):
        return self._mutate(roster.upsert_person, self.persons, person, index)

    def delete_person(self, index):
        return self._mutate(roster.delete_person, self.persons, index)

    # ══════════════════════════════════════════════════════════════
    #  CONFIGURATION
    # ══════════════════════════════════════════════════════════════

    def add_unit(self, name, parent=None):
        return self._mutate(config_store.add_unit, self.config, name, parent)

    def edit_unit(self, old_name, new_name, new_parent=None):
        def _edit():
            unit = config_store.edit_unit(self.config, self.persons, old_name, new_name, new_parent)
            ddqod_engine.rename_unit(self.ddqod, old_name, unit['nome'])
            return unit
        return self._mutate(_edit)

    def delete_unit(self, name):
        def _delete():
            config_store.delete_unit(self.config, self.persons, name)
            ddqod_engine.drop_unit(self.ddqod, name)
        return self._mutate(_delete)

    def add_role(self, name, color=None):
        return self._mutate(config_store.add_role, self.config, name, color)

    def edit_role(self, old_name, new_name, color=None):
        return self._mutate(config_store.edit_role, self.config, self.persons, old_name, new_name, color)

    def delete_role(self, name):
        return self._mutate(config_store.delete_role, self.config, self.persons, name)

    def move_role(self, name, direction):
        return self._mutate(config_store.move_role, self.config, name, direction)

    def add_value(self, key, value):
        return self._mutate(config_store.add_value, self.config, key, value)

    def edit_value(self, key, old, new):
        return self._mutate(config_store.edit_value, self.config, self.persons, key, old, new)

    def delete_value(self, key, value):
        return self._mutate(config_store.delete_value, self.config, self.persons, key, value)

    # ══════════════════════════════════════════════════════════════
    #  DDQOD
    # ══════════════════════════════════════════════════════════════

    def set_predicted(self, unit, category, value):
        return self._mutate(ddqod_engine.set_predicted, self.ddqod, unit, category, value, self._unit_names())

    def add_group(self, name, units):
        return self._mutate(ddqod_engine.add_group, self.ddqod, name, units, self._unit_names())

    def edit_group(self, group_id, name, units):
        return self._mutate(ddqod_engine.edit_group, self.ddqod, group_id, name, units, self._unit_names())

    def delete_group(self, group_id):
        return self._mutate(ddqod_engine.delete_group, self.ddqod, group_id)

    def set_info(self, descricao):
        return self._mutate(ddqod_engine.set_info, self.ddqod, descricao)

    # ══════════════════════════════════════════════════════════════
    #  IMPORT
    # ══════════════════════════════════════════════════════════════

    def _apply_ddqod(self, bundle):
        """Install a parsed DDQOD bundle; returns warnings for dropped unit refs."""
        notes = []
        known = self._unit_names()
        if bundle.get('grupos') is not None:
            for g in bundle['grupos']:
                unknown = [u for u in g['locais'] if u not in known]
                if unknown:
                    notes.append(f"Group '{g['nome']}': unknown unit(s) ignored: {', '.join(unknown)}")
                    g['locais'] = [u for u in g['locais'] if u in known]
            self.ddqod['grupos'] = bundle['grupos']
        self.ddqod['previsto'] = bundle['previsto']
        self.ddqod['info'] = dict(bundle['info'])
        if not self.ddqod['info'].get('ultimaAtualizacao'):
            ddqod_engine.touch(self.ddqod)
        for n in notes:
            logging.warning(f"[workspace] {n}")
        return notes

    def import_ddqod(self, bundle):
        return self._mutate(self._apply_ddqod, bundle)

    def import_roster(self, payload):
        def _import():
            persons, config, ddqod_bundle = transfer.parse_roster_import(payload)
            self.persons[:] = persons
            if config:
                self.config = config_store.migrate_config(config)
            else:
                config_store.merge_missing(self.config, persons)
            if ddqod_bundle is not None:
                return self._apply_ddqod(ddqod_bundle)
            return []
        return self._mutate(_import)

    # ══════════════════════════════════════════════════════════════
    #  READ MODELS
    # ══════════════════════════════════════════════════════════════

    def table(self, search='', local='', classe='', funcao='', sort=None, direction='asc', page=1):
        rows = roster.filter_persons(self.persons, search, local, classe, funcao)
        return roster.paginate(roster.sort_persons(rows, sort, direction), page)

    def filtered_csv(self, search='', local='', classe='', funcao='', sort=None, direction='asc'):
        rows = roster.sort_persons(roster.filter_persons(self.persons, search, local, classe, funcao),
                                   sort, direction)
        return transfer.export_csv([p for _, p in rows])

    def unit_details(self, unit):
        return hierarchy.unit_details(self.config, self.persons, unit)

    def dashboard(self):
        stats = self.views['stats']
        return {
            'kpis': stats['kpis'],
            'uniqueCount': self.views['uniqueCount'],
            'byClass': stats['byClass'], 'byUnit': stats['byUnit'],
            'byRole': stats['byRole'], 'byRank': stats['byRank'],
            'unitCards': self.views['unitCards'],
            'filterOptions': self.views['filterOptions'],
            'activeView': self.active_view,
            'warnings': self.warnings,
            'persistWarning': self.persist_warning,
        }
