"""
Efetivo Navigator — Local Blob Store
Durable key → JSON blob persistence. One file per key under DATA_DIR/store.
Writes go through a temp file + os.replace so a failed write never leaves a
half-written blob behind.
"""
import json
import logging
import os
from datetime import datetime

from engines.errors import PersistenceError

DATA_DIR = os.environ.get('EFETIVO_DATA_DIR') or os.path.join(os.path.dirname(os.path.dirname(__file__)), 'data')
SEED_FILE = 'base_organizacao.json'

KEY_DADOS = 'efetivo_dados'
KEY_CONFIG = 'efetivo_config'
KEY_PREVISTO = 'ddqod_previsto'
KEY_GRUPOS = 'ddqod_grupos'
KEY_INFO = 'ddqod_info'
ALL_KEYS = (KEY_DADOS, KEY_CONFIG, KEY_PREVISTO, KEY_GRUPOS, KEY_INFO)


class BlobStore:
    def __init__(self, root=None):
        self.root = root or os.path.join(DATA_DIR, 'store')

    def _path(self, key):
        return os.path.join(self.root, f'{key}.json')

    def get(self, key, default=None):
        """Missing key -> default. An unreadable blob is moved aside and raises
        PersistenceError, so it is never mistaken for 'no data yet'."""
        path = self._path(key)
        if not os.path.exists(path):
            return default
        try:
            with open(path, encoding='utf-8') as fh:
                return json.load(fh)
        except (OSError, ValueError) as e:
            kept = self._set_aside(path)
            logging.error(f"[storage] could not read blob '{key}': {e} (kept as {kept})")
            raise PersistenceError(f"Stored '{key}' is unreadable, kept as {os.path.basename(kept)}",
                                   key=key, path=kept)

    def _set_aside(self, path):
        stamp = datetime.now().strftime('%Y%m%d%H%M%S')
        target = f'{path}.corrupt-{stamp}'
        try:
            os.replace(path, target)
        except OSError:
            return path
        return target

    def set(self, key, value):
        path = self._path(key)
        tmp = path + '.tmp'
        try:
            os.makedirs(self.root, exist_ok=True)
            with open(tmp, 'w', encoding='utf-8') as fh:
                json.dump(value, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except (OSError, TypeError) as e:
            raise PersistenceError(f"Could not save '{key}': {e}", key=key)

    def set_many(self, blobs):
        """Write every blob; report all failures together."""
        failed = []
        for key, value in blobs.items():
            try:
                self.set(key, value)
            except PersistenceError as e:
                logging.error(f"[storage] {e.message}")
                failed.append(key)
        if failed:
            raise PersistenceError(f"Changes not saved for: {', '.join(failed)}", keys=failed)

    def is_empty(self):
        return not any(os.path.exists(self._path(k)) for k in ALL_KEYS)


def load_seed_roster(data_dir=None):
    """The roster file shipped beside the app ({unit: {class: [person]}}), if any."""
    path = os.path.join(data_dir or DATA_DIR, SEED_FILE)
    if not os.path.exists(path):
        return None
    try:
        with open(path, encoding='utf-8') as fh:
            return json.load(fh)
    except (OSError, ValueError) as e:
        logging.warning(f"[storage] seed roster unreadable ({path}): {e}")
        return None
