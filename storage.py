"""
Persistence backends for the school ledger.

Two interchangeable implementations of one small storage interface:

* ``SqlBackend``   - the relational store reached through Flask-SQLAlchemy,
                     used when a DATABASE_URL is configured.
* ``LocalBackend`` - a persisted key-value store holding one JSON array per
                     collection, used when no database is configured.

The backend is chosen once by ``select_backend`` at startup. Both speak in
camelCase records; the SQL side maps them onto snake_case columns through the
field maps in ``app_models``. Failures are logged and returned as negative
results (``None``, ``False`` or ``[]``); nothing here raises to the caller.
"""
import json
import logging
import os
import time

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError

from app_models import COLLECTIONS, db, record_to_row, row_to_record

logger = logging.getLogger(__name__)


def is_remote_configured(config) -> bool:
    """True when connection credentials for the relational store were supplied"""
    return bool(config.get('DATABASE_URL'))


def normalize_database_url(url: str) -> str:
    # Hosted Postgres hands out postgres:// URLs, SQLAlchemy wants postgresql://
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql://', 1)
    return url


def select_backend(app):
    """Build the storage backend for ``app`` from its configuration."""
    if is_remote_configured(app.config):
        app.config['SQLALCHEMY_DATABASE_URI'] = normalize_database_url(app.config['DATABASE_URL'])
        db.init_app(app)
        with app.app_context():
            db.create_all()
        logger.info('Using relational backend')
        return SqlBackend(db)

    directory = app.config.get('LOCAL_STORE_DIR')
    if directory:
        store = JsonFileStore(directory)
        logger.info(f'DATABASE_URL not set, using local store in {directory}')
    else:
        store = MemoryStore()
        logger.info('DATABASE_URL not set, using in-memory local store')
    return LocalBackend(store)


class StorageBackend:
    """Interface shared by both backends. ``order_by`` is a sequence of
    ``(field, descending)`` pairs in record field names."""

    kind = None

    def fetch_all(self, collection, order_by=()):
        raise NotImplementedError

    def find(self, collection, **criteria):
        raise NotImplementedError

    def get(self, collection, record_id):
        matches = self.find(collection, id=record_id)
        return matches[0] if matches else None

    def insert(self, collection, record):
        raise NotImplementedError

    def update(self, collection, record_id, changes):
        raise NotImplementedError

    def delete(self, collection, record_id):
        raise NotImplementedError


# Relational backend

def _column_keys(model):
    """Column name -> mapped attribute name (``class`` is mapped as ``class_number``)"""
    return {attr.columns[0].name: attr.key for attr in sa_inspect(model).column_attrs}


class SqlBackend(StorageBackend):
    kind = 'remote'

    def __init__(self, database):
        self.db = database

    def _attribute(self, collection, field):
        columns = {f: c for c, f in collection.fields.items()}
        return getattr(collection.model, _column_keys(collection.model)[columns[field]])

    def _to_record(self, collection, obj):
        keys = _column_keys(collection.model)
        row = {name: getattr(obj, key) for name, key in keys.items()}
        return row_to_record(row, collection.fields)

    def _assign(self, collection, obj, record):
        keys = _column_keys(collection.model)
        for column, value in record_to_row(record, collection.fields).items():
            setattr(obj, keys[column], value)

    def _fail(self, action, collection, error):
        logger.error(f'Error {action} {collection.name}: {error}')
        self.db.session.rollback()

    def fetch_all(self, collection, order_by=()):
        coll = COLLECTIONS[collection]
        try:
            query = coll.model.query
            for field, descending in order_by:
                column = self._attribute(coll, field)
                query = query.order_by(column.desc() if descending else column.asc())
            return [self._to_record(coll, obj) for obj in query.all()]
        except SQLAlchemyError as e:
            self._fail('fetching', coll, e)
            return []

    def find(self, collection, **criteria):
        coll = COLLECTIONS[collection]
        try:
            query = coll.model.query
            for field, value in criteria.items():
                query = query.filter(self._attribute(coll, field) == value)
            return [self._to_record(coll, obj) for obj in query.all()]
        except SQLAlchemyError as e:
            self._fail('querying', coll, e)
            return []

    def insert(self, collection, record):
        coll = COLLECTIONS[collection]
        values = {k: v for k, v in record.items() if not (k == 'id' and v is None)}
        try:
            obj = coll.model()
            self._assign(coll, obj, values)
            self.db.session.add(obj)
            self.db.session.commit()
            return self._to_record(coll, obj)
        except SQLAlchemyError as e:
            self._fail('adding to', coll, e)
            return None

    def update(self, collection, record_id, changes):
        coll = COLLECTIONS[collection]
        changes = {k: v for k, v in changes.items() if k != 'id'}
        try:
            obj = self.db.session.get(coll.model, record_id)
            if obj is None:
                return None
            self._assign(coll, obj, changes)
            self.db.session.commit()
            return self._to_record(coll, obj)
        except SQLAlchemyError as e:
            self._fail('updating', coll, e)
            return None

    def delete(self, collection, record_id):
        coll = COLLECTIONS[collection]
        try:
            obj = self.db.session.get(coll.model, record_id)
            if obj is None:
                return False
            self.db.session.delete(obj)
            self.db.session.commit()
            return True
        except SQLAlchemyError as e:
            self._fail('deleting from', coll, e)
            return False


# Local key-value backend

class MemoryStore:
    """Process-local key-value store"""

    def __init__(self):
        self._data = {}

    def get(self, key):
        return self._data.get(key)

    def set(self, key, value):
        self._data[key] = value


class JsonFileStore:
    """Key-value store keeping each key in ``<directory>/<key>.json``"""

    def __init__(self, directory):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key):
        return os.path.join(self.directory, f'{key}.json')

    def get(self, key):
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()

    def set(self, key, value):
        tmp_path = self._path(key) + '.tmp'
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(value)
        os.replace(tmp_path, self._path(key))


def _sort_key(value):
    return (value is None, value if value is not None else 0)


class LocalBackend(StorageBackend):
    """Whole-collection read/modify/write over a key-value store.

    Every write reads the full collection, changes it in memory and writes it
    back; two writers racing on the same collection can lose an update.
    """

    kind = 'local'

    def __init__(self, store):
        self.store = store

    def _load(self, collection):
        try:
            raw = self.store.get(collection.storage_key)
            return json.loads(raw) if raw else []
        except (OSError, ValueError) as e:
            logger.error(f'Error reading {collection.storage_key}: {e}')
            return []

    def _save(self, collection, records):
        try:
            self.store.set(collection.storage_key, json.dumps(records))
            return True
        except (OSError, TypeError) as e:
            logger.error(f'Error writing {collection.storage_key}: {e}')
            return False

    @staticmethod
    def _new_id(prefix, taken):
        stamp = int(time.time() * 1000)
        candidate = f'{prefix}_{stamp}'
        while candidate in taken:
            stamp += 1
            candidate = f'{prefix}_{stamp}'
        return candidate

    def fetch_all(self, collection, order_by=()):
        records = self._load(COLLECTIONS[collection])
        # Stable sorts applied from the least significant key upwards
        for field, descending in reversed(tuple(order_by)):
            records.sort(key=lambda r, f=field: _sort_key(r.get(f)), reverse=descending)
        return records

    def find(self, collection, **criteria):
        return [
            r for r in self._load(COLLECTIONS[collection])
            if all(r.get(field) == value for field, value in criteria.items())
        ]

    def insert(self, collection, record):
        coll = COLLECTIONS[collection]
        records = self._load(coll)
        new_record = {field: None for field in coll.fields.values()}
        new_record.update(record)
        if not new_record.get('id'):
            new_record['id'] = self._new_id(coll.id_prefix, {r.get('id') for r in records})
        records.append(new_record)
        if not self._save(coll, records):
            return None
        return dict(new_record)

    def update(self, collection, record_id, changes):
        coll = COLLECTIONS[collection]
        records = self._load(coll)
        for index, existing in enumerate(records):
            if existing.get('id') == record_id:
                updated = dict(existing)
                updated.update({k: v for k, v in changes.items() if k != 'id'})
                records[index] = updated
                if not self._save(coll, records):
                    return None
                return dict(updated)
        return None

    def delete(self, collection, record_id):
        coll = COLLECTIONS[collection]
        records = self._load(coll)
        remaining = [r for r in records if r.get('id') != record_id]
        if len(remaining) == len(records):
            return False
        return self._save(coll, remaining)
