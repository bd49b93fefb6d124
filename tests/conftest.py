"""Shared fixtures: an in-memory cluster served through ``httpx.MockTransport``.

The fake speaks the Elasticsearch 7 dialect: typeless mappings, updates at
``/{index}/_update/{id}`` and optimistic concurrency through
``if_seq_no``/``if_primary_term``. Internal ``version`` conditions are
rejected the way a real 7.x node rejects them.
"""
from __future__ import annotations

import asyncio
import copy
import json
import uuid
from urllib.parse import unquote

import httpx
import pytest

from docindex import DocIndex
from docindex.collections import merge_source


ROOT_MAPPING_KEYS = {'properties', 'dynamic', 'dynamic_templates', '_source', '_meta', '_routing'}

INTERNAL_VERSIONING = (
    'Validation Failed: 1: internal versioning can not be used for optimistic concurrency control. '
    'Please use `if_seq_no` and `if_primary_term` instead;'
)


def _error(status, type_, reason):
    return httpx.Response(status, json={'error': {'type': type_, 'reason': reason}, 'status': status})


def _ack(**extra):
    return httpx.Response(200, json={'acknowledged': True, **extra})


def _field(source, path):
    value = source
    for part in path.split('.'):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class FakeIndex:
    def __init__(self, name, shards=1, replicas=1, properties=None):
        self.name = name
        self.settings = {'number_of_shards': str(shards), 'number_of_replicas': str(replicas)}
        self.properties = properties or {}
        self.docs = {}  # id -> [version, source, seq_no]
        self.aliases = set()
        self.seq_no = -1

    def next_seq_no(self):
        self.seq_no += 1
        return self.seq_no


class FakeCluster:
    """Just enough of an Elasticsearch-style cluster to drive the client.

    Scripts are registered in ``scripts`` as ``source -> callable(ctx_source,
    params)``. ``before()`` registers a hook that runs ahead of matching
    requests, used to play a concurrent writer.
    """

    primary_term = 1

    def __init__(self):
        self.indices = {}
        self.scrolls = {}
        self.scripts = {}
        self.replicas_confirmed = True
        self.unavailable = False
        self.requests = []
        self.bodies = []
        self.hooks = []
        self._ids = 0

    # ── direct state helpers ──────────────────────────────────────────

    def add_index(self, name, shards=1, replicas=1, properties=None):
        self.indices[name] = FakeIndex(name, shards, replicas, properties)
        return self.indices[name]

    def write(self, index, id, source):
        idx = self.indices[index]
        entry = idx.docs.get(id)
        version = entry[0] + 1 if entry else 1
        idx.docs[id] = [version, copy.deepcopy(source), idx.next_seq_no()]
        return version

    def remove(self, index, id):
        idx = self.indices[index]
        del idx.docs[id]
        idx.next_seq_no()

    def source(self, index, id):
        return self.indices[index].docs[id][1]

    def version(self, index, id):
        return self.indices[index].docs[id][0]

    def seq_no(self, index, id):
        return self.indices[index].docs[id][2]

    def before(self, method, endpoint, action, times=1):
        remaining = [times]

        def hook(request_method, parts):
            if request_method == method and endpoint in parts and remaining[0] > 0:
                remaining[0] -= 1
                action()

        self.hooks.append(hook)

    def count(self, method, endpoint):
        return sum(1 for m, parts, _ in self.requests if m == method and endpoint in parts)

    # ── transport entry point ─────────────────────────────────────────

    async def handle(self, request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0)
        raw_path = request.url.raw_path.decode().split('?', 1)[0]
        parts = [unquote(p) for p in raw_path.strip('/').split('/')]
        params = dict(request.url.params)
        self.requests.append((request.method, parts, params))
        for hook in list(self.hooks):
            hook(request.method, parts)
        if self.unavailable:
            return httpx.Response(503, json={'error': 'cluster unavailable', 'status': 503})
        body = None
        if request.content:
            if 'ndjson' in request.headers.get('content-type', ''):
                body = [json.loads(line) for line in request.content.decode().splitlines() if line]
            else:
                body = json.loads(request.content)
        self.bodies.append((request.method, parts, body))
        return self.route(request.method, parts, params, body)

    def route(self, method, parts, params, body):
        if parts == ['_aliases']:
            return self.update_aliases(body)
        if parts == ['_bulk']:
            return self.bulk(body)
        if parts == ['_search', 'scroll']:
            return self.scroll(method, body)
        name, *rest = parts
        if not rest:
            if method == 'PUT':
                return self.create_index(name, body)
            if method == 'DELETE':
                return self.delete_index(name)
            if method == 'HEAD':
                return httpx.Response(200 if name in self.indices else 404)
        endpoint = rest[0] if rest else None
        if endpoint == '_mapping' and len(rest) == 1:
            return self.put_mapping(name, body) if method == 'PUT' else self.get_mapping(name)
        if endpoint == '_settings':
            return self.put_settings(name, body) if method == 'PUT' else self.get_settings(name, params)
        if endpoint == '_alias':
            return self.get_alias(name)
        if endpoint == '_refresh':
            return self.refresh(name)
        if endpoint == '_search':
            return self.search(name, params, body)
        if endpoint == '_update' and len(rest) == 2 and method == 'POST':
            return self.update_doc(name, rest[1], params, body)
        if endpoint == '_doc' and len(rest) <= 2:
            if len(rest) == 1:
                return self.put_doc(name, None, params, body)
            id = rest[1]
            if method == 'PUT':
                return self.put_doc(name, id, params, body)
            if method in ('GET', 'HEAD'):
                return self.get_doc(name, id, head=method == 'HEAD')
            if method == 'DELETE':
                return self.delete_doc(name, id, params)
        return _error(400, 'illegal_argument_exception', f'no handler found for [{method}] {parts}')

    # ── helpers ───────────────────────────────────────────────────────

    def resolve(self, names):
        targets = []
        for name in names.split(','):
            if name in self.indices:
                targets.append(self.indices[name])
                continue
            aliased = [i for i in self.indices.values() if name in i.aliases]
            if not aliased:
                return None, _error(404, 'index_not_found_exception', f'no such index [{name}]')
            targets.extend(aliased)
        return targets, None

    def one(self, name):
        targets, error = self.resolve(name)
        if error is not None:
            return None, error
        if len(targets) != 1:
            return None, _error(400, 'illegal_argument_exception', f'alias [{name}] has more than one index')
        return targets[0], None

    def shards(self, idx):
        total = 1 + int(idx.settings['number_of_replicas'])
        return {'total': total, 'successful': total if self.replicas_confirmed else 1, 'failed': 0}

    def conditions(self, options):
        """Validate concurrency options, returning ``(error, if_seq_no, if_primary_term)``."""
        if options.get('version') is not None and options.get('version_type') is None:
            return {'type': 'action_request_validation_exception', 'reason': INTERNAL_VERSIONING}, None, None
        seq_no, term = options.get('if_seq_no'), options.get('if_primary_term')
        if (seq_no is None) != (term is None):
            return {
                'type': 'action_request_validation_exception',
                'reason': 'Validation Failed: 1: if_seq_no and if_primary_term must be set together;',
            }, None, None
        if seq_no is None:
            return None, None, None
        return None, int(seq_no), int(term)

    def conflict(self, id, entry, seq_no, term):
        """Return the version conflict reason for a failed condition, or ``None``."""
        if seq_no is None:
            return None
        if entry is None:
            return (f'[{id}]: version conflict, required seqNo [{seq_no}], primary term [{term}]'
                    ' but no document was found')
        if entry[2] != seq_no or term != self.primary_term:
            return (f'[{id}]: version conflict, required seqNo [{seq_no}], primary term [{term}].'
                    f' current document has seqNo [{entry[2]}] and primary term [{self.primary_term}]')
        return None

    def written(self, idx, id, result, status=200):
        entry = idx.docs.get(id)
        return httpx.Response(status, json={
            '_index': idx.name, '_id': id,
            '_version': entry[0] if entry else 1,
            '_seq_no': entry[2] if entry else idx.seq_no,
            '_primary_term': self.primary_term,
            'result': result,
            '_shards': self.shards(idx),
        })

    def mapping_error(self, mappings):
        unsupported = sorted(set(mappings) - ROOT_MAPPING_KEYS)
        if unsupported:
            return _error(400, 'mapper_parsing_exception',
                          f'Root mapping definition has unsupported parameters: {unsupported}')
        return None

    def matches(self, query, source):
        if not query or 'match_all' in query:
            return True
        if 'bool' in query:
            must = query['bool'].get('must', [])
            if isinstance(must, dict):
                must = [must]
            return all(self.matches(q, source) for q in must)
        clause = query.get('term') or query.get('match')
        (path, expected), = clause.items()
        if isinstance(expected, dict):
            expected = expected.get('value', expected.get('query'))
        actual = _field(source, path)
        if isinstance(actual, list):
            return expected in actual
        return actual == expected

    def apply_update(self, source, payload):
        if 'doc' in payload:
            return merge_source(source, payload['doc']), None
        script = payload['script']
        fn = self.scripts.get(script['source'])
        if fn is None:
            return None, {'type': 'script_exception', 'reason': 'compile error'}
        updated = copy.deepcopy(source)
        try:
            fn(updated, script.get('params', {}))
        except Exception as exc:
            return None, {'type': 'script_exception', 'reason': f'runtime error: {exc}'}
        return updated, None

    # ── index administration ──────────────────────────────────────────

    def create_index(self, name, body):
        if name in self.indices:
            return _error(400, 'resource_already_exists_exception', f'index [{name}] already exists')
        body = body or {}
        settings = body.get('settings', {})
        mappings = body.get('mappings', {})
        error = self.mapping_error(mappings)
        if error is not None:
            return error
        properties = mappings.get('properties', {})
        for declaration in properties.values():
            if 'type' not in declaration and 'properties' not in declaration:
                return _error(400, 'mapper_parsing_exception', 'No type specified')
        idx = self.add_index(
            name,
            settings.get('number_of_shards', 1),
            settings.get('number_of_replicas', 1),
            properties,
        )
        idx.aliases.update(body.get('aliases', {}))
        return _ack(shards_acknowledged=self.replicas_confirmed, index=name)

    def delete_index(self, name):
        if name not in self.indices:
            return _error(404, 'index_not_found_exception', f'no such index [{name}]')
        del self.indices[name]
        return _ack()

    def get_mapping(self, names):
        targets, error = self.resolve(names)
        if error is not None:
            return error
        return httpx.Response(200, json={
            idx.name: {'mappings': {'properties': idx.properties} if idx.properties else {}}
            for idx in targets
        })

    def put_mapping(self, names, body):
        targets, error = self.resolve(names)
        if error is not None:
            return error
        error = self.mapping_error(body)
        if error is not None:
            return error
        properties = body.get('properties', {})
        for idx in targets:
            for name, declaration in properties.items():
                existing = idx.properties.get(name)
                if existing and existing.get('type', 'object') != declaration.get('type', 'object'):
                    return _error(
                        400, 'illegal_argument_exception',
                        f"mapper [{name}] cannot be changed from type [{existing.get('type')}]"
                        f" to [{declaration.get('type')}]")
        for idx in targets:
            idx.properties = merge_source(idx.properties, properties)
        return _ack()

    def get_settings(self, names, params):
        result = {}
        for name in names.split(','):
            if name in self.indices:
                result[name] = {'settings': {'index': dict(self.indices[name].settings)}}
            elif params.get('ignore_unavailable') != 'true':
                return _error(404, 'index_not_found_exception', f'no such index [{name}]')
        return httpx.Response(200, json=result)

    def put_settings(self, names, body):
        targets, error = self.resolve(names)
        if error is not None:
            return error
        settings = body.get('index', {})
        if 'number_of_shards' in settings:
            return _error(400, 'illegal_argument_exception',
                          'final index setting [index.number_of_shards], not updateable')
        for idx in targets:
            idx.settings.update({k: str(v) for k, v in settings.items()})
        return _ack()

    def update_aliases(self, body):
        for action in body['actions']:
            (kind, spec), = action.items()
            idx = self.indices.get(spec['index'])
            if idx is None:
                return _error(404, 'index_not_found_exception', f"no such index [{spec['index']}]")
            if kind == 'add':
                idx.aliases.add(spec['alias'])
            elif spec['alias'] in idx.aliases:
                idx.aliases.discard(spec['alias'])
            else:
                return _error(404, 'aliases_not_found_exception', f"aliases [{spec['alias']}] missing")
        return _ack()

    def get_alias(self, names):
        targets, error = self.resolve(names)
        if error is not None:
            return error
        return httpx.Response(200, json={
            idx.name: {'aliases': {alias: {} for alias in sorted(idx.aliases)}} for idx in targets
        })

    def refresh(self, names):
        targets, error = self.resolve(names)
        if error is not None:
            return error
        total = sum(int(i.settings['number_of_shards']) * (1 + int(i.settings['number_of_replicas'])) for i in targets)
        primaries = sum(int(i.settings['number_of_shards']) for i in targets)
        successful = total if self.replicas_confirmed else primaries
        return httpx.Response(200, json={'_shards': {'total': total, 'successful': successful, 'failed': 0}})

    # ── documents ─────────────────────────────────────────────────────

    def put_doc(self, name, id, params, body):
        idx, error = self.one(name)
        if error is not None:
            return error
        invalid, seq_no, term = self.conditions(params)
        if invalid is not None:
            return httpx.Response(400, json={'error': invalid, 'status': 400})
        if id is None:
            self._ids += 1
            id = f'generated-{self._ids}'
        entry = idx.docs.get(id)
        if params.get('op_type') == 'create' and entry is not None:
            return _error(409, 'version_conflict_engine_exception',
                          f'[{id}]: version conflict, document already exists (current version [{entry[0]}])')
        reason = self.conflict(id, entry, seq_no, term)
        if reason is not None:
            return _error(409, 'version_conflict_engine_exception', reason)
        self.write(idx.name, id, body)
        return self.written(idx, id, 'created' if entry is None else 'updated', 201 if entry is None else 200)

    def get_doc(self, name, id, head=False):
        idx, error = self.one(name)
        if error is not None:
            return httpx.Response(404) if head else error
        entry = idx.docs.get(id)
        if entry is None:
            if head:
                return httpx.Response(404)
            return httpx.Response(404, json={'_index': idx.name, '_id': id, 'found': False})
        if head:
            return httpx.Response(200)
        return httpx.Response(200, json={
            '_index': idx.name, '_id': id, '_version': entry[0],
            '_seq_no': entry[2], '_primary_term': self.primary_term,
            'found': True, '_source': entry[1],
        })

    def delete_doc(self, name, id, params):
        idx, error = self.one(name)
        if error is not None:
            return error
        invalid, seq_no, term = self.conditions(params)
        if invalid is not None:
            return httpx.Response(400, json={'error': invalid, 'status': 400})
        entry = idx.docs.get(id)
        reason = self.conflict(id, entry, seq_no, term)
        if reason is not None:
            return _error(409, 'version_conflict_engine_exception', reason)
        if entry is None:
            return httpx.Response(404, json={
                '_index': idx.name, '_id': id, '_version': 1, '_seq_no': idx.next_seq_no(),
                '_primary_term': self.primary_term, 'result': 'not_found',
                '_shards': self.shards(idx),
            })
        self.remove(idx.name, id)
        return httpx.Response(200, json={
            '_index': idx.name, '_id': id, '_version': entry[0] + 1, '_seq_no': idx.seq_no,
            '_primary_term': self.primary_term, 'result': 'deleted',
            '_shards': self.shards(idx),
        })

    def update_doc(self, name, id, params, body):
        idx, error = self.one(name)
        if error is not None:
            return error
        invalid, seq_no, term = self.conditions(params)
        if invalid is not None:
            return httpx.Response(400, json={'error': invalid, 'status': 400})
        entry = idx.docs.get(id)
        if entry is None:
            return _error(404, 'document_missing_exception', f'[{id}]: document missing')
        reason = self.conflict(id, entry, seq_no, term)
        if reason is not None:
            return _error(409, 'version_conflict_engine_exception', reason)
        source, failure = self.apply_update(entry[1], body)
        if failure is not None:
            return httpx.Response(400, json={'error': failure, 'status': 400})
        if source == entry[1]:
            return httpx.Response(200, json={
                '_index': idx.name, '_id': id, '_version': entry[0], '_seq_no': entry[2],
                '_primary_term': self.primary_term, 'result': 'noop',
                '_shards': {'total': 0, 'successful': 0, 'failed': 0},
            })
        self.write(idx.name, id, source)
        return self.written(idx, id, 'updated')

    # ── scroll and bulk ───────────────────────────────────────────────

    def search(self, names, params, body):
        targets, error = self.resolve(names)
        if error is not None:
            return error
        body = body or {}
        hits = []
        for idx in targets:
            for id, (version, source, seq_no) in idx.docs.items():
                if self.matches(body.get('query'), source):
                    hit = {'_index': idx.name, '_id': id}
                    if body.get('version'):
                        hit['_version'] = version
                    if body.get('seq_no_primary_term'):
                        hit['_seq_no'] = seq_no
                        hit['_primary_term'] = self.primary_term
                    if body.get('_source', True) is not False:
                        hit['_source'] = copy.deepcopy(source)
                    hits.append(hit)
        size = body.get('size', 10)
        scroll_id = uuid.uuid4().hex
        self.scrolls[scroll_id] = {'hits': hits[size:], 'size': size}
        return httpx.Response(200, json={
            '_scroll_id': scroll_id,
            'hits': {'total': {'value': len(hits), 'relation': 'eq'}, 'hits': hits[:size]},
        })

    def scroll(self, method, body):
        if method == 'DELETE':
            freed = 0
            for scroll_id in body.get('scroll_id', []):
                freed += self.scrolls.pop(scroll_id, None) is not None
            return httpx.Response(200, json={'succeeded': True, 'num_freed': freed})
        context = self.scrolls.get(body['scroll_id'])
        if context is None:
            return _error(404, 'search_context_missing_exception', 'No search context found')
        page, context['hits'] = context['hits'][:context['size']], context['hits'][context['size']:]
        return httpx.Response(200, json={'_scroll_id': body['scroll_id'], 'hits': {'hits': page}})

    def bulk(self, lines):
        items = []
        lines = iter(lines)
        for action in lines:
            (operation, meta), = action.items()
            payload = next(lines) if operation == 'update' else None
            items.append({operation: self.bulk_item(operation, meta, payload)})
        errors = any(result['status'] >= 300 for item in items for result in item.values())
        return httpx.Response(200, json={'took': 1, 'errors': errors, 'items': items})

    def bulk_item(self, operation, meta, payload):
        id = meta['_id']
        base = {'_index': meta['_index'], '_id': id}
        invalid, seq_no, term = self.conditions(meta)
        if invalid is not None:
            return {**base, 'status': 400, 'error': invalid}
        idx = self.indices.get(meta['_index'])
        if idx is None:
            return {**base, 'status': 404, 'error': {'type': 'index_not_found_exception', 'reason': 'no such index'}}
        entry = idx.docs.get(id)
        if entry is None:
            if operation == 'delete':
                return {**base, 'status': 404, 'result': 'not_found', '_version': 1}
            return {**base, 'status': 404, 'error': {'type': 'document_missing_exception', 'reason': f'[{id}]: document missing'}}
        reason = self.conflict(id, entry, seq_no, term)
        if reason is not None:
            return {**base, 'status': 409, 'error': {'type': 'version_conflict_engine_exception', 'reason': reason}}
        if operation == 'delete':
            self.remove(idx.name, id)
            return {**base, 'status': 200, 'result': 'deleted', '_version': entry[0] + 1,
                    '_seq_no': idx.seq_no, '_primary_term': self.primary_term, '_shards': self.shards(idx)}
        source, failure = self.apply_update(entry[1], payload)
        if failure is not None:
            return {**base, 'status': 400, 'error': failure}
        if source == entry[1]:
            return {**base, 'status': 200, 'result': 'noop', '_version': entry[0],
                    '_shards': {'total': 0, 'successful': 0, 'failed': 0}}
        version = self.write(idx.name, id, source)
        return {**base, 'status': 200, 'result': 'updated', '_version': version,
                '_seq_no': idx.seq_no, '_primary_term': self.primary_term, '_shards': self.shards(idx)}


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
async def client(cluster):
    session = httpx.AsyncClient(transport=httpx.MockTransport(cluster.handle))
    yield DocIndex(host='localhost', port=9200, prefix=None, refresh=False,
                   default_accept='application/json', session=session)
    await session.aclose()
