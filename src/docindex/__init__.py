# -*- coding: utf-8 -*-
#
# Copyright (C) 2015-2026 Dubalu LLC. All rights reserved.
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN
# THE SOFTWARE.
#
"""docindex Python client library.

Provides the ``DocIndex`` async client for managing a clustered document
index over HTTP: index provisioning, schema mappings, settings and aliases
(``client.indices``), single document CRUD (``client.documents``), merge and
scripted updates with optimistic retries (``client.updates``) and scroll
based delete-by-query / update-by-query jobs (``client.bulk``). Supports JSON
and msgpack serialization and Django settings integration.

Configuration is read from environment variables (``DOCINDEX_HOST``,
``DOCINDEX_PORT``, ``DOCINDEX_REFRESH``, ``DOCINDEX_PREFIX``,
``DOCINDEX_TIMEOUT``, ``DOCINDEX_SCROLL``), with optional overrides from
Django settings. A module-level ``client`` singleton is created at import
time using these defaults.

Example:
    >>> from docindex import client, Document
    >>> await client.put(Document('people', 'p1', {'name': 'joseph'}))
    >>> await client.update('people', 'p1', FieldMerge({'age': 19}), retry_on_conflict=3)
    >>> job = await client.delete_by_query({'match': {'name': 'joseph'}}, 'people')
    >>> job.progress.deleted
    1
"""
from __future__ import annotations

import os
import json
import uuid
import logging
from typing import Any, TypeAlias
from urllib.parse import quote

try:
    import msgpack
except ImportError:
    msgpack = None

try:
    import httpx
except ImportError:
    raise ImportError("docindex requires the installation of the httpx module.")

from .collections import NA, DictObject
from .exceptions import (
    DocIndexError,
    NotFoundError,
    AlreadyExistsError,
    InvalidSchemaError,
    MappingConflictError,
    ImmutableSettingError,
    VersionConflictError,
    BackendUnavailableError,
    PartialAcknowledgedError,
    TransportError,
    error_from_response,
)
from .acks import AckStatus, Acknowledgement, WriteResult, DeleteResult, UpdateResult, UpsertResult
from .schema import FieldSpec, SchemaDescriptor, IndexHandle, MappingMode
from .indices import IndexAdministrator, IndexSettings
from .documents import Document, DocumentStore, ServerGenerated, ClientSupplied
from .updates import FieldMerge, ScriptMutation, MergeUpdateEngine
from .bulk import BulkFailure, BulkProgress, BulkMutationJob, JobState, BulkScanMutator


__version__ = '1.0.0'
__all__ = [
    'DocIndex',
    'client',
    'NA',
    'IndexSpec',
    'DocIndexError',
    'NotFoundError',
    'AlreadyExistsError',
    'InvalidSchemaError',
    'MappingConflictError',
    'ImmutableSettingError',
    'VersionConflictError',
    'BackendUnavailableError',
    'PartialAcknowledgedError',
    'TransportError',
    'AckStatus',
    'Acknowledgement',
    'WriteResult',
    'DeleteResult',
    'UpdateResult',
    'UpsertResult',
    'FieldSpec',
    'SchemaDescriptor',
    'IndexHandle',
    'MappingMode',
    'IndexAdministrator',
    'IndexSettings',
    'Document',
    'DocumentStore',
    'ServerGenerated',
    'ClientSupplied',
    'FieldMerge',
    'ScriptMutation',
    'MergeUpdateEngine',
    'BulkFailure',
    'BulkProgress',
    'BulkMutationJob',
    'JobState',
    'BulkScanMutator',
    'DOCINDEX_HOST',
    'DOCINDEX_PORT',
    'DOCINDEX_REFRESH',
    'DOCINDEX_PREFIX',
    'DOCINDEX_TIMEOUT',
    'DOCINDEX_SCROLL',
]

logger = logging.getLogger('docindex')

NAMESPACE_SEPARATOR = '-'

DOCINDEX_HOST = os.environ.get('DOCINDEX_HOST', '127.0.0.1')
DOCINDEX_PORT = os.environ.get('DOCINDEX_PORT', 9200)
DOCINDEX_REFRESH = os.environ.get('DOCINDEX_REFRESH', '').lower() in ('1', 'true', 'yes', 'on')
DOCINDEX_PREFIX = os.environ.get('DOCINDEX_PREFIX', 'default')
DOCINDEX_TIMEOUT = float(os.environ.get('DOCINDEX_TIMEOUT', 30))
DOCINDEX_SCROLL = os.environ.get('DOCINDEX_SCROLL', '1m')

try:
    from django.conf import settings
    DOCINDEX_HOST = getattr(settings, 'DOCINDEX_HOST', DOCINDEX_HOST)
    DOCINDEX_PORT = getattr(settings, 'DOCINDEX_PORT', DOCINDEX_PORT)
    DOCINDEX_REFRESH = getattr(settings, 'DOCINDEX_REFRESH', DOCINDEX_REFRESH)
    DOCINDEX_PREFIX = getattr(settings, 'DOCINDEX_PREFIX', getattr(settings, 'PROJECT_SUFFIX', DOCINDEX_PREFIX))
    DOCINDEX_TIMEOUT = getattr(settings, 'DOCINDEX_TIMEOUT', DOCINDEX_TIMEOUT)
    DOCINDEX_SCROLL = getattr(settings, 'DOCINDEX_SCROLL', DOCINDEX_SCROLL)
except Exception:
    settings = None


IndexSpec: TypeAlias = str | tuple[str, ...] | list[str] | set[str] | frozenset[str]


class DocIndex:
    """Async client for a clustered document index.

    Owns one instance of each component, all sharing this client's
    transport:

    * ``indices``: ``IndexAdministrator`` (create/delete, mappings,
      settings, aliases, refresh).
    * ``documents``: ``DocumentStore`` (put, get, exists, delete).
    * ``updates``: ``MergeUpdateEngine`` (update, upsert).
    * ``bulk``: ``BulkScanMutator`` (delete_by_query, update_by_query).

    All requests route through ``_send_request``, which builds URLs, tags
    the request with a correlation id, handles serialization (JSON, msgpack
    or ndjson) and translates error responses into ``DocIndexError``
    subclasses.

    Attributes:
        host: Server hostname.
        port: Server port.
        refresh: Whether writes make their changes visible immediately by
            default.
        prefix: Namespace prepended to every index and alias name.
        timeout: Per-request timeout in seconds.
        scroll: Scroll context keep-alive used by bulk jobs.
        default_accept: Default ``Accept`` header for requests.
        default_accept_encoding: Default ``Accept-Encoding`` header.

    Example:
        >>> client = DocIndex(host='localhost', port=9200, prefix='shop')
        >>> await client.indices.create(IndexHandle('book', shard_count=3))
        >>> doc = await client.get('book', 'b1')
    """

    NotFoundError = NotFoundError
    NA = NA

    session = httpx.AsyncClient(
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=100),
        trust_env=False,
        follow_redirects=False,
    )
    _actions = dict(
        create_index=('PUT', '{index}'),
        delete_index=('DELETE', '{index}'),
        head_index=('HEAD', '{index}'),
        get_mapping=('GET', '{index}/_mapping'),
        put_mapping=('PUT', '{index}/_mapping'),
        get_settings=('GET', '{index}/_settings'),
        put_settings=('PUT', '{index}/_settings'),
        get_alias=('GET', '{index}/_alias'),
        aliases=('POST', '_aliases'),
        refresh=('POST', '{index}/_refresh'),
        index=('POST', '{index}/_doc'),
        put=('PUT', '{index}/_doc/{id}'),
        get=('GET', '{index}/_doc/{id}'),
        head=('HEAD', '{index}/_doc/{id}'),
        delete=('DELETE', '{index}/_doc/{id}'),
        update=('POST', '{index}/_update/{id}'),
        search=('POST', '{index}/_search'),
        scroll=('POST', '_search/scroll'),
        clear_scroll=('DELETE', '_search/scroll'),
        bulk=('POST', '_bulk'),
    )

    def __init__(self, host: str | None = None, port: str | int | None = None,
            refresh: bool | None = None, prefix: str | None = None,
            timeout: float | None = None, scroll: str | None = None,
            default_accept: str | None = None,
            default_accept_encoding: str | None = None,
            session: httpx.AsyncClient | None = None) -> None:
        """Initialize the client.

        Args:
            host: Server hostname. If it contains a colon, the part after
                it is used as the port. Defaults to ``DOCINDEX_HOST``.
            port: Server port. Defaults to ``DOCINDEX_PORT``.
            refresh: Default ``refresh`` flag for writes. Defaults to
                ``DOCINDEX_REFRESH``.
            prefix: Namespace for index and alias names. Defaults to
                ``None`` (no namespace).
            timeout: Request timeout in seconds. Defaults to
                ``DOCINDEX_TIMEOUT``.
            scroll: Scroll keep-alive for bulk jobs. Defaults to
                ``DOCINDEX_SCROLL``.
            default_accept: Default ``Accept`` header. Defaults to
                ``'application/x-msgpack'`` if msgpack is available,
                otherwise ``'application/json'``.
            default_accept_encoding: Default ``Accept-Encoding`` header.
                Defaults to ``'deflate, gzip, identity'``.
            session: ``httpx.AsyncClient`` to use instead of the shared
                class-level connection pool.
        """
        if host is None:
            host = DOCINDEX_HOST
        if port is None:
            port = DOCINDEX_PORT
        if refresh is None:
            refresh = DOCINDEX_REFRESH
        if timeout is None:
            timeout = DOCINDEX_TIMEOUT
        if scroll is None:
            scroll = DOCINDEX_SCROLL
        if host and ':' in host:
            host, _, port = host.partition(':')
        self.host = host
        self.port = port
        self.refresh = refresh
        self.prefix = f'{prefix}{NAMESPACE_SEPARATOR}' if prefix else ''
        self.timeout = timeout
        self.scroll = scroll
        if default_accept is None:
            default_accept = 'application/json' if msgpack is None else 'application/x-msgpack'
        self.default_accept = default_accept
        if default_accept_encoding is None:
            default_accept_encoding = 'deflate, gzip, identity'
        self.default_accept_encoding = default_accept_encoding
        if session is not None:
            self.session = session

        self.DoesNotExist = NotFoundError

        self.indices = IndexAdministrator(self)
        self.documents = DocumentStore(self)
        self.updates = MergeUpdateEngine(self, self.documents)
        self.bulk = BulkScanMutator(self)

    def index_name(self, name: str) -> str:
        """Return ``name`` inside this client's namespace."""
        name = name.strip('/ ')
        if self.prefix and not name.startswith(self.prefix):
            return f'{self.prefix}{name}'
        return name

    def strip_prefix(self, name: str) -> str:
        """Return a backend index or alias name without this client's namespace."""
        if self.prefix and name.startswith(self.prefix):
            return name[len(self.prefix):]
        return name

    def _build_url(self, action_request: str, index: IndexSpec | None,
            host: str | None, port: str | int | None, id: str | None) -> str:
        """Build the full URL for an API request.

        Constructs ``http://{host}:{port}/{path}`` where ``path`` comes from
        the action's template, with ``{index}`` replaced by the namespaced,
        comma-joined index names and ``{id}`` by the quoted document id.

        Args:
            action_request: Key into ``_actions``.
            index: Index name, comma-separated names, or a list, tuple or
                set of names. ``None`` for cluster-level actions.
            host: Server hostname override. Falls back to ``self.host``.
            port: Server port override. Falls back to ``self.port``.
            id: Optional document ID.

        Returns:
            str: The fully constructed URL.
        """
        if host and ':' in host:
            host, _, port = host.partition(':')
        if not host:
            host = self.host
        if not port:
            port = self.port
        host = f'{host}:{port}'

        if index is not None:
            if not isinstance(index, (tuple, list, set, frozenset)):
                index = index.split(',')
            index = ','.join(sorted({self.index_name(i) for i in index}))

        _, path = self._actions[action_request]
        path = path.format(index=index, id=quote(str(id), safe='') if id is not None else '')
        return f'http://{host}/{path}'

    def _decode(self, res: httpx.Response) -> DictObject | bytes:
        if not res.content:
            return DictObject()
        content_type = res.headers.get('content-type', '')
        if 'application/x-msgpack' in content_type:
            return msgpack.loads(res.content, object_pairs_hook=DictObject)
        if 'application/json' in content_type:
            return json.loads(res.content, object_pairs_hook=DictObject)
        return res.content

    async def _send_request(self, action_request: str, index: IndexSpec | None = None,
            host: str | None = None, port: str | int | None = None,
            id: str | None = None, body: dict | list | bytes | None = None,
            default: Any = NA, ignore: tuple[int, ...] = (), **kwargs) -> DictObject | bytes | Any:
        """Send an HTTP request to the cluster.

        Central method through which all operations are routed. Handles URL
        construction, correlation ids, content serialization (JSON,
        msgpack or ndjson), request dispatch, error translation and response
        deserialization.

        Args:
            action_request: Key into ``_actions`` naming the API action.
            index: Index name(s) the request targets.
            host: Server hostname override.
            port: Server port override.
            id: Document ID for the request.
            body: Request body. Dicts and lists are serialized according to
                the content type; bytes are sent as-is.
            default: Value returned on a plain 404 (document or resource
                absent). If not provided (``NA``), the 404 is raised as
                ``NotFoundError``. A 404 carrying an error payload (e.g. a
                missing index) is always raised.
            ignore: HTTP statuses whose responses are returned instead of
                raised, unless they carry an error payload.
            **kwargs: Additional keyword arguments passed to the underlying
                HTTP request (e.g., ``params``, ``headers``). ``json``,
                ``msgpack`` and ``ndjson`` force the body encoding; ``ndjson``
                takes a list of objects sent one per line.

        Returns:
            DictObject: Deserialized response content (raw bytes for unknown
                content types).

        Raises:
            DocIndexError: Translated from the backend error payload or
                status (``NotFoundError``, ``VersionConflictError``, ...).
            BackendUnavailableError: If the request could not be delivered
                or timed out.
            TransportError: For any other HTTP error status.
        """

        http_method, _ = self._actions[action_request]
        url = self._build_url(action_request, index, host, port, id)

        params = kwargs.pop('params', None)
        if params is not None:
            kwargs['params'] = {
                k: ('true' if v else 'false') if isinstance(v, bool) else v
                for k, v in params.items()
                if v is not None and (k not in ('refresh', 'pretty') or v)
            }

        headers = kwargs.setdefault('headers', {})
        accept = headers.setdefault('accept', self.default_accept)
        headers.setdefault('accept-encoding', self.default_accept_encoding)
        correlation_id = headers.setdefault('x-opaque-id', uuid.uuid4().hex)

        if 'ndjson' in kwargs:
            body = ''.join(f'{json.dumps(line, ensure_ascii=True)}\n' for line in kwargs.pop('ndjson'))
            headers['content-type'] = 'application/x-ndjson'
            is_msgpack = is_json = False
        elif 'json' in kwargs:
            body = kwargs.pop('json')
            headers['content-type'] = 'application/json'
            is_msgpack = False
            is_json = True
        elif 'msgpack' in kwargs:
            body = kwargs.pop('msgpack')
            headers['content-type'] = 'application/x-msgpack'
            is_msgpack = True
            is_json = False
        else:
            content_type = headers.setdefault('content-type', accept)
            is_msgpack = 'application/x-msgpack' in content_type
            is_json = 'application/json' in content_type

        if body is not None:
            if logger.isEnabledFor(logging.DEBUG):
                try:
                    verb_body = json.dumps(body, ensure_ascii=True)
                except Exception:
                    verb_body = body
                logger.debug(f"@@@>> [{correlation_id}] {http_method} {url}  ::  BODY: {verb_body}  ::  KWARGS: {kwargs}")
            if isinstance(body, (dict, list)):
                if is_msgpack:
                    body = msgpack.dumps(body)
                elif is_json:
                    body = json.dumps(body, ensure_ascii=True)
            kwargs['content'] = body
        else:
            logger.debug(f"@@@>> [{correlation_id}] {http_method} {url}  ::  KWARGS: {kwargs}")

        kwargs.setdefault('timeout', self.timeout)
        try:
            res = await self.session.request(http_method, url, **kwargs)
        except httpx.TransportError as exc:
            logger.debug(f"@@@RES>> [{correlation_id}] {exc!r}")
            raise BackendUnavailableError(
                str(exc) or exc.__class__.__name__,
                index=index, id=id, operation=action_request,
            ) from exc

        content = self._decode(res)
        if res.status_code >= 400:
            has_error = isinstance(content, dict) and 'error' in content
            if res.status_code == 404 and default is not NA and not has_error:
                return default
            if res.status_code in ignore and not has_error:
                return content
            logger.debug(f"@@@RES>> [{correlation_id}] {res.status_code} :: {content}")
            error = error_from_response(res.status_code, content, index=index, id=id, operation=action_request)
            if error is not None:
                raise error
            res.raise_for_status()

        return content

    async def get(self, index: IndexSpec, id: str, default: Any = NA) -> Document | Any:
        """Shortcut for ``documents.get``."""
        return await self.documents.get(index, id, default=default)

    async def put(self, doc: Document, id_policy: ServerGenerated | ClientSupplied | None = None,
            refresh: bool | None = None) -> WriteResult:
        """Shortcut for ``documents.put``."""
        return await self.documents.put(doc, id_policy, refresh=refresh)

    async def delete(self, index: IndexSpec, id: str, refresh: bool | None = None) -> DeleteResult:
        """Shortcut for ``documents.delete``."""
        return await self.documents.delete(index, id, refresh=refresh)

    async def update(self, index: IndexSpec, id: str, directive: FieldMerge | ScriptMutation,
            retry_on_conflict: int = 0, refresh: bool | None = None) -> UpdateResult:
        """Shortcut for ``updates.update``."""
        return await self.updates.update(index, id, directive, retry_on_conflict, refresh=refresh)

    async def upsert(self, index: IndexSpec, id: str, directive: FieldMerge,
            insert_document: Document | dict, retry_on_conflict: int = 0,
            refresh: bool | None = None) -> UpsertResult:
        """Shortcut for ``updates.upsert``."""
        return await self.updates.upsert(index, id, directive, insert_document, retry_on_conflict, refresh=refresh)

    async def delete_by_query(self, query: dict | None, indices: IndexSpec,
            batch_size: int = 1000, **kwargs) -> BulkMutationJob:
        """Shortcut for ``bulk.delete_by_query``."""
        return await self.bulk.delete_by_query(query, indices, batch_size, **kwargs)

    async def update_by_query(self, query: dict | None, indices: IndexSpec,
            directive: FieldMerge | ScriptMutation, batch_size: int = 1000,
            **kwargs) -> BulkMutationJob:
        """Shortcut for ``bulk.update_by_query``."""
        return await self.bulk.update_by_query(query, indices, directive, batch_size, **kwargs)


client = DocIndex(host=DOCINDEX_HOST, port=DOCINDEX_PORT, refresh=DOCINDEX_REFRESH, prefix=DOCINDEX_PREFIX)
