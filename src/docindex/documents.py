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
"""Single document storage: put, get, exists and delete."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .acks import DeleteResult, WriteResult, track
from .collections import NA, plain


__all__ = ['Document', 'DocumentStore', 'ServerGenerated', 'ClientSupplied']

logger = logging.getLogger(__name__)


@dataclass
class Document:
    """A stored (or to-be-stored) document.

    Attributes:
        index: Index holding the document.
        id: Document id; ``None`` until the backend assigns one.
        source: Document fields.
        version: Backend version, incremented on every successful write.
        seq_no: Sequence number of the last write, the optimistic
            concurrency token together with ``primary_term``.
        primary_term: Primary term of the last write.
    """

    index: str
    id: str | None = None
    source: dict = field(default_factory=dict)
    version: int | None = None
    seq_no: int | None = None
    primary_term: int | None = None


@dataclass(frozen=True)
class ServerGenerated:
    """Id policy: let the backend assign the document id."""


@dataclass(frozen=True)
class ClientSupplied:
    """Id policy: store under ``id``, replacing any existing document."""

    id: str


def _conditions(if_seq_no: int | None, if_primary_term: int | None) -> dict:
    if (if_seq_no is None) != (if_primary_term is None):
        raise ValueError("if_seq_no and if_primary_term must be given together")
    return dict(if_seq_no=if_seq_no, if_primary_term=if_primary_term)


class DocumentStore:
    """Single-document CRUD against one client's transport."""

    def __init__(self, client) -> None:
        self.client = client

    def _params(self, refresh: bool | None, **params) -> dict:
        params['refresh'] = self.client.refresh if refresh is None else refresh
        return params

    async def put(self, doc: Document, id_policy: ServerGenerated | ClientSupplied | None = None,
            *, if_seq_no: int | None = None, if_primary_term: int | None = None,
            create_only: bool = False, refresh: bool | None = None) -> WriteResult:
        """Index a document, replacing any existing document with the same id.

        A replace is a full overwrite, never a merge.

        Args:
            doc: Document to store.
            id_policy: ``ClientSupplied(id)`` or ``ServerGenerated()``.
                Defaults to ``ClientSupplied(doc.id)`` when the document has
                an id, ``ServerGenerated()`` otherwise.
            if_seq_no: Only write if the stored document's last write has
                this sequence number (requires ``if_primary_term``).
            if_primary_term: Primary term paired with ``if_seq_no``.
            create_only: Only write if no document with this id exists.
            refresh: Make the write visible immediately. Defaults to the
                client's ``refresh`` setting.

        Returns:
            WriteResult: Assigned id, new version and concurrency token, and
                whether the write created the document.

        Raises:
            VersionConflictError: If the stored document changed since
                ``if_seq_no``/``if_primary_term`` were read, or
                ``create_only`` is set and the document exists.
        """
        if id_policy is None:
            id_policy = ServerGenerated() if doc.id is None else ClientSupplied(doc.id)
        conditions = _conditions(if_seq_no, if_primary_term)
        params = self._params(refresh, **conditions)
        body = plain(doc.source)
        if isinstance(id_policy, ClientSupplied):
            if create_only:
                params['op_type'] = 'create'
            content = await self.client._send_request('put', doc.index, id=id_policy.id, body=body, params=params)
        else:
            if if_seq_no is not None or create_only:
                raise ValueError("Conditional writes need a client supplied id")
            content = await self.client._send_request('index', doc.index, body=body, params=params)
        status = track(content, 'put', doc.index, content['_id'])
        return WriteResult(
            status, 'put', doc.index,
            id=content['_id'],
            version=content['_version'],
            created=content.get('result') == 'created',
            seq_no=content.get('_seq_no'),
            primary_term=content.get('_primary_term'),
        )

    async def get(self, index: str, id: str, default: Any = NA) -> Document | Any:
        """Fetch a document.

        Raises:
            NotFoundError: If the document (or its index) does not exist
                and no ``default`` was provided.
        """
        content = await self.client._send_request('get', index, id=id, default=default)
        if default is not NA and content is default:
            return default
        return Document(
            index=self.client.strip_prefix(content.get('_index', index)),
            id=content['_id'],
            source=content.get('_source', {}),
            version=content.get('_version'),
            seq_no=content.get('_seq_no'),
            primary_term=content.get('_primary_term'),
        )

    async def exists(self, index: str, id: str) -> bool:
        return await self.client._send_request('head', index, id=id, default=False) is not False

    async def delete(self, index: str, id: str, *, if_seq_no: int | None = None,
            if_primary_term: int | None = None, refresh: bool | None = None) -> DeleteResult:
        """Delete a document.

        Deleting an absent document is a successful outcome with
        ``found=False``.

        Raises:
            VersionConflictError: If ``if_seq_no``/``if_primary_term`` are
                given and the stored document has changed since.
            NotFoundError: If the index does not exist.
        """
        params = self._params(refresh, **_conditions(if_seq_no, if_primary_term))
        content = await self.client._send_request('delete', index, id=id, params=params, ignore=(404,))
        found = content.get('result') == 'deleted'
        if not found:
            logger.debug(f"@@@>> DELETE OF MISSING DOCUMENT :: INDEX: {index} :: ID: {id}")
        return DeleteResult(
            track(content, 'delete', index, id), 'delete', index,
            id=id,
            version=content.get('_version'),
            found=found,
        )
