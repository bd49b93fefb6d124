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
"""Partial document updates with optimistic concurrency.

Each ``update`` or ``upsert`` call runs a Resolve, Apply, Commit cycle:

* Resolve fetches the stored document with its version and its
  ``seq_no``/``primary_term`` concurrency token.
* Apply computes the new source. ``FieldMerge`` directives are merged
  locally with ``merge_source``; ``ScriptMutation`` directives are shipped
  to the backend, which runs the script against the stored source
  atomically.
* Commit writes the result conditioned on the resolved token.

A ``VersionConflictError`` at Commit means a concurrent writer won the
race. The whole cycle, including the fetch, is retried up to
``retry_on_conflict`` times so a merge is never computed against a stale
base; after that the conflict is raised to the caller.

Example:
    >>> await engine.update('people', 'p1', FieldMerge({'address': {'city': 'Lima'}}),
    ...                     retry_on_conflict=3)
    UpdateResult(..., version=4, result='updated', attempts=1)
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from .acks import AckStatus, UpdateResult, UpsertResult, track
from .collections import merge_source, plain
from .documents import ClientSupplied, Document, DocumentStore
from .exceptions import VersionConflictError


__all__ = ['FieldMerge', 'ScriptMutation', 'UpdateDirective', 'MergeUpdateEngine']

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT_LANG = 'painless'


@dataclass(frozen=True)
class FieldMerge:
    """Update directive merging ``partial`` into the stored source."""

    partial: Mapping[str, Any]

    def as_body(self) -> dict:
        return {'doc': plain(self.partial)}


@dataclass(frozen=True)
class ScriptMutation:
    """Update directive running a backend script against the stored source.

    The script body is opaque to the client. It sees the stored fields as
    ``ctx._source`` and ``params`` as read-only inputs; its writes either
    all apply or none do.
    """

    source: str
    params: Mapping[str, Any] = field(default_factory=dict)
    lang: str = DEFAULT_SCRIPT_LANG

    def as_body(self) -> dict:
        return {'script': {'source': self.source, 'lang': self.lang, 'params': plain(self.params)}}


UpdateDirective: TypeAlias = FieldMerge | ScriptMutation


class MergeUpdateEngine:
    def __init__(self, client, documents: DocumentStore | None = None) -> None:
        self.client = client
        self.documents = documents if documents is not None else DocumentStore(client)

    async def _retrying(self, operation: str, index: str, id: str, retry_on_conflict: int,
            attempt: Callable[[int], Awaitable[Any]]) -> Any:
        if retry_on_conflict < 0:
            raise ValueError(f"retry_on_conflict must not be negative, got {retry_on_conflict}")
        attempts = 0
        while True:
            attempts += 1
            try:
                return await attempt(attempts)
            except VersionConflictError:
                if attempts > retry_on_conflict:
                    logger.debug(f"@@@>> {operation.upper()} REJECTED :: INDEX: {index} :: ID: {id} :: ATTEMPTS: {attempts}")
                    raise
                logger.debug(
                    f"@@@>> VERSION CONFLICT :: {operation.upper()} :: INDEX: {index} :: ID: {id}"
                    f" :: RETRY {attempts}/{retry_on_conflict}"
                )

    async def _commit_merge(self, current: Document, directive: FieldMerge,
            refresh: bool | None) -> tuple[AckStatus, int, str]:
        merged = merge_source(current.source, directive.partial)
        if merged == current.source:
            return AckStatus.ACKNOWLEDGED, current.version, 'noop'
        written = await self.documents.put(
            Document(current.index, current.id, merged),
            ClientSupplied(current.id),
            if_seq_no=current.seq_no,
            if_primary_term=current.primary_term,
            refresh=refresh,
        )
        return written.status, written.version, 'updated'

    async def update(self, index: str, id: str, directive: UpdateDirective,
            retry_on_conflict: int = 0, refresh: bool | None = None) -> UpdateResult:
        """Apply a partial update to an existing document.

        Args:
            index: Index holding the document.
            id: Document id.
            directive: ``FieldMerge`` or ``ScriptMutation``.
            retry_on_conflict: How many times to rerun the whole cycle after
                a version conflict before giving up.
            refresh: Make the write visible immediately. Defaults to the
                client's ``refresh`` setting.

        Returns:
            UpdateResult: New version, ``'updated'`` or ``'noop'``, and the
                number of attempts taken.

        Raises:
            NotFoundError: If the document does not exist.
            VersionConflictError: If every attempt lost a race.
        """
        if isinstance(directive, FieldMerge):
            async def attempt(attempts):
                current = await self.documents.get(index, id)
                status, version, result = await self._commit_merge(current, directive, refresh)
                return UpdateResult(status, 'update', index, id=id, version=version, result=result, attempts=attempts)
        elif isinstance(directive, ScriptMutation):
            async def attempt(attempts):
                content = await self.client._send_request(
                    'update', index, id=id, body=directive.as_body(),
                    params=dict(refresh=self.client.refresh if refresh is None else refresh),
                )
                return UpdateResult(
                    track(content, 'update', index, id), 'update', index,
                    id=content.get('_id', id),
                    version=content['_version'],
                    result=content.get('result', 'updated'),
                    attempts=attempts,
                )
        else:
            raise TypeError(f"Unsupported update directive: {directive!r}")
        return await self._retrying('update', index, id, retry_on_conflict, attempt)

    async def upsert(self, index: str, id: str, directive: FieldMerge,
            insert_document: Document | Mapping[str, Any], retry_on_conflict: int = 0,
            refresh: bool | None = None) -> UpsertResult:
        """Insert ``insert_document`` if ``id`` is absent, otherwise merge.

        The insert is a create-only write and the merge a sequence number
        conditioned write, so the insert-or-merge decision is always settled
        by the backend: losing either race raises a version conflict that
        re-enters the cycle.

        Returns:
            UpsertResult: ``was_insert`` tells which branch committed.

        Raises:
            VersionConflictError: If every attempt lost a race.
        """
        if not isinstance(directive, FieldMerge):
            raise TypeError(f"upsert takes a FieldMerge directive, got {directive!r}")
        if isinstance(insert_document, Document):
            insert_document = insert_document.source

        async def attempt(attempts):
            current = await self.documents.get(index, id, default=None)
            if current is None:
                written = await self.documents.put(
                    Document(index, id, insert_document),
                    ClientSupplied(id),
                    create_only=True,
                    refresh=refresh,
                )
                return UpsertResult(
                    written.status, 'upsert', index,
                    id=id, version=written.version, result='created', attempts=attempts,
                    was_insert=True,
                )
            status, version, result = await self._commit_merge(current, directive, refresh)
            return UpsertResult(
                status, 'upsert', index,
                id=id, version=version, result=result, attempts=attempts,
                was_insert=False,
            )

        return await self._retrying('upsert', index, id, retry_on_conflict, attempt)
