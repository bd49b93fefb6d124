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
"""Delete-by-query and update-by-query over a scroll.

A bulk job opens a scroll over the documents matching a query, then for
every page of up to ``batch_size`` hits sends one ``_bulk`` request holding a
sequence number conditioned delete (or update) per hit. A document that changed
between being matched and being mutated comes back as a version conflict:
it is recorded in ``progress.failures`` and skipped, never aborting the job.
Only a failure of the search itself or of a whole bulk request (missing
index, unreachable backend) aborts the job.

``scan_delete`` and ``scan_update`` expose the loop as an async iterator
yielding the job after each batch, so callers can observe partial progress
or stop early. Cancellation is checked before each batch; batches already
sent are not rolled back.

Example:
    >>> job = await client.bulk.delete_by_query({'match': {'name': 'joseph'}}, 'people',
    ...                                         batch_size=500)
    >>> job.state, job.progress.deleted, job.progress.version_conflicts
    (<JobState.COMPLETED: 'completed'>, 1200, 3)
"""
from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Self

from .acks import AckStatus, ack_status
from .exceptions import DocIndexError, PartialAcknowledgedError
from .updates import FieldMerge, ScriptMutation


__all__ = ['JobState', 'BulkFailure', 'BulkProgress', 'BulkMutationJob', 'BulkScanMutator']

logger = logging.getLogger(__name__)

MATCH_ALL = {'match_all': {}}


class JobState(enum.Enum):
    RUNNING = 'running'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    FAILED = 'failed'


@dataclass(frozen=True)
class BulkFailure:
    """A document the job matched but could not mutate."""

    index: str
    id: str
    cause: str
    status: int | None = None

    @property
    def version_conflict(self) -> bool:
        return self.status in (404, 409)


@dataclass
class BulkProgress:
    """Running counters of a bulk job.

    Attributes:
        scanned: Hits consumed from the scroll so far.
        matched: Total hits the query matched when the scroll opened.
        deleted: Documents deleted.
        updated: Documents updated.
        noops: Updates that changed nothing.
        batches: Bulk requests completed.
        version_conflicts: Documents skipped because they changed (or
            vanished) between match and mutation.
        partial: Mutations applied without every shard copy confirming.
        failures: Every skipped document, in the order seen.
    """

    scanned: int = 0
    matched: int = 0
    deleted: int = 0
    updated: int = 0
    noops: int = 0
    batches: int = 0
    version_conflicts: int = 0
    partial: int = 0
    failures: list[BulkFailure] = field(default_factory=list)

    @property
    def mutated(self) -> int:
        return self.deleted + self.updated


@dataclass
class BulkMutationJob:
    """State of one delete-by-query or update-by-query invocation.

    Owned by the call that created it and never shared across calls.
    ``status`` turns ``PARTIAL`` as soon as one mutation, or the final
    refresh, is only partially acknowledged.
    """

    action: str
    query: Any
    target_indices: frozenset[str]
    batch_size: int
    progress: BulkProgress = field(default_factory=BulkProgress)
    state: JobState = JobState.RUNNING
    status: AckStatus = AckStatus.ACKNOWLEDGED
    error: BaseException | None = None

    @property
    def done(self) -> bool:
        return self.state is not JobState.RUNNING

    @property
    def partial(self) -> bool:
        return self.status is AckStatus.PARTIAL

    def require_full(self) -> Self:
        """Return ``self``, or raise if any mutation was only partially acknowledged.

        Raises:
            PartialAcknowledgedError: If ``status`` is ``PARTIAL``.
        """
        if self.partial:
            raise PartialAcknowledgedError(
                "Bulk job was only partially acknowledged",
                index=sorted(self.target_indices),
                operation=f"{self.action}_by_query",
            )
        return self


def _total(page) -> int:
    total = page.get('hits', {}).get('total', 0)
    if isinstance(total, dict):
        return total.get('value', 0)
    return total or 0


def _cause(status: int, result) -> str:
    error = result.get('error')
    if isinstance(error, dict):
        return f"{error.get('type')}: {error.get('reason')}"
    if error:
        return str(error)
    if status == 404:
        return 'document missing'
    return f'HTTP {status}'


class BulkScanMutator:
    def __init__(self, client) -> None:
        self.client = client

    def _job(self, action: str, query, indices, batch_size: int) -> BulkMutationJob:
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        if isinstance(indices, str):
            indices = indices.split(',')
        indices = frozenset(i.strip() for i in indices)
        if not indices:
            raise ValueError("No target indices")
        return BulkMutationJob(action, query, indices, batch_size)

    def _meta(self, hit) -> dict:
        return {
            '_index': hit['_index'],
            '_id': hit['_id'],
            'if_seq_no': hit['_seq_no'],
            'if_primary_term': hit['_primary_term'],
        }

    def _delete_actions(self, hit) -> list[dict]:
        return [{'delete': self._meta(hit)}]

    def _update_actions(self, directive: FieldMerge | ScriptMutation, hit) -> list[dict]:
        return [{'update': self._meta(hit)}, directive.as_body()]

    def _record(self, job: BulkMutationJob, operation: str, result) -> None:
        progress = job.progress
        status = result.get('status', 200)
        if status >= 300:
            failure = BulkFailure(
                self.client.strip_prefix(result.get('_index', '')),
                result.get('_id'),
                _cause(status, result),
                status,
            )
            if failure.version_conflict:
                progress.version_conflicts += 1
            else:
                logger.warning(f"@@@>> BULK {operation.upper()} FAILED :: INDEX: {failure.index} :: ID: {failure.id} :: {failure.cause}")
            progress.failures.append(failure)
            return
        if result.get('result') == 'noop':
            progress.noops += 1
            return
        if operation == 'delete':
            progress.deleted += 1
        else:
            progress.updated += 1
        if ack_status(result) is AckStatus.PARTIAL:
            progress.partial += 1
            job.status = AckStatus.PARTIAL

    async def _apply_batch(self, job: BulkMutationJob, hits, actions: Callable[[Any], list[dict]]) -> None:
        lines = []
        for hit in hits:
            lines.extend(actions(hit))
        content = await self.client._send_request('bulk', ndjson=lines)
        for item in content.get('items', []):
            for operation, result in item.items():
                self._record(job, operation, result)

    async def _clear_scroll(self, scroll_id: str) -> None:
        try:
            await self.client._send_request('clear_scroll', body={'scroll_id': [scroll_id]}, ignore=(404,))
        except DocIndexError as exc:
            # The context still expires after the keep-alive.
            logger.warning(f"@@@>> CLEAR SCROLL FAILED :: {exc}")

    async def _scan(self, job: BulkMutationJob, actions: Callable[[Any], list[dict]],
            cancel: asyncio.Event | None) -> AsyncIterator[BulkMutationJob]:
        scroll_id = None
        try:
            while True:
                if cancel is not None and cancel.is_set():
                    job.state = JobState.CANCELLED
                    logger.debug(f"@@@>> BULK {job.action.upper()} CANCELLED :: INDICES: {sorted(job.target_indices)} :: BATCHES: {job.progress.batches}")
                    return
                if scroll_id is None:
                    page = await self.client._send_request(
                        'search', job.target_indices,
                        body={
                            'query': job.query if job.query is not None else MATCH_ALL,
                            'size': job.batch_size,
                            'seq_no_primary_term': True,
                            '_source': False,
                            'sort': ['_doc'],
                        },
                        params=dict(scroll=self.client.scroll),
                    )
                    job.progress.matched = _total(page)
                else:
                    page = await self.client._send_request(
                        'scroll', body={'scroll': self.client.scroll, 'scroll_id': scroll_id})
                scroll_id = page.get('_scroll_id', scroll_id)
                hits = page.get('hits', {}).get('hits', [])
                if not hits:
                    job.state = JobState.COMPLETED
                    return
                job.progress.scanned += len(hits)
                await self._apply_batch(job, hits, actions)
                job.progress.batches += 1
                yield job
        except Exception as exc:
            job.state = JobState.FAILED
            job.error = exc
            logger.error(f"@@@>> BULK {job.action.upper()} ABORTED :: INDICES: {sorted(job.target_indices)} :: {exc!r}")
            raise
        finally:
            if scroll_id is not None:
                await self._clear_scroll(scroll_id)

    def scan_delete(self, job: BulkMutationJob,
            cancel: asyncio.Event | None = None) -> AsyncIterator[BulkMutationJob]:
        """Iterate a delete job batch by batch, yielding it after each batch."""
        return self._scan(job, self._delete_actions, cancel)

    def scan_update(self, job: BulkMutationJob, directive: FieldMerge | ScriptMutation,
            cancel: asyncio.Event | None = None) -> AsyncIterator[BulkMutationJob]:
        """Iterate an update job batch by batch, yielding it after each batch."""
        return self._scan(job, lambda hit: self._update_actions(directive, hit), cancel)

    async def _run(self, job: BulkMutationJob, batches: AsyncIterator[BulkMutationJob],
            refresh: bool | None) -> BulkMutationJob:
        async with aclosing(batches):
            async for _ in batches:
                pass
        if refresh is None:
            refresh = self.client.refresh
        if refresh and job.progress.mutated:
            ack = await self.client.indices.refresh(job.target_indices)
            if ack.partial:
                job.status = AckStatus.PARTIAL
        if job.partial:
            logger.warning(
                f"Partially acknowledged {job.action}_by_query :: INDICES: {sorted(job.target_indices)}"
                f" :: PARTIAL: {job.progress.partial}/{job.progress.mutated}")
        return job

    async def delete_by_query(self, query: dict | None, indices, batch_size: int = 1000,
            cancel: asyncio.Event | None = None, refresh: bool | None = None) -> BulkMutationJob:
        """Delete every document matching ``query`` in ``indices``.

        Runs to completion (or cancellation) and returns the job. No match
        at all is a completed job with zero counts.

        Args:
            query: Backend query, passed through opaquely. ``None`` matches
                every document.
            indices: Index name, comma-separated names or a collection.
            batch_size: Documents per scroll page and per bulk request.
            cancel: Event checked before each batch; once set, the job
                stops with state ``CANCELLED``.
            refresh: Refresh the target indices afterwards. Defaults to the
                client's ``refresh`` setting.

        Raises:
            NotFoundError: If a target index does not exist.
            BackendUnavailableError: If the backend cannot be reached.
        """
        job = self._job('delete', query, indices, batch_size)
        return await self._run(job, self.scan_delete(job, cancel), refresh)

    async def update_by_query(self, query: dict | None, indices, directive: FieldMerge | ScriptMutation,
            batch_size: int = 1000, cancel: asyncio.Event | None = None,
            refresh: bool | None = None) -> BulkMutationJob:
        """Apply ``directive`` to every document matching ``query``.

        Same protocol and failure isolation as ``delete_by_query``.
        """
        if not isinstance(directive, (FieldMerge, ScriptMutation)):
            raise TypeError(f"Unsupported update directive: {directive!r}")
        job = self._job('update', query, indices, batch_size)
        return await self._run(job, self.scan_update(job, directive, cancel), refresh)
