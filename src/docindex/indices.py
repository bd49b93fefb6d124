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
"""Index administration: lifecycle, mappings, settings, aliases and refresh."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .acks import Acknowledgement, track
from .exceptions import ImmutableSettingError, MappingConflictError
from .schema import IndexHandle, MappingMode, SchemaDescriptor


__all__ = ['IndexAdministrator', 'IndexSettings', 'UPDATABLE_SETTINGS']

logger = logging.getLogger(__name__)

# Settings that may change after creation, keyed by accepted spelling.
UPDATABLE_SETTINGS = {
    'replica_count': 'number_of_replicas',
    'number_of_replicas': 'number_of_replicas',
    'refresh_interval': 'refresh_interval',
}


@dataclass(frozen=True)
class IndexSettings:
    shard_count: int
    replica_count: int
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)


class IndexAdministrator:
    """Creates, configures and deletes indices.

    Every mutating method returns an ``Acknowledgement`` whose ``status``
    tells full from partial acknowledgement; failures raise
    ``DocIndexError`` subclasses.
    """

    def __init__(self, client) -> None:
        self.client = client

    def _ack(self, content, operation: str, index) -> Acknowledgement:
        return Acknowledgement(track(content, operation, index), operation, index)

    async def create(self, handle: IndexHandle) -> Acknowledgement:
        """Provision an index with its shards, replicas, mapping and aliases.

        Raises:
            AlreadyExistsError: If an index with this name exists.
            InvalidSchemaError: If the backend rejects the mapping.
        """
        body = dict(
            settings=handle.settings_body(),
            mappings=handle.schema.as_mapping(),
        )
        if handle.aliases:
            body['aliases'] = {self.client.index_name(alias): {} for alias in sorted(handle.aliases)}
        content = await self.client._send_request('create_index', handle.name, body=body)
        return self._ack(content, 'create_index', handle.name)

    async def delete(self, name: str) -> Acknowledgement:
        """Delete an index.

        Raises:
            NotFoundError: If the index does not exist.
        """
        content = await self.client._send_request('delete_index', name)
        return self._ack(content, 'delete_index', name)

    async def exists(self, name: str) -> bool:
        return await self.client._send_request('head_index', name, default=False) is not False

    async def get_mapping(self, index: str) -> SchemaDescriptor:
        content = await self.client._send_request('get_mapping', index)
        mappings = next(iter(content.values()), {}).get('mappings', {})
        return SchemaDescriptor.from_mapping(mappings)

    async def put_mapping(self, index: str, schema: SchemaDescriptor | Mapping,
            mode: MappingMode = MappingMode.MERGE_ADDITIVE) -> Acknowledgement:
        """Apply field mappings to an existing index.

        Args:
            index: Target index.
            schema: Fields to declare.
            mode: ``CREATE_ONLY`` refuses an index that already has any
                field mapped; ``MERGE_ADDITIVE`` accepts new fields and
                identical redeclarations.

        Raises:
            MappingConflictError: If the mode's precondition does not hold,
                or an existing field would change type.
        """
        if not isinstance(schema, SchemaDescriptor):
            schema = SchemaDescriptor(schema)
        current = await self.get_mapping(index)
        if mode is MappingMode.CREATE_ONLY and current:
            raise MappingConflictError(
                f"Index already has a mapping for {sorted(current)}",
                index=index, operation='put_mapping')
        conflicts = current.conflicts(schema)
        if conflicts:
            details = ', '.join(f'[{name}] from [{current[name].type}] to [{schema[name].type}]' for name in conflicts)
            raise MappingConflictError(
                f"Cannot change the type of {details}",
                index=index, operation='put_mapping')
        content = await self.client._send_request('put_mapping', index, body=schema.as_mapping())
        return self._ack(content, 'put_mapping', index)

    async def get_settings(self, names) -> dict[str, IndexSettings]:
        """Return shard and replica counts keyed by index name.

        Indices that do not exist are absent from the result; callers must
        treat a missing key as "index not found".
        """
        content = await self.client._send_request(
            'get_settings', names, params=dict(ignore_unavailable=True))
        result = {}
        for name, data in content.items():
            settings = data.get('settings', {}).get('index', {})
            result[self.client.strip_prefix(name)] = IndexSettings(
                int(settings['number_of_shards']),
                int(settings['number_of_replicas']),
                settings,
            )
        return result

    async def update_settings(self, names, delta: Mapping[str, Any] | None = None,
            **kwargs) -> Acknowledgement:
        """Change post-creation settings of one or more indices.

        Only the settings in ``UPDATABLE_SETTINGS`` may change; the request
        is refused before anything is sent otherwise.

        Raises:
            ImmutableSettingError: If ``delta`` touches ``shard_count`` or
                any other setting fixed at creation.
        """
        delta = dict(delta or {}, **kwargs)
        if not delta:
            raise ValueError("No settings to update")
        body = {}
        for key, value in delta.items():
            setting = UPDATABLE_SETTINGS.get(key)
            if setting is None:
                raise ImmutableSettingError(
                    f"Setting [{key}] cannot be changed after index creation",
                    index=names, operation='update_settings')
            if setting == 'number_of_replicas':
                value = int(value)
                if value < 0:
                    raise ValueError(f"replica_count must not be negative, got {value}")
            body[setting] = value
        content = await self.client._send_request('put_settings', names, body={'index': body})
        return self._ack(content, 'update_settings', names)

    async def _alias_action(self, action: str, index: str, alias: str) -> Acknowledgement:
        body = {'actions': [{action: {
            'index': self.client.index_name(index),
            'alias': self.client.index_name(alias),
        }}]}
        content = await self.client._send_request('aliases', body=body)
        return self._ack(content, f'{action}_alias', index)

    async def add_alias(self, index: str, alias: str) -> Acknowledgement:
        """Point ``alias`` at ``index``; re-adding an existing pairing is a no-op."""
        return await self._alias_action('add', index, alias)

    async def remove_alias(self, index: str, alias: str) -> Acknowledgement:
        return await self._alias_action('remove', index, alias)

    async def get_aliases(self, index) -> dict[str, set[str]]:
        content = await self.client._send_request('get_alias', index)
        return {
            self.client.strip_prefix(name): {self.client.strip_prefix(alias) for alias in data.get('aliases', {})}
            for name, data in content.items()
        }

    async def refresh(self, names) -> Acknowledgement:
        """Make pending writes visible to subsequent reads."""
        content = await self.client._send_request('refresh', names)
        return self._ack(content, 'refresh', names)
