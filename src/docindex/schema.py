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
"""Schema descriptors for docindex indices.

A ``SchemaDescriptor`` is an immutable value object holding an index's field
mappings (field name to ``FieldSpec``) plus opaque index settings such as
analysis chains. Field options and settings are never interpreted beyond
what is needed to render them and to check additive-only evolution.

Example:
    >>> schema = SchemaDescriptor.from_shorthand(
    ...     name='type=text',
    ...     publishDate='type=date,format=yyyy-MM-dd HH:mm:ss||epoch_millis',
    ... )
    >>> schema['publishDate'].format
    'yyyy-MM-dd HH:mm:ss||epoch_millis'
"""
from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .exceptions import InvalidSchemaError, MappingConflictError


__all__ = ['FieldSpec', 'SchemaDescriptor', 'IndexHandle', 'MappingMode']

ANALYZED_TYPES = frozenset(('text',))
OBJECT_TYPES = frozenset(('object', 'nested'))


class MappingMode(enum.Enum):
    """How ``put_mapping`` treats an index that already has a mapping."""

    CREATE_ONLY = 'create_only'
    MERGE_ADDITIVE = 'merge_additive'


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of a single field.

    Attributes:
        type: Backend data type (``'text'``, ``'keyword'``, ``'date'``, ...).
        format: Optional format string (e.g. date patterns), passed through
            opaquely.
        options: Any other field options, passed through opaquely.
    """

    type: str
    format: str | None = None
    options: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def analyzed(self) -> bool:
        return self.type in ANALYZED_TYPES

    def compatible_with(self, other: FieldSpec) -> bool:
        return self.type == other.type

    def as_mapping(self) -> dict:
        mapping = {'type': self.type}
        if self.format is not None:
            mapping['format'] = self.format
        mapping.update(self.options)
        return mapping

    @classmethod
    def coerce(cls, value: FieldSpec | Mapping | str) -> FieldSpec:
        """Build a ``FieldSpec`` from a spec, a mapping or a shorthand string."""
        if isinstance(value, FieldSpec):
            return value
        if isinstance(value, str):
            return cls.from_shorthand(value)
        if isinstance(value, Mapping):
            options = dict(value)
            type_ = options.pop('type', None)
            format_ = options.pop('format', None)
            if not type_:
                raise InvalidSchemaError(f"Field declaration has no type: {dict(value)!r}")
            return cls(type_, format_, options)
        raise InvalidSchemaError(f"Cannot build a field declaration from {value!r}")

    @classmethod
    def from_shorthand(cls, shorthand: str) -> FieldSpec:
        """Parse ``'type=date,format=yyyy-MM-dd'`` style declarations."""
        options = {}
        for part in shorthand.split(','):
            key, sep, value = part.partition('=')
            key = key.strip()
            if not sep or not key:
                raise InvalidSchemaError(f"Malformed field declaration: {shorthand!r}")
            options[key] = value.strip()
        return cls.coerce(options)


class SchemaDescriptor(Mapping):
    """Immutable mapping of field names to ``FieldSpec`` plus index settings.

    Dotted field names (``'author.name'``) declare sub-fields of an object
    field and are rendered as nested ``properties``.

    Args:
        fields: Mapping or iterable of ``(name, spec)`` pairs. Specs may be
            ``FieldSpec`` instances, mappings or shorthand strings.
        settings: Opaque index settings sent on index creation.

    Raises:
        InvalidSchemaError: If a field is declared twice with different
            types, a scalar field also has sub-fields, or a declaration has
            no type.
    """

    def __init__(self, fields: Mapping | Iterable[tuple[str, Any]] = (),
            settings: Mapping[str, Any] | None = None) -> None:
        if isinstance(fields, Mapping):
            fields = fields.items()
        declared: dict[str, FieldSpec] = {}
        for name, spec in fields:
            spec = FieldSpec.coerce(spec)
            previous = declared.get(name)
            if previous is not None and not previous.compatible_with(spec):
                raise InvalidSchemaError(
                    f"Field [{name}] declared as both [{previous.type}] and [{spec.type}]")
            declared[name] = spec
        for name in declared:
            parent, _, _ = name.rpartition('.')
            while parent:
                parent_spec = declared.get(parent)
                if parent_spec is not None and parent_spec.type not in OBJECT_TYPES:
                    raise InvalidSchemaError(
                        f"Field [{parent}] of type [{parent_spec.type}] cannot have sub-field [{name}]")
                parent, _, _ = parent.rpartition('.')
        self._fields = MappingProxyType(declared)
        self._settings = MappingProxyType(dict(settings or {}))

    @property
    def fields(self) -> Mapping[str, FieldSpec]:
        return self._fields

    @property
    def settings(self) -> Mapping[str, Any]:
        return self._settings

    def __getitem__(self, name: str) -> FieldSpec:
        return self._fields[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SchemaDescriptor):
            return NotImplemented
        return dict(self._fields) == dict(other._fields) and dict(self._settings) == dict(other._settings)

    def __hash__(self) -> int:
        return hash(tuple(sorted(self._fields.items(), key=lambda item: item[0])))

    def __repr__(self) -> str:
        declared = ', '.join(f'{name}={spec.type}' for name, spec in self._fields.items())
        return f'SchemaDescriptor({declared})'

    def conflicts(self, other: SchemaDescriptor) -> list[str]:
        """Return the names of fields ``other`` redeclares incompatibly."""
        return [
            name for name, spec in other.items()
            if name in self._fields and not self._fields[name].compatible_with(spec)
        ]

    def merge(self, other: SchemaDescriptor) -> SchemaDescriptor:
        """Return a descriptor holding the fields of both descriptors.

        Schema evolution is additive-only: new fields are accepted, existing
        fields may only be redeclared with the same type.

        Raises:
            MappingConflictError: If ``other`` changes the type of an
                existing field.
        """
        conflicts = self.conflicts(other)
        if conflicts:
            details = ', '.join(
                f'[{name}] from [{self._fields[name].type}] to [{other[name].type}]'
                for name in conflicts
            )
            raise MappingConflictError(f"Cannot change the type of {details}")
        fields = dict(self._fields)
        for name, spec in other.items():
            fields.setdefault(name, spec)
        settings = dict(self._settings)
        settings.update(other.settings)
        return SchemaDescriptor(fields, settings)

    def as_mapping(self) -> dict:
        """Render the fields as a backend mapping (``{'properties': ...}``)."""
        properties: dict[str, dict] = {}
        for name in sorted(self._fields, key=lambda n: n.count('.')):
            spec = self._fields[name]
            *parents, leaf = name.split('.')
            container = properties
            for parent in parents:
                node = container.setdefault(parent, {'type': 'object'})
                container = node.setdefault('properties', {})
            node = container.setdefault(leaf, {})
            node.update(spec.as_mapping())
        return {'properties': properties}

    @classmethod
    def from_mapping(cls, mapping: Mapping, settings: Mapping | None = None) -> SchemaDescriptor:
        """Build a descriptor from a backend mapping.

        Nested ``properties`` become dotted field names; object fields keep
        their own declaration.
        """
        fields = []

        def walk(properties, path):
            for name, declaration in properties.items():
                declaration = dict(declaration)
                children = declaration.pop('properties', None)
                if children is not None:
                    declaration.setdefault('type', 'object')
                fields.append((f'{path}{name}', declaration))
                if children:
                    walk(children, f'{path}{name}.')

        walk(mapping.get('properties', {}), '')
        return cls(fields, settings)

    @classmethod
    def from_shorthand(cls, **declarations: str) -> SchemaDescriptor:
        """Build a descriptor from ``name='type=...,format=...'`` keywords."""
        return cls({name: FieldSpec.from_shorthand(value) for name, value in declarations.items()})


@dataclass(frozen=True)
class IndexHandle:
    """Everything needed to provision an index.

    Attributes:
        name: Index name, unique within the client's namespace.
        shard_count: Number of primary shards, fixed at creation.
        replica_count: Number of replicas per primary shard.
        schema: Field mappings and opaque settings.
        aliases: Aliases to attach on creation.
    """

    name: str
    shard_count: int = 1
    replica_count: int = 1
    schema: SchemaDescriptor = field(default_factory=SchemaDescriptor)
    aliases: frozenset[str] = frozenset()

    def __post_init__(self):
        if not self.name:
            raise ValueError("Index name must not be empty")
        if self.shard_count < 1:
            raise ValueError(f"shard_count must be at least 1, got {self.shard_count}")
        if self.replica_count < 0:
            raise ValueError(f"replica_count must not be negative, got {self.replica_count}")
        if not isinstance(self.schema, SchemaDescriptor):
            object.__setattr__(self, 'schema', SchemaDescriptor(self.schema))
        object.__setattr__(self, 'aliases', frozenset(self.aliases))

    def settings_body(self) -> dict:
        settings = dict(self.schema.settings)
        settings['number_of_shards'] = self.shard_count
        settings['number_of_replicas'] = self.replica_count
        return settings
