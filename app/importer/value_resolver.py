"""Resolve free-text values in relational columns to existing entity ids.

Each relational field has its option list loaded once per session (or fetched
on demand by search term for search-only fields). Distinct raw values are
matched against the options, and every row is then resolved by dictionary
lookup, never by another remote call.

A field that ``depends_on`` another one keys its value mappings on the
parent's key as well as its own raw value: "Hall 1" under branch "North" and
"Hall 1" under branch "South" are two separate decisions.
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from app.exceptions import (
    ImportConfigurationError,
    UnsupportedOperationError,
    ValidationException,
)
from app.importer.capabilities import LookupSource, SearchableLookupSource
from app.importer.types import (
    ColumnMapping,
    CreateRequested,
    ParsedDataset,
    PreparedRow,
    RelationalFieldConfig,
    Resolved,
    ResolvedValue,
    Skipped,
    SystemOption,
)
from app.utils.aio import with_timeout

logger = logging.getLogger(__name__)

# A raw value, or (parent key, raw value) for dependent fields
ValueKey = Union[str, tuple]


def key_to_path(key: ValueKey) -> list[str]:
    """Flatten a value key to ``[root raw, ..., own raw]`` for the wire."""
    if isinstance(key, tuple):
        return key_to_path(key[0]) + [key[1]]
    return [key]


def key_from_path(path: Sequence[str]) -> ValueKey:
    key: ValueKey = path[0]
    for raw in path[1:]:
        key = (key, raw)
    return key


def raw_of(key: ValueKey) -> str:
    return key[1] if isinstance(key, tuple) else key


def find_best_match(value: str, options: Sequence[SystemOption]) -> SystemOption | None:
    """Pick an option for a raw value.

    An exact case-insensitive name match wins. Otherwise the first option
    whose name contains the value, or is contained in it, is returned.
    """
    if not value or not options:
        return None
    needle = value.strip().lower()
    if not needle:
        return None
    for option in options:
        if option.name.lower() == needle:
            return option
    for option in options:
        name = option.name.lower()
        if name and (needle in name or name in needle):
            return option
    return None


@dataclass
class ResolverStats:
    """Counters for remote lookups versus answers served from memory."""

    remote_calls: int = 0
    search_cache_hits: int = 0
    mapping_hits: int = 0


@dataclass
class AutoMatchReport:
    matched: int = 0
    unresolved: dict[str, list[ValueKey]] = field(default_factory=dict)
    blocked: dict[str, list[ValueKey]] = field(default_factory=dict)


@dataclass(frozen=True)
class ValueEntry:
    """One distinct raw value of a relational field and its current resolution."""

    field: str
    key: ValueKey
    value: ResolvedValue | None
    auto_matched: bool
    blocked: bool
    options: tuple[SystemOption, ...]

    @property
    def raw(self) -> str:
        return raw_of(self.key)

    @property
    def path(self) -> list[str]:
        return key_to_path(self.key)


class RelationalValueResolver:
    """Holds the option cache and value mappings of one wizard session."""

    def __init__(
        self,
        tenant_id: str,
        fields: Mapping[str, RelationalFieldConfig],
        dataset: ParsedDataset,
        mapping: ColumnMapping,
        lookups: Mapping[str, LookupSource] | None = None,
        *,
        min_search_length: int = 2,
        timeout: float | None = None,
    ):
        self.tenant_id = tenant_id
        self.fields = dict(fields)
        self.dataset = dataset
        self.mapping = mapping
        self.lookups: Mapping[str, LookupSource] = lookups or {}
        self.min_search_length = min_search_length
        self.timeout = timeout
        self.stats = ResolverStats()

        self._order = self._dependency_order()
        self._options: dict[str, list[SystemOption]] = {}
        self._search_cache: dict[tuple[str, str], list[SystemOption]] = {}
        self._mappings: dict[str, dict[ValueKey, ResolvedValue]] = {f: {} for f in self.fields}
        self._auto: dict[str, set[ValueKey]] = {f: set() for f in self.fields}

    def bind_lookups(self, lookups: Mapping[str, LookupSource]) -> None:
        self.lookups = lookups

    # === Configuration ===

    def _dependency_order(self) -> list[str]:
        """Order fields so that every parent comes before its dependents."""
        for name, config in self.fields.items():
            if config.depends_on is None:
                continue
            parent = self.fields.get(config.depends_on)
            if parent is None:
                raise ImportConfigurationError(
                    f"Field '{name}' depends on unknown field '{config.depends_on}'"
                )
            if parent.separator:
                raise ImportConfigurationError(
                    f"Field '{name}' cannot depend on multi-valued field '{config.depends_on}'"
                )
            if not config.filter_field:
                raise ImportConfigurationError(f"Field '{name}' depends on a parent but has no filter field")

        order: list[str] = []
        visiting: set[str] = set()

        def visit(name: str) -> None:
            if name in order:
                return
            if name in visiting:
                raise ImportConfigurationError(f"Circular dependency involving field '{name}'")
            visiting.add(name)
            parent = self.fields[name].depends_on
            if parent:
                visit(parent)
            visiting.discard(name)
            order.append(name)

        for name in self.fields:
            visit(name)
        return order

    def _config(self, field_name: str) -> RelationalFieldConfig:
        config = self.fields.get(field_name)
        if config is None:
            raise ValidationException(f"'{field_name}' is not a relational field")
        return config

    def _source(self, field_name: str) -> LookupSource:
        config = self.fields[field_name]
        source = self.lookups.get(config.source)
        if source is None:
            raise ImportConfigurationError(f"No lookup source registered for '{config.source}'")
        return source

    def _children(self, field_name: str) -> list[str]:
        return [name for name in self._order if self.fields[name].depends_on == field_name]

    def active_fields(self) -> list[str]:
        """Relational fields that are mapped to a column, parents first."""
        return [name for name in self._order if self.mapping.is_mapped(name)]

    # === Reading the data ===

    def _cell_text(self, field_name: str, row: tuple) -> str | None:
        cell = self.dataset.cell(row, self.mapping.get(field_name))
        if cell is None:
            return None
        text = str(cell).strip()
        return text or None

    def _parts(self, field_name: str, text: str) -> list[str]:
        separator = self.fields[field_name].separator
        if not separator:
            return [text]
        return [part.strip() for part in text.split(separator) if part.strip()]

    def _row_key(self, field_name: str, row: tuple, raw: str) -> ValueKey | None:
        parent = self.fields[field_name].depends_on
        if parent is None:
            return raw
        parent_raw = self._cell_text(parent, row) if self.mapping.is_mapped(parent) else None
        if parent_raw is None:
            return None
        parent_key = self._row_key(parent, row, parent_raw)
        if parent_key is None:
            return None
        return (parent_key, raw)

    def value_keys(self, field_name: str) -> list[ValueKey]:
        """Distinct value keys of a mapped field, sorted."""
        if not self.mapping.is_mapped(field_name):
            return []
        keys: set[ValueKey] = set()
        for row in self.dataset.rows:
            text = self._cell_text(field_name, row)
            if text is None:
                continue
            for raw in self._parts(field_name, text):
                key = self._row_key(field_name, row, raw)
                if key is not None:
                    keys.add(key)
        return sorted(keys, key=key_to_path)

    def distinct_values(self, field_name: str) -> list[str]:
        return sorted({raw_of(key) for key in self.value_keys(field_name)})

    # === Options ===

    def _to_options(self, config: RelationalFieldConfig, items) -> list[SystemOption]:
        options: dict[str, SystemOption] = {}
        for item in items:
            if "is_active" in item and not item["is_active"]:
                continue
            name = " ".join(str(item[f]) for f in config.name_fields if item.get(f)).strip()
            option_id = str(item["id"])
            if option_id not in options:
                options[option_id] = SystemOption(id=option_id, name=name, original=item)
        return list(options.values())

    async def _load(self, field_name: str) -> None:
        config = self.fields[field_name]
        source = self._source(field_name)
        items = await with_timeout(
            source.list_all(self.tenant_id), self.timeout, f"Loading {config.label} options"
        )
        self.stats.remote_calls += 1
        self._options[field_name] = self._to_options(config, items)
        logger.debug(f"Loaded {len(self._options[field_name])} {config.label} options")

    async def load_options(self, fields: Sequence[str] | None = None) -> None:
        """Load option lists for the given (default: all mapped) fields concurrently.

        Search-only fields and fields already loaded are left alone.
        """
        targets = [
            name
            for name in (fields if fields is not None else self.active_fields())
            if not self._config(name).search_only and name not in self._options
        ]
        if targets:
            await asyncio.gather(*(self._load(name) for name in targets))

    def options(self, field_name: str) -> list[SystemOption]:
        return list(self._options.get(field_name, []))

    async def search(self, field_name: str, term: str) -> list[SystemOption]:
        """Find options by name, at most one remote call per (field, term)."""
        config = self._config(field_name)
        term = (term or "").strip()
        if len(term) < self.min_search_length:
            return []

        cache_key = (field_name, term.lower())
        cached = self._search_cache.get(cache_key)
        if cached is not None:
            self.stats.search_cache_hits += 1
            return list(cached)

        source = self.lookups.get(config.source)
        if isinstance(source, SearchableLookupSource):
            items = await with_timeout(
                source.search(self.tenant_id, term), self.timeout, f"Searching {config.label}"
            )
            self.stats.remote_calls += 1
            results = self._to_options(config, items)
            known = {option.id for option in self._options.get(field_name, [])}
            self._options.setdefault(field_name, []).extend(o for o in results if o.id not in known)
        else:
            if field_name not in self._options:
                await self.load_options([field_name])
            needle = term.lower()
            results = [o for o in self._options.get(field_name, []) if needle in o.name.lower()]

        self._search_cache[cache_key] = results
        return list(results)

    def candidates(self, field_name: str, key: ValueKey) -> tuple[list[SystemOption], bool]:
        """Options a value may resolve to, and whether its parent blocks it.

        A dependent value is blocked until its parent value resolves; its
        candidates are the options whose filter field equals the parent's id.
        """
        config = self._config(field_name)
        options = self.options(field_name)
        if config.depends_on is None:
            return options, False
        parent_value = self.lookup(config.depends_on, key[0]) if isinstance(key, tuple) else None
        if not isinstance(parent_value, Resolved):
            return [], True
        return [o for o in options if str(o.original.get(config.filter_field)) == parent_value.id], False

    # === Value mappings ===

    def lookup(self, field_name: str, key: ValueKey) -> ResolvedValue | None:
        return self._mappings.get(field_name, {}).get(key)

    def is_auto_matched(self, field_name: str, key: ValueKey) -> bool:
        return key in self._auto.get(field_name, set())

    async def auto_match(self) -> AutoMatchReport:
        """Resolve every undecided value that has a confident match.

        Existing decisions, manual or automatic, are kept.
        """
        report = AutoMatchReport()
        for name in self.active_fields():
            config = self.fields[name]
            for key in self.value_keys(name):
                if key in self._mappings[name]:
                    continue
                raw = raw_of(key)
                if config.search_only:
                    await self.search(name, raw)
                options, blocked = self.candidates(name, key)
                if blocked:
                    report.blocked.setdefault(name, []).append(key)
                    continue
                match = find_best_match(raw, options)
                if match is None:
                    report.unresolved.setdefault(name, []).append(key)
                    continue
                self._mappings[name][key] = Resolved(match.id)
                self._auto[name].add(key)
                report.matched += 1
        logger.info(
            f"Auto-matched {report.matched} values; "
            f"{sum(len(v) for v in report.unresolved.values())} unresolved, "
            f"{sum(len(v) for v in report.blocked.values())} waiting on a parent value"
        )
        return report

    def set_mapping(self, field_name: str, key: ValueKey, value: ResolvedValue) -> None:
        """Record the user's decision for one value.

        Raises:
            UnsupportedOperationError: For a create request
            ValidationException: For an unknown value, a blocked value or an id
                that is not among the value's options
        """
        config = self._config(field_name)
        if isinstance(value, CreateRequested):
            raise UnsupportedOperationError(
                f"Creating a new {config.label} from an import is not supported"
            )
        if key not in self.value_keys(field_name):
            raise ValidationException(
                [{"field": field_name, "message": f"'{raw_of(key)}' does not appear in the {config.label} column"}]
            )
        if isinstance(value, Resolved):
            options, blocked = self.candidates(field_name, key)
            if blocked:
                raise ValidationException(
                    [{"field": field_name, "message": f"Resolve the parent value of '{raw_of(key)}' first"}]
                )
            if field_name in self._options and not config.search_only:
                if value.id not in {o.id for o in options}:
                    raise ValidationException(
                        [{"field": field_name, "message": f"Unknown {config.label} '{value.id}'"}]
                    )

        previous = self._mappings[field_name].get(key)
        self._mappings[field_name][key] = value
        self._auto[field_name].discard(key)
        if previous != value:
            self._reset_dependents(field_name, key)
            self._rematch_dependents(field_name, key)

    def clear_mapping(self, field_name: str, key: ValueKey) -> None:
        self._config(field_name)
        if self._mappings[field_name].pop(key, None) is not None:
            self._auto[field_name].discard(key)
            self._reset_dependents(field_name, key)

    def _still_valid(self, field_name: str, key: ValueKey, value: ResolvedValue) -> bool:
        if isinstance(value, Skipped):
            return True
        options, blocked = self.candidates(field_name, key)
        if blocked:
            return False
        return isinstance(value, Resolved) and value.id in {o.id for o in options}

    def _reset_dependents(self, field_name: str, parent_key: ValueKey) -> None:
        """Drop dependent decisions that no longer fit a changed parent value."""
        for child in self._children(field_name):
            for key in list(self._mappings[child]):
                if not isinstance(key, tuple) or key[0] != parent_key:
                    continue
                value = self._mappings[child][key]
                if key in self._auto[child] or not self._still_valid(child, key, value):
                    del self._mappings[child][key]
                    self._auto[child].discard(key)
                    self._reset_dependents(child, key)

    def _rematch_dependents(self, field_name: str, parent_key: ValueKey) -> None:
        """Auto-match undecided dependent values against a parent's new options."""
        for child in self._children(field_name):
            if not self.mapping.is_mapped(child):
                continue
            for key in self.value_keys(child):
                if key[0] != parent_key or key in self._mappings[child]:
                    continue
                options, blocked = self.candidates(child, key)
                if blocked:
                    continue
                match = find_best_match(raw_of(key), options)
                if match is None:
                    continue
                self._mappings[child][key] = Resolved(match.id)
                self._auto[child].add(key)
                self._rematch_dependents(child, key)

    def invalidate_field(self, field_name: str) -> None:
        """Forget cached data for a field whose column changed.

        Options and search results are refetched on demand. Automatic matches
        are dropped here and, since their keys embed this field's values, in
        every dependent field too.
        """
        self._config(field_name)
        self._options.pop(field_name, None)
        for cache_key in [k for k in self._search_cache if k[0] == field_name]:
            del self._search_cache[cache_key]
        self._drop_auto(field_name)

    def _drop_auto(self, field_name: str) -> None:
        for key in self._auto[field_name]:
            self._mappings[field_name].pop(key, None)
        self._auto[field_name].clear()
        for child in self._children(field_name):
            self._drop_auto(child)

    def entries(self, field_name: str) -> list[ValueEntry]:
        """Every distinct value of a field with its resolution and candidates."""
        result = []
        for key in self.value_keys(field_name):
            options, blocked = self.candidates(field_name, key)
            result.append(
                ValueEntry(
                    field=field_name,
                    key=key,
                    value=self.lookup(field_name, key),
                    auto_matched=self.is_auto_matched(field_name, key),
                    blocked=blocked,
                    options=tuple(options),
                )
            )
        return result

    # === Applying to rows ===

    def resolve_row(self, row: tuple) -> tuple[dict[str, Any], list, list]:
        """Resolve the relational cells of one row from the value mappings.

        Returns:
            ``(resolved, skipped, unresolved)``: ids per field (a list for
            multi-valued fields), then ``(field, raw)`` pairs. Skipped parts of
            multi-valued cells are dropped without excluding the row.
        """
        resolved: dict[str, Any] = {}
        skipped: list[tuple[str, str]] = []
        unresolved: list[tuple[str, str]] = []
        for name in self.active_fields():
            config = self.fields[name]
            text = self._cell_text(name, row)
            if text is None:
                continue
            ids: list[str] = []
            for raw in self._parts(name, text):
                key = self._row_key(name, row, raw)
                value = self.lookup(name, key) if key is not None else None
                if value is not None:
                    self.stats.mapping_hits += 1
                if isinstance(value, Resolved):
                    if value.id not in ids:
                        ids.append(value.id)
                elif isinstance(value, Skipped):
                    if not config.separator:
                        skipped.append((name, raw))
                else:
                    unresolved.append((name, raw))
            if config.separator:
                if ids:
                    resolved[name] = ids
            elif ids:
                resolved[name] = ids[0]
        return resolved, skipped, unresolved

    def prepare_rows(self) -> list[PreparedRow]:
        rows = []
        for ref, row in self.dataset.iter_rows():
            resolved, skipped, unresolved = self.resolve_row(row)
            rows.append(
                PreparedRow(
                    ref=ref,
                    cells=row,
                    resolved=resolved,
                    skipped=tuple(skipped),
                    unresolved=tuple(unresolved),
                )
            )
        return rows
