"""Generic CRUD repository with operation-scoped error handling."""

from __future__ import annotations

import copy
import math
import operator
from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum
from functools import reduce, wraps
from typing import Any, Type, TypeVar

from flask import current_app
from sqlalchemy import case, delete, func, inspect as sa_inspect, select as sa_select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import load_only, selectinload

from cmsstore.errors import CMSError, ConflictError, NotFoundError, StorageError, ValidationError
from cmsstore.extensions import db
from cmsstore.models.rules import rules_for
from cmsstore.services.validation import validate_document

Model = TypeVar("Model", bound=db.Model)

# Never writable through insert/update payloads
PROTECTED_FIELDS = frozenset({"id", "updated_at"})


def repository_operation(name: str):
    """Wrap a repository method so every failure surfaces as one annotated CMSError.

    Known error kinds keep their class; unique-constraint violations become
    ConflictError, other constraint failures (NOT NULL, foreign keys) and
    anything unexpected a StorageError. The session is rolled back before
    re-raising.
    """

    def decorator(func):
        @wraps(func)
        def wrapped(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except CMSError as exc:
                db.session.rollback()
                raise exc.annotate(name) from exc
            except IntegrityError as exc:
                db.session.rollback()
                if is_unique_violation(exc):
                    current_app.logger.warning(f"{name} conflict on {self.model_name}: {exc.orig}")
                    raise ConflictError(
                        f"{name} failed: {self._integrity_message(exc)}",
                        operation=name,
                    ) from exc
                current_app.logger.error(f"{name} constraint failure on {self.model_name}: {exc.orig}")
                raise StorageError(
                    f"{name} failed: {self._integrity_message(exc)}",
                    operation=name,
                ) from exc
            except Exception as exc:
                db.session.rollback()
                current_app.logger.error(f"{name} failed on {self.model_name}: {exc}")
                raise StorageError(f"{name} failed: {exc}", operation=name) from exc

        return wrapped

    return decorator


def is_unique_violation(error: IntegrityError) -> bool:
    # 23505 is PostgreSQL's unique_violation
    if getattr(error.orig, "pgcode", None) == "23505":
        return True
    error_msg = str(error.orig).lower()
    return "unique" in error_msg or "duplicate" in error_msg


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def to_document(instance: Any, include_hidden: bool = False) -> dict[str, Any]:
    """Serialize a model instance into its nested document shape.

    Attributes that were never loaded (deferred secrets, or columns left out
    by a ``select`` projection) are omitted.
    """
    model = type(instance)
    rules = rules_for(model)
    state = sa_inspect(instance)
    if state.expired_attributes and state.has_identity and not state.detached:
        state.session.refresh(instance)
    unloaded = state.unloaded

    document: dict[str, Any] = {}
    for attr in sa_inspect(model).column_attrs:
        key = attr.key
        if key in unloaded:
            continue
        if key in rules.hidden and not include_hidden:
            continue
        document[key] = _plain(getattr(instance, key))

    for doc_key, attr_name in rules.renamed.items():
        if attr_name in document:
            document[doc_key] = document.pop(attr_name)

    for group, members in rules.flattened.items():
        grouped = {sub: document.pop(attr_name) for sub, attr_name in members.items() if attr_name in document}
        if grouped:
            document[group] = grouped

    for name in rules.extras:
        value = getattr(instance, name)
        if not isinstance(value, (str, dict)) and isinstance(value, Iterable):
            value = list(value)
        document[name] = _plain(value)

    score = getattr(instance, "score", None)
    if score is not None:
        document["score"] = score
    return document


class CRUDService:
    """Base repository exposing the generic document operations for one model."""

    def __init__(self, model: Type[Model]):
        self.model = model
        self.model_name = model.__tablename__
        self.rules = rules_for(model)

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    def _attribute_name(self, key: str) -> str:
        """Map a document key (``metadata``, ``metrics.view_count``) to a model attribute."""
        if key in self.rules.renamed:
            return self.rules.renamed[key]
        if "." in key:
            group, sub = key.split(".", 1)
            if group in self.rules.flattened and sub in self.rules.flattened[group]:
                return self.rules.flattened[group][sub]
        return key

    def _column(self, key: str, sample: Any = None):
        name = self._attribute_name(key)
        if "." in name:
            column_name, sub = name.split(".", 1)
            column_name = self.rules.renamed.get(column_name, column_name)
            column = getattr(self.model, column_name, None)
            if column is None:
                raise ValidationError(f"Unknown field '{key}'")
            element = column[tuple(sub.split("."))] if "." in sub else column[sub]
            if isinstance(sample, bool):
                return element.as_boolean()
            if isinstance(sample, int):
                return element.as_integer()
            if isinstance(sample, float):
                return element.as_float()
            return element.as_string()
        column = getattr(self.model, name, None)
        if column is None:
            raise ValidationError(f"Unknown field '{key}'")
        return column

    def _criteria(self, query: Any) -> list:
        """Turn a query (mapping or iterable of SQL criteria) into WHERE clauses."""
        if query is None:
            return []
        if isinstance(query, Mapping):
            criteria = []
            for key, value in query.items():
                if isinstance(value, (list, tuple, set, frozenset)):
                    values = [v.value if isinstance(v, Enum) else v for v in value]
                    sample = values[0] if values else None
                    criteria.append(self._column(key, sample).in_(values))
                elif value is None:
                    criteria.append(self._column(key).is_(None))
                else:
                    criteria.append(self._column(key, value) == value)
            return criteria
        return list(query)

    def _order_by(self, sort: Any) -> list:
        if sort is None:
            return [self.model.created_at.desc()]
        if isinstance(sort, Mapping):
            clauses = []
            for key, direction in sort.items():
                column = self._column(key)
                clauses.append(column.desc() if direction in (-1, "desc", "descending") else column.asc())
            return clauses
        if isinstance(sort, (list, tuple)):
            return list(sort)
        return [sort]

    def _loader_options(self, select_fields: Iterable[str] | None, populate: Iterable[str] | None) -> list:
        options = []
        if select_fields:
            columns = [getattr(self.model, self._attribute_name(name)) for name in select_fields]
            options.append(load_only(*columns))
        for name in populate or ():
            options.append(selectinload(getattr(self.model, name)))
        return options

    def _select(self, query=None, select_fields=None, populate=None, options=()):
        stmt = sa_select(self.model).where(*self._criteria(query))
        loaders = self._loader_options(select_fields, populate) + list(options)
        if loaders:
            stmt = stmt.options(*loaders)
        return stmt

    def _integrity_message(self, error: IntegrityError) -> str:
        error_msg = str(error.orig).lower()
        if is_unique_violation(error):
            return "A record with these values already exists"
        if "foreign" in error_msg:
            return "Referenced record does not exist"
        if "not null" in error_msg or "null value" in error_msg:
            return "A required value is missing"
        return "Database constraint violation"

    # ------------------------------------------------------------------
    # Payload mapping
    # ------------------------------------------------------------------
    def _prepare(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Map a document-shaped payload onto constructor keyword arguments."""
        prepared: dict[str, Any] = {}
        for key, value in data.items():
            if key in self.rules.flattened and isinstance(value, Mapping):
                for sub, sub_value in value.items():
                    attr_name = self.rules.flattened[key].get(sub)
                    if attr_name is None:
                        raise ValidationError(f"Unknown field '{key}.{sub}'")
                    prepared[attr_name] = sub_value
                continue

            name = self._attribute_name(key)
            if "." in name:
                column_name, sub = name.split(".", 1)
                column_name = self.rules.renamed.get(column_name, column_name)
                if column_name not in self.rules.nested:
                    raise ValidationError(f"Unknown field '{key}'")
                nested = prepared.setdefault(column_name, {})
                _set_path(nested, sub.split("."), value)
                continue

            if name in PROTECTED_FIELDS or not hasattr(self.model, name):
                raise ValidationError(f"Unknown field '{key}'")
            prepared[name] = value
        return prepared

    def _apply(self, instance: Any, changes: Mapping[str, Any]) -> None:
        """Apply a partial update; sub-record paths must be on the allow-list."""
        for key, value in changes.items():
            if key in self.rules.flattened and isinstance(value, Mapping):
                self._apply(instance, {f"{key}.{sub}": sub_value for sub, sub_value in value.items()})
                continue

            name = self._attribute_name(key)
            if "." in name:
                column_name, sub = name.split(".", 1)
                column_name = self.rules.renamed.get(column_name, column_name)
                parts = sub.split(".")
                allowed = self.rules.nested.get(column_name)
                if allowed is None or parts[0] not in allowed:
                    raise ValidationError(f"Field path '{key}' is not updatable")
                document = copy.deepcopy(getattr(instance, column_name) or {})
                _set_path(document, parts, value)
                setattr(instance, column_name, document)
                continue

            if name in PROTECTED_FIELDS or name == "created_at" or not hasattr(self.model, name):
                raise ValidationError(f"Field '{key}' is not updatable")
            setattr(instance, name, value)

    def _values(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Column values for a set-based UPDATE; sub-record paths are not supported."""
        values = {}
        for key, value in changes.items():
            name = self._attribute_name(key)
            if "." in name or name in PROTECTED_FIELDS or not hasattr(self.model, name):
                raise ValidationError(f"Field '{key}' cannot be bulk updated")
            values[name] = value
        return values

    def serialize(self, instance: Any, include_hidden: bool = False) -> dict[str, Any]:
        return to_document(instance, include_hidden=include_hidden)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    @repository_operation("Insert")
    def insert(self, data: Mapping[str, Any]) -> Model:
        instance = self.model(**self._prepare(data))
        validate_document(instance)
        db.session.add(instance)
        db.session.commit()
        return instance

    @repository_operation("Update")
    def update(self, object_id: str, data: Mapping[str, Any]) -> Model:
        instance = db.session.get(self.model, object_id)
        if instance is None:
            raise NotFoundError("Document not found")

        self._apply(instance, data)
        validate_document(instance)
        db.session.commit()
        return instance

    @repository_operation("Find")
    def get_list(
        self,
        query: Any = None,
        sort: Any = None,
        limit: int | None = None,
        skip: int = 0,
        select: Iterable[str] | None = None,
        populate: Iterable[str] | None = None,
        options: Iterable[Any] = (),
    ) -> list[Model]:
        stmt = self._select(query, select, populate, options).order_by(*self._order_by(sort))
        if skip:
            stmt = stmt.offset(skip)
        if limit:
            stmt = stmt.limit(limit)
        return list(db.session.execute(stmt).scalars().all())

    @repository_operation("Find by ID")
    def find_by_id(
        self,
        object_id: str,
        select: Iterable[str] | None = None,
        populate: Iterable[str] | None = None,
        options: Iterable[Any] = (),
    ) -> Model | None:
        stmt = self._select([self.model.id == object_id], select, populate, options)
        return db.session.execute(stmt).scalars().first()

    @repository_operation("Find one")
    def find_one(
        self,
        query: Any,
        select: Iterable[str] | None = None,
        populate: Iterable[str] | None = None,
        options: Iterable[Any] = (),
    ) -> Model | None:
        stmt = self._select(query, select, populate, options).limit(1)
        return db.session.execute(stmt).scalars().first()

    @repository_operation("Delete")
    def remove(self, object_id: str) -> Model:
        instance = db.session.get(self.model, object_id)
        if instance is None:
            raise NotFoundError("Document not found")

        db.session.delete(instance)
        db.session.commit()
        return instance

    @repository_operation("Count")
    def count(self, query: Any = None) -> int:
        stmt = sa_select(func.count()).select_from(self.model).where(*self._criteria(query))
        return db.session.execute(stmt).scalar_one()

    @repository_operation("Exists check")
    def exists(self, query: Any) -> bool:
        stmt = sa_select(self.model.id).where(*self._criteria(query)).limit(1)
        return db.session.execute(stmt).first() is not None

    @repository_operation("Pagination")
    def paginate(
        self,
        query: Any = None,
        page: int = 1,
        limit: int | None = None,
        sort: Any = None,
        select: Iterable[str] | None = None,
        populate: Iterable[str] | None = None,
    ) -> dict[str, Any]:
        limit = limit or current_app.config.get("DEFAULT_PAGE_SIZE", 10)
        page = max(int(page), 1)
        skip = (page - 1) * limit

        documents = self.get_list(query, sort=sort, limit=limit, skip=skip, select=select, populate=populate)
        total = self.count(query)
        total_pages = math.ceil(total / limit) if total else 0

        return {
            "documents": documents,
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_documents": total,
                "per_page": limit,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }

    @repository_operation("Bulk insert")
    def bulk_insert(self, documents: Iterable[Mapping[str, Any]]) -> list[Model]:
        instances = []
        for data in documents:
            instance = self.model(**self._prepare(data))
            validate_document(instance)
            instances.append(instance)

        db.session.add_all(instances)
        db.session.commit()
        return instances

    @repository_operation("Bulk update")
    def bulk_update(self, updates: Iterable[Mapping[str, Any]]) -> int:
        """Apply ``[{"filter": query, "update": changes}, ...]`` in one transaction.

        Returns the number of matched rows.
        """
        matched = 0
        for item in updates:
            stmt = (
                update(self.model)
                .where(*self._criteria(item["filter"]))
                .values(**self._values(item["update"]))
                .execution_options(synchronize_session=False)
            )
            matched += db.session.execute(stmt).rowcount

        db.session.commit()
        return matched

    @repository_operation("Bulk delete")
    def delete_many(self, query: Any) -> int:
        stmt = delete(self.model).where(*self._criteria(query)).execution_options(synchronize_session=False)
        deleted = db.session.execute(stmt).rowcount
        db.session.commit()
        return deleted

    @repository_operation("Search")
    def search(
        self,
        term: str,
        limit: int = 10,
        skip: int = 0,
        select: Iterable[str] | None = None,
        populate: Iterable[str] | None = None,
        query: Any = None,
    ) -> list[Model]:
        """Free-text match over the weighted search fields, best match first."""
        tokens = [token for token in (term or "").lower().split() if token]
        if not tokens or not self.rules.search:
            return []

        terms = [
            case(
                (getattr(self.model, field).ilike(f"%{_escape_like(token)}%", escape="\\"), weight),
                else_=0,
            )
            for field, weight in self.rules.search.items()
            for token in tokens
        ]
        relevance = reduce(operator.add, terms)

        stmt = (
            sa_select(self.model, relevance.label("score"))
            .where(relevance > 0, *self._criteria(query))
            .order_by(relevance.desc(), self.model.created_at.desc())
        )
        loaders = self._loader_options(select, populate)
        if loaders:
            stmt = stmt.options(*loaders)
        if skip:
            stmt = stmt.offset(skip)
        if limit:
            stmt = stmt.limit(limit)

        results = []
        for instance, relevance in db.session.execute(stmt).all():
            instance.score = relevance
            results.append(instance)
        return results

    @repository_operation("Aggregate")
    def aggregate(self, statement) -> list[dict[str, Any]]:
        return [dict(row) for row in db.session.execute(statement).mappings()]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _set_path(document: dict, parts: list[str], value: Any) -> None:
    target = document
    for part in parts[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    target[parts[-1]] = value


__all__ = ["CRUDService", "repository_operation", "to_document"]
