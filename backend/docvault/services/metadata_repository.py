import re
import uuid
from dataclasses import dataclass, field

from sqlalchemy import Float, Integer, and_, column, func, literal_column, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload, sessionmaker

from docvault.database import utcnow
from docvault.errors import CategoryExists, CategoryInUse, CategoryNotFound
from docvault.models.category import Category
from docvault.models.document import Document
from docvault.models.tag import Tag

EDITABLE_FIELDS = {"original_name", "category_id", "description"}


@dataclass
class DocumentFilters:
    category_id: str | None = None
    uploaded_by: str | None = None
    content_type: str | None = None
    tags: list[str] = field(default_factory=list)
    tag_match: str = "any"
    query: str | None = None
    date_from: str | None = None
    date_to: str | None = None


def fts_match_expression(query: str) -> str | None:
    """Turn free text into an FTS5 expression: every term must match, as a prefix."""
    terms = re.findall(r"\w+", query)
    if not terms:
        return None
    return " ".join(f'"{term}"*' for term in terms)


class MetadataRepository:
    """Durable store for document metadata, tags, categories and per-user totals.

    Each call runs in its own session. Returned ORM objects are detached with
    their category and tags already loaded.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _documents(self):
        return select(Document).options(joinedload(Document.category), selectinload(Document.tags))

    def _load(self, db: Session, document_id: str) -> Document | None:
        stmt = self._documents().where(Document.id == document_id).execution_options(populate_existing=True)
        return db.scalars(stmt).first()

    def _resolve_tags(self, db: Session, names: list[str]) -> list[Tag]:
        if not names:
            return []
        for name in names:
            db.execute(
                sqlite_insert(Tag)
                .values(id=str(uuid.uuid4()), name=name)
                .on_conflict_do_nothing(index_elements=["name"])
            )
        return list(db.scalars(select(Tag).where(Tag.name.in_(names))))

    def create_document(
        self,
        *,
        stored_name: str,
        original_name: str,
        file_size_bytes: int,
        content_type: str,
        storage_key: str,
        file_hash: str,
        uploaded_by: str,
        security_metadata: dict,
        category_id: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> Document:
        now = utcnow()
        with self._session_factory() as db:
            doc = Document(
                id=str(uuid.uuid4()),
                stored_name=stored_name,
                original_name=original_name,
                file_size_bytes=file_size_bytes,
                content_type=content_type,
                storage_key=storage_key,
                file_hash=file_hash,
                category_id=category_id,
                uploaded_by=uploaded_by,
                description=description,
                security_metadata=security_metadata,
                created_at=now,
                updated_at=now,
            )
            doc.tags = self._resolve_tags(db, tags or [])
            db.add(doc)
            db.commit()
            return self._load(db, doc.id)

    def get_document(self, document_id: str) -> Document | None:
        with self._session_factory() as db:
            return self._load(db, document_id)

    def update_document(self, document_id: str, changes: dict, tags: list[str] | None = None) -> Document | None:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields are not editable: {sorted(unknown)}")

        with self._session_factory() as db:
            doc = self._load(db, document_id)
            if doc is None:
                return None
            if changes.get("category_id") and db.get(Category, changes["category_id"]) is None:
                raise CategoryNotFound("Category not found")
            for name, value in changes.items():
                setattr(doc, name, value)
            if tags is not None:
                doc.tags = self._resolve_tags(db, tags)
            doc.updated_at = utcnow()
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise CategoryNotFound("Category not found") from exc
            return self._load(db, document_id)

    def delete_document(self, document_id: str) -> bool:
        with self._session_factory() as db:
            doc = db.get(Document, document_id)
            if doc is None:
                return False
            db.delete(doc)
            db.commit()
            return True

    def list_documents(self, filters: DocumentFilters, offset: int = 0, limit: int = 20) -> tuple[list[Document], int]:
        stmt = select(Document)
        order_by = [Document.created_at.desc(), Document.id]

        if filters.category_id:
            stmt = stmt.where(Document.category_id == filters.category_id)
        if filters.uploaded_by:
            stmt = stmt.where(Document.uploaded_by == filters.uploaded_by)
        if filters.content_type:
            stmt = stmt.where(Document.content_type == filters.content_type)
        if filters.date_from:
            stmt = stmt.where(Document.created_at >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(Document.created_at <= filters.date_to)
        if filters.tags:
            if filters.tag_match == "all":
                stmt = stmt.where(and_(*(Document.tags.any(Tag.name == t) for t in filters.tags)))
            else:
                stmt = stmt.where(Document.tags.any(Tag.name.in_(filters.tags)))

        match = fts_match_expression(filters.query) if filters.query else None
        if match:
            fts = (
                text(
                    "SELECT rowid AS fts_rowid, bm25(documents_fts) AS fts_rank "
                    "FROM documents_fts WHERE documents_fts MATCH :match"
                )
                .bindparams(match=match)
                .columns(column("fts_rowid", Integer), column("fts_rank", Float))
                .subquery("fts")
            )
            stmt = stmt.join(fts, fts.c.fts_rowid == literal_column("documents.rowid"))
            order_by = [fts.c.fts_rank, *order_by]

        with self._session_factory() as db:
            total = db.scalar(select(func.count()).select_from(stmt.subquery()))
            page = stmt.options(joinedload(Document.category), selectinload(Document.tags))
            items = db.scalars(page.order_by(*order_by).offset(offset).limit(limit)).unique().all()
        return list(items), total

    def user_totals(self, user_id: str) -> tuple[int, int]:
        """Return (total stored bytes, document count) for one uploader."""
        with self._session_factory() as db:
            row = db.execute(
                select(
                    func.coalesce(func.sum(Document.file_size_bytes), 0),
                    func.count(Document.id),
                ).where(Document.uploaded_by == user_id)
            ).one()
        return int(row[0]), int(row[1])

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def get_category(self, category_id: str) -> Category | None:
        with self._session_factory() as db:
            return db.get(Category, category_id)

    def list_categories(self) -> list[tuple[Category, int]]:
        with self._session_factory() as db:
            rows = db.execute(
                select(Category, func.count(Document.id))
                .outerjoin(Document, Document.category_id == Category.id)
                .group_by(Category.id)
                .order_by(Category.name)
            ).all()
        return [(category, count) for category, count in rows]

    def category_document_count(self, category_id: str) -> int:
        with self._session_factory() as db:
            return db.scalar(select(func.count(Document.id)).where(Document.category_id == category_id))

    def create_category(self, name: str, description: str | None = None) -> Category:
        now = utcnow()
        with self._session_factory() as db:
            category = Category(
                id=str(uuid.uuid4()),
                name=name.strip(),
                description=description.strip() if description else None,
                created_at=now,
                updated_at=now,
            )
            db.add(category)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise CategoryExists(f"Category '{name}' already exists") from exc
            return category

    def update_category(self, category_id: str, name: str | None = None, description: str | None = None) -> Category:
        with self._session_factory() as db:
            category = db.get(Category, category_id)
            if category is None:
                raise CategoryNotFound("Category not found")
            if name is not None:
                category.name = name.strip()
            if description is not None:
                category.description = description.strip() or None
            category.updated_at = utcnow()
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise CategoryExists(f"Category '{name}' already exists") from exc
            return category

    def delete_category(self, category_id: str):
        """Delete a category that no document references.

        The count and the delete share one transaction, and the RESTRICT
        foreign key on documents.category_id rejects the delete if an upload
        slipped in between them.
        """
        with self._session_factory() as db:
            category = db.get(Category, category_id)
            if category is None:
                raise CategoryNotFound("Category not found")
            in_use = db.scalar(select(func.count(Document.id)).where(Document.category_id == category_id))
            if in_use:
                raise CategoryInUse(f"Category is still referenced by {in_use} document(s)")
            db.delete(category)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise CategoryInUse("Category is still referenced by documents") from exc
