import pytest

from docvault.errors import CategoryInUse, CategoryNotFound
from docvault.models.tag import Tag
from docvault.services.metadata_repository import DocumentFilters, fts_match_expression


class TestMatchExpression:
    def test_terms_become_prefix_matches(self):
        assert fts_match_expression("board minutes") == '"board"* "minutes"*'

    def test_operators_are_neutralised(self):
        assert fts_match_expression('roof OR "repair') == '"roof"* "OR"* "repair"*'

    def test_no_terms(self):
        assert fts_match_expression("  -*  ") is None


class TestMetadataRepository:
    def _create(self, repository, name="minutes.pdf", uploaded_by="member-1", size=100, **kw):
        return repository.create_document(
            stored_name=f"abcd1234_{name}",
            original_name=name,
            file_size_bytes=size,
            content_type="application/pdf",
            storage_key=f"documents/{uploaded_by}/{name}",
            file_hash="ab" * 32,
            uploaded_by=uploaded_by,
            security_metadata={"signature": "25504446"},
            **kw,
        )

    def test_tags_are_shared(self, services):
        repository = services.repository
        self._create(repository, "a.pdf", tags=["minutes"])
        self._create(repository, "b.pdf", tags=["minutes", "2024"])

        with services.session_factory() as db:
            assert db.query(Tag).count() == 2

    def test_user_totals(self, services):
        repository = services.repository
        self._create(repository, "a.pdf", size=100)
        self._create(repository, "b.pdf", size=250)
        self._create(repository, "c.pdf", uploaded_by="member-2", size=999)

        assert repository.user_totals("member-1") == (350, 2)
        assert repository.user_totals("nobody") == (0, 0)

    def test_search_ranks_and_filters(self, services):
        repository = services.repository
        self._create(repository, "roof.pdf", description="Roof repair quote")
        self._create(repository, "budget.pdf", description="Budget includes roof line item")

        items, total = repository.list_documents(DocumentFilters(query="roof repair"))
        assert total == 1
        assert items[0].original_name == "roof.pdf"

    def test_update_unknown_category(self, services):
        doc = self._create(services.repository)
        with pytest.raises(CategoryNotFound):
            services.repository.update_document(doc.id, {"category_id": "missing"})

    def test_update_rejects_immutable_fields(self, services):
        doc = self._create(services.repository)
        with pytest.raises(ValueError):
            services.repository.update_document(doc.id, {"file_size_bytes": 1})

    def test_category_in_use(self, services):
        repository = services.repository
        category = repository.create_category("Archive")
        self._create(repository, category_id=category.id)

        with pytest.raises(CategoryInUse):
            repository.delete_category(category.id)
        assert repository.category_document_count(category.id) == 1
