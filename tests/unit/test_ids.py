"""
Unit tests for record identifier generation.
"""

import pytest

from dbaas.masterdb_server.ids import ID_ALPHABET, generate_id, id_factory


class TestGenerateId:
    """Tests for generate_id and id_factory."""

    def test_default_length_and_alphabet(self):
        value = generate_id()
        assert len(value) == 16
        assert set(value) <= set(ID_ALPHABET)

    def test_ids_are_distinct(self):
        assert len({generate_id() for _ in range(1000)}) == 1000

    def test_custom_length(self):
        assert len(generate_id(8)) == 8
        assert len(id_factory(24)()) == 24
        assert id_factory() is generate_id

    @pytest.mark.parametrize("size", [0, -1])
    def test_rejects_non_positive(self, size):
        with pytest.raises(ValueError):
            generate_id(size)
