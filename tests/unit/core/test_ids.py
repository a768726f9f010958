"""Tests for identifier generation."""

import re

from beacon.core.ids import generate_id


class TestGenerateId:
    """Test generated identifiers."""

    def test_shape(self) -> None:
        """Ids are 24 lowercase alphanumerics starting with a letter."""
        value = generate_id()
        assert re.fullmatch(r"[a-z][a-z0-9]{23}", value)

    def test_prefix(self) -> None:
        """A prefix is joined with an underscore."""
        assert generate_id("evt").startswith("evt_")
        assert len(generate_id("evt")) == len("evt_") + 24

    def test_unique(self) -> None:
        """Many ids never collide."""
        ids = {generate_id() for _ in range(1000)}
        assert len(ids) == 1000
