from __future__ import annotations

import pytest

from vidvault.core.errors import ValidationError
from vidvault.services.tags import _normalize_names, slugify


@pytest.mark.parametrize(
    "name, slug",
    [
        ("Vue.js Framework", "vuejs-framework"),
        ("React & Redux", "react-redux"),
        ("  Machine_Learning  ", "machine-learning"),
        ("Café Culture", "cafe-culture"),
        ("---", ""),
    ],
)
def test_slugify(name: str, slug: str) -> None:
    assert slugify(name) == slug


def test_normalize_names_dedupes_by_slug() -> None:
    assert _normalize_names(["Python", "python", " ", "Data Science", "data-science"]) == {
        "python": "Python",
        "data-science": "Data Science",
    }


def test_normalize_names_rejects_long_tags() -> None:
    with pytest.raises(ValidationError):
        _normalize_names(["x" * 101])
