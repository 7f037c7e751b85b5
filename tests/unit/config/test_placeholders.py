"""Unit tests for recursive placeholder resolution."""

from __future__ import annotations

import pytest

from orchid_modules.config.errors import PlaceholderResolutionError
from orchid_modules.config.placeholders import resolve_placeholders


def test_resolve_placeholders_recurses_through_nested_lists_and_dicts(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("PKG", "app")

    resolved = resolve_placeholders(
        {
            "runtime": {"packages": ["${PKG}.services", ["${PKG}", {"nested": "pre-${PKG}"}]]},
            "other": 42,
        }
    )

    assert resolved == {
        "runtime": {"packages": ["app.services", ["app", {"nested": "pre-app"}]]},
        "other": 42,
    }


def test_default_is_used_when_variable_is_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSING_ENV", raising=False)

    assert resolve_placeholders({"prefix": "${MISSING_ENV:-fallback}"}) == {"prefix": "fallback"}


def test_environment_wins_over_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PREFIX", "from_env")

    assert resolve_placeholders({"prefix": "${PREFIX:-fallback}"}) == {"prefix": "from_env"}


def test_resolve_placeholders_reports_nested_path_in_lists(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("MISSING_ENV", raising=False)

    with pytest.raises(PlaceholderResolutionError) as exc_info:
        resolve_placeholders({"items": [{"deep": "${MISSING_ENV}"}]})

    assert "items[0].deep" in str(exc_info.value)


def test_resolve_placeholders_keeps_unresolved_when_non_strict(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("MISSING_ENV", raising=False)

    resolved = resolve_placeholders(
        {"items": [{"deep": "${MISSING_ENV}"}, ["${MISSING_ENV}"]]},
        strict=False,
    )

    assert resolved == {"items": [{"deep": "${MISSING_ENV}"}, ["${MISSING_ENV}"]]}
