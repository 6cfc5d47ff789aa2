"""Shared fixtures for the bloodwork importer tests."""

from __future__ import annotations

import copy
from typing import Any
from unittest.mock import MagicMock

import pytest

from bloodwork.llm_client import LLMClient

STAMP = "2024-01-01T00:00:00Z"


def make_entry(name: str, aliases: list[str] | None = None, unit_hints: list[str] | None = None) -> dict[str, Any]:
    return {
        "canonicalName": name,
        "aliases": aliases or [],
        "knownRanges": [],
        "unitHints": unit_hints or [],
        "createdAt": STAMP,
        "updatedAt": STAMP,
    }


@pytest.fixture
def empty_glossary() -> dict[str, Any]:
    return {"version": 1, "updatedAt": STAMP, "entries": []}


@pytest.fixture
def sample_glossary() -> dict[str, Any]:
    return {
        "version": 1,
        "updatedAt": STAMP,
        "entries": [
            make_entry("Glucose", ["Blood Sugar"], ["mg/dL"]),
            make_entry("Leukocytes", ["WBC"], ["10^3/uL"]),
        ],
    }


@pytest.fixture
def filter_candidates_input() -> list[dict[str, Any]]:
    return copy.deepcopy(
        [
            {"name": "Page", "value": 1},
            {"name": "Tel:", "value": "030 / 443364-0"},
            {"name": "Leukozyten (EB)", "value": 6.1, "unit": "Gpt/l"},
            {"name": "Comment: Canceled", "value": "Canceled"},
            {"name": "Hep B Core Ab, Tot", "value": "Negative"},
        ]
    )


@pytest.fixture
def mock_llm_client() -> MagicMock:
    return MagicMock(spec=LLMClient)
