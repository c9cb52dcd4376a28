"""
Typed requests for the memory tools.

Each tool call's JSON arguments are turned into one of these dataclasses
by ``from_arguments``, which rejects malformed input with ValidationError
before the store is touched.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .backends import AREAS, UNSET
from .errors import ValidationError


def _required_str(arguments: Mapping[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} must be a non-empty string")
    return value


def _optional_str(arguments: Mapping[str, Any], key: str) -> Optional[str]:
    value = arguments.get(key)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _optional_area(arguments: Mapping[str, Any]) -> Optional[str]:
    area = _optional_str(arguments, "area")
    if area is not None and area not in AREAS:
        raise ValidationError(f"area must be one of {', '.join(AREAS)}, got {area!r}")
    return area


def _optional_tags(arguments: Mapping[str, Any], key: str = "tags") -> Optional[list[str]]:
    tags = arguments.get(key)
    if tags is None:
        return None
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        raise ValidationError(f"{key} must be an array of strings")
    return tags


def _optional_limit(arguments: Mapping[str, Any]) -> Optional[int]:
    limit = arguments.get("limit")
    if limit is None:
        return None
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError(f"limit must be a positive integer, got {limit!r}")
    return limit


@dataclass
class AddRequest:
    content: str
    area: Optional[str] = None
    project: Optional[str] = None
    tags: Optional[list[str]] = None

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> "AddRequest":
        return cls(
            content=_required_str(arguments, "content"),
            area=_optional_area(arguments),
            project=_optional_str(arguments, "project"),
            tags=_optional_tags(arguments),
        )


@dataclass
class IdRequest:
    """Request naming a single memory (get, delete)."""
    id: str

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> "IdRequest":
        return cls(id=_required_str(arguments, "id"))


@dataclass
class UpdateRequest:
    """
    Partial update. Fields left out of the arguments stay UNSET; a
    ``"project": null`` argument clears the project.
    """
    id: str
    content: Any = UNSET
    area: Any = UNSET
    project: Any = UNSET
    tags: Any = UNSET

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> "UpdateRequest":
        request = cls(id=_required_str(arguments, "id"))
        if arguments.get("content") is not None:
            request.content = _required_str(arguments, "content")
        if arguments.get("area") is not None:
            request.area = _optional_area(arguments)
        if "project" in arguments:
            request.project = _optional_str(arguments, "project")
        if arguments.get("tags") is not None:
            request.tags = _optional_tags(arguments)
        return request

    @property
    def fields(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "area": self.area,
            "project": self.project,
            "tags": self.tags,
        }


@dataclass
class ListRequest:
    area: Optional[str] = None
    project: Optional[str] = None
    tag: Optional[str] = None
    limit: Optional[int] = None

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> "ListRequest":
        return cls(
            area=_optional_area(arguments),
            project=_optional_str(arguments, "project"),
            tag=_optional_str(arguments, "tag"),
            limit=_optional_limit(arguments),
        )


@dataclass
class SearchRequest:
    query: str
    area: Optional[str] = None
    project: Optional[str] = None
    limit: Optional[int] = None
    enable_advanced_syntax: bool = False

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> "SearchRequest":
        advanced = arguments.get("enable_advanced_syntax", False)
        if not isinstance(advanced, bool):
            raise ValidationError("enable_advanced_syntax must be a boolean")
        return cls(
            query=_required_str(arguments, "query"),
            area=_optional_area(arguments),
            project=_optional_str(arguments, "project"),
            limit=_optional_limit(arguments),
            enable_advanced_syntax=advanced,
        )
