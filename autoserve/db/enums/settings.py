"""Persisted setting enums."""

from enum import Enum


class SettingValueType(str, Enum):
    INTEGER = "integer"
    BOOLEAN = "boolean"
    STRING = "string"
