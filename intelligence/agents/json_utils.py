"""
JSON helpers for model output
"""
from typing import Any, Optional
import json


def strip_code_fence(text: str) -> str:
    """去掉 ```json ... ``` 包裹"""
    raw = (text or "").strip()
    if raw.startswith("```json"):
        raw = raw[len("```json"):]
    elif raw.startswith("```"):
        raw = raw[3:]
    if raw.endswith("```"):
        raw = raw[:-3]
    return raw.strip()


def load_json_object(text: str) -> Optional[Any]:
    try:
        return json.loads(strip_code_fence(text))
    except (TypeError, ValueError):
        return None
