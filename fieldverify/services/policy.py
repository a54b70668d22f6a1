"""
Client policies — which photo categories and artifacts a case needs.

Policies are resolved from a declarative rule table instead of string
heuristics scattered through the workflow. The built-in table covers the
standard checklist, RA Associates (photos only) and CES clients; a JSON file
named by ``CLIENT_POLICIES_PATH`` replaces it wholesale:

    {
      "default": {"requirements": [...], "optional": [...],
                  "form_required": true, "generate_report": true},
      "rules": [
        {"name": "ces_no",
         "match": {"fields": ["client", "company"], "combine": "first",
                   "normalize": "upper", "contains": "CES", "ces_type": "No"},
         "requirements": [{"category_id": "landmark", "label": "Landmark",
                           "min": 6, "max": 100}],
         "optional": []}
      ]
    }

Every matching rule is applied in order on top of the default; keys a rule
omits keep their current value.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from fieldverify.core.config import settings
from fieldverify.core.errors import ValidationError

logger = logging.getLogger(__name__)

FORM_ITEM = "form"


@dataclass(frozen=True)
class PhotoRequirement:
    category_id: str
    label: str
    max: int
    min: Optional[int] = None

    @property
    def needed(self) -> int:
        return self.min if self.min is not None else self.max

    def is_satisfied(self, count: int) -> bool:
        return count >= self.needed

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhotoRequirement":
        return cls(
            category_id=data["category_id"],
            label=data.get("label") or data["category_id"],
            max=int(data["max"]),
            min=int(data["min"]) if data.get("min") is not None else None,
        )


@dataclass(frozen=True)
class Policy:
    name: str
    requirements: List[PhotoRequirement]
    optional: List[PhotoRequirement] = field(default_factory=list)
    form_required: bool = True
    generate_report: bool = True

    @property
    def categories(self) -> List[PhotoRequirement]:
        return list(self.requirements) + list(self.optional)

    def category(self, category_id: str) -> Optional[PhotoRequirement]:
        for req in self.categories:
            if req.category_id == category_id:
                return req
        return None

    def label(self, item: str) -> str:
        if item == FORM_ITEM:
            return "Form"
        req = self.category(item)
        return req.label if req else item


DEFAULT_POLICY_TABLE: Dict[str, Any] = {
    "default": {
        "requirements": [
            {"category_id": "house", "label": "House/Building View", "max": 2},
            {"category_id": "selfie", "label": "Selfie with House", "max": 1},
            {"category_id": "proof", "label": "ID Proof", "max": 2},
            {"category_id": "landmark", "label": "Nearest Landmark", "max": 1},
        ],
        "optional": [
            {"category_id": "other", "label": "Other", "max": 2},
        ],
        "form_required": True,
        "generate_report": True,
    },
    "rules": [
        {
            "name": "ra_associates",
            "match": {"fields": ["client", "company"], "combine": "any",
                      "normalize": "compact", "contains": "raassociates"},
            "form_required": False,
        },
        {
            "name": "ces",
            "match": {"fields": ["client", "company"], "combine": "first",
                      "normalize": "upper", "contains": "CES"},
            "generate_report": False,
        },
        {
            "name": "ces_no",
            "match": {"fields": ["client", "company"], "combine": "first",
                      "normalize": "upper", "contains": "CES", "ces_type": "No"},
            "requirements": [
                {"category_id": "landmark", "label": "Landmark", "min": 6, "max": 100},
            ],
            "optional": [],
        },
    ],
}


def _normalize(value: str, mode: str) -> str:
    if mode == "compact":
        return re.sub(r"[\s.\-]", "", value.lower())
    if mode == "upper":
        return value.upper()
    return value


def _field_values(case: Any, fields: List[str], combine: str) -> List[str]:
    values = [str(getattr(case, name, None) or "") for name in fields]
    if combine == "first":
        first = next((v for v in values if v), "")
        return [first]
    return values


def rule_matches(match: Dict[str, Any], case: Any) -> bool:
    ces_type = match.get("ces_type")
    if ces_type is not None and getattr(case, "ces_type", None) != ces_type:
        return False
    needle = match.get("contains")
    if needle is None:
        return True
    mode = match.get("normalize", "none")
    needle = _normalize(needle, mode)
    values = _field_values(case, match.get("fields", ["client", "company"]), match.get("combine", "any"))
    return any(needle in _normalize(v, mode) for v in values)


def _apply(policy: Policy, overrides: Dict[str, Any], name: str) -> Policy:
    changes: Dict[str, Any] = {"name": name}
    if "requirements" in overrides:
        changes["requirements"] = [PhotoRequirement.from_dict(r) for r in overrides["requirements"]]
    if "optional" in overrides:
        changes["optional"] = [PhotoRequirement.from_dict(r) for r in overrides["optional"]]
    if "form_required" in overrides:
        changes["form_required"] = bool(overrides["form_required"])
    if "generate_report" in overrides:
        changes["generate_report"] = bool(overrides["generate_report"])
    return replace(policy, **changes)


class PolicyTable:
    def __init__(self, table: Dict[str, Any]):
        if "default" not in table:
            raise ValidationError("Policy table needs a 'default' entry")
        self.default = _apply(
            Policy(name="default", requirements=[]), table["default"], "default"
        )
        self.rules: List[Dict[str, Any]] = list(table.get("rules", []))

    def select(self, case: Any) -> Policy:
        policy = self.default
        for rule in self.rules:
            if rule_matches(rule.get("match", {}), case):
                policy = _apply(policy, rule, rule.get("name", policy.name))
        return policy


@lru_cache(maxsize=1)
def _table_for(path: str) -> PolicyTable:
    if not path:
        return PolicyTable(DEFAULT_POLICY_TABLE)
    logger.info("Loading client policies from %s", path)
    with open(Path(path), encoding="utf-8") as f:
        return PolicyTable(json.load(f))


def policy_table() -> PolicyTable:
    return _table_for(settings.client_policies_path)


def select_policy(case: Any) -> Policy:
    """Resolve the policy for *case* from its client, company and CES type."""
    return policy_table().select(case)


# ── Checklist evaluation ─────────────────────────────────────────────


def effective_photos(case: Any) -> Dict[str, list]:
    """
    The photo set the checklist is evaluated against.

    The draft working set when one exists; otherwise the stored folder with
    every category flagged for redo masked out.
    """
    if case.draft_photos is not None:
        return {k: list(v or []) for k, v in case.draft_photos.items()}
    redo = set(case.photos_to_redo or [])
    return {
        k: list(v or [])
        for k, v in (case.photos_folder or {}).items()
        if k not in redo
    }


def missing_requirements(case: Any, policy: Optional[Policy] = None) -> List[str]:
    """Category ids below their minimum, plus ``form`` when it is required and absent."""
    policy = policy or select_policy(case)
    photos = effective_photos(case)
    missing = [
        req.category_id
        for req in policy.requirements
        if not req.is_satisfied(len(photos.get(req.category_id, [])))
    ]
    if policy.form_required and not case.form_completed:
        missing.append(FORM_ITEM)
    return missing


def is_ready(case: Any, policy: Optional[Policy] = None) -> bool:
    return not missing_requirements(case, policy)


def checklist(case: Any, policy: Optional[Policy] = None) -> Dict[str, Any]:
    policy = policy or select_policy(case)
    photos = effective_photos(case)
    items = []
    for req in policy.categories:
        count = len(photos.get(req.category_id, []))
        items.append({
            "category_id": req.category_id,
            "label": req.label,
            "min": req.min,
            "max": req.max,
            "count": count,
            "required": req in policy.requirements,
            "satisfied": req.is_satisfied(count),
        })
    missing = missing_requirements(case, policy)
    return {
        "policy": policy.name,
        "items": items,
        "form_required": policy.form_required,
        "form_completed": bool(case.form_completed),
        "missing": missing,
        "ready": not missing,
        "redo": list(case.photos_to_redo or []),
        "feedback": case.audit_feedback,
    }
