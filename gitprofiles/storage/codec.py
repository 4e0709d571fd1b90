"""Textual encodings for fragment documents.

A fragment document is a mapping whose reserved top-level keys
(``extends``, ``abstract``, ``match`` and an optional ``id``) carry
fragment metadata; every other top-level table is a configuration
section::

    extends = "base"

    [identity]
    email = "w@x.com"

    [[match]]
    priority = 10
    when = [{ kind = "remote", pattern = "*org/*" }]

TOML, JSON, JSON5 and YAML all decode to this same structure.
"""

import json
import tomllib
from typing import Any, Dict, List, Tuple

import json5
import tomli_w
import yaml

from gitprofiles.config.schema import RESERVED_DOCUMENT_KEYS, Fragment

SUFFIX_TO_ENCODING: Dict[str, str] = {
    ".toml": "toml",
    ".json": "json",
    ".json5": "json5",
    ".yaml": "yaml",
    ".yml": "yaml",
}
ENCODING_SUFFIX: Dict[str, str] = {
    "toml": ".toml",
    "json": ".json",
    "json5": ".json5",
    "yaml": ".yaml",
}
# When one identifier exists in several encodings, the first one wins.
ENCODING_PRECEDENCE: Tuple[str, ...] = (".toml", ".json", ".json5", ".yaml", ".yml")


def decode_text(text: str, encoding: str) -> Dict[str, Any]:
    """Decode ``text`` into a document mapping.

    Raises:
        ValueError: If the text is malformed or its root is not a mapping.
    """
    if encoding == "toml":
        data: Any = tomllib.loads(text)
    elif encoding == "json":
        data = json.loads(text)
    elif encoding == "json5":
        data = json5.loads(text)
    elif encoding == "yaml":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(str(exc)) from exc
        if data is None:
            data = {}
    else:
        raise ValueError(f"unsupported encoding: {encoding}")
    if not isinstance(data, dict):
        raise ValueError(f"document root must be a table, got {type(data).__name__}")
    return data


def encode_text(document: Dict[str, Any], encoding: str) -> str:
    """Serialize a document mapping in the given encoding."""
    if encoding == "toml":
        return tomli_w.dumps(document)
    if encoding == "json":
        return json.dumps(document, indent=2, ensure_ascii=False) + "\n"
    if encoding == "json5":
        return json5.dumps(document, indent=2, ensure_ascii=False) + "\n"
    if encoding == "yaml":
        return yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
    raise ValueError(f"unsupported encoding: {encoding}")


def document_to_fragment(identifier: str, document: Dict[str, Any]) -> Fragment:
    """Build a fragment from a decoded document.

    Args:
        identifier: Identifier derived from the file name.
        document: Decoded document mapping.

    Raises:
        ValueError: If the document does not describe a fragment (pydantic's
            ``ValidationError`` is a ``ValueError``).
    """
    embedded = document.get("id")
    if embedded is not None and embedded != identifier:
        raise ValueError(f"embedded id {embedded!r} does not match file name {identifier!r}")
    rules = document.get("match", [])
    if not isinstance(rules, list):
        raise ValueError("'match' must be a list of rules")
    sections = {key: value for key, value in document.items() if key not in RESERVED_DOCUMENT_KEYS}
    return Fragment.from_dict(
        {
            "id": identifier,
            "extends": document.get("extends"),
            "abstract": document.get("abstract", False),
            "sections": sections,
            "rules": rules,
        }
    )


def fragment_to_document(fragment: Fragment) -> Dict[str, Any]:
    """Convert a fragment into its document mapping.

    The identifier is not embedded; it is the file name.
    """
    document: Dict[str, Any] = {}
    if fragment.extends is not None:
        document["extends"] = fragment.extends
    if fragment.abstract:
        document["abstract"] = True
    for name, section in fragment.sections.items():
        document[name] = section
    if fragment.rules:
        rules: List[Dict[str, Any]] = []
        for rule in fragment.rules:
            rules.append(
                {
                    "priority": rule.priority,
                    "when": [clause.model_dump() for clause in rule.when],
                }
            )
        document["match"] = rules
    return document
