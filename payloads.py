"""
JSON payloads for Azure Data Catalog registration and annotation
"""

import os
import json
import uuid

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")
DEFAULT_CONTAINER_TEMPLATE = os.path.join(TEMPLATE_DIR, "container.json")
DEFAULT_ASSET_TEMPLATE = os.path.join(TEMPLATE_DIR, "table.json")


def load_template(path: str) -> str:
    """Read a JSON template; placeholders use str.format syntax, literal braces doubled"""
    with open(path, encoding='utf-8') as template_file:
        return template_file.read()


def _escape(value) -> str:
    # Quote-safe text for insertion inside a JSON string literal
    return json.dumps(str(value))[1:-1]


def render_template(template: str, *values) -> str:
    return template.format(*(_escape(value) for value in values))


def container_payload(template: str, upn: str) -> str:
    """{0}: user principal name of the registering user"""
    return render_template(template, upn)


def asset_payload(template: str, container_id: str, name: str, upn: str) -> str:
    """{0}: container id, {1}: table name, {2}: user principal name"""
    return render_template(template, container_id, name, upn)


def description_payload(description: str) -> str:
    """Description annotation; each annotation gets its own key"""
    return json.dumps({
        "properties": {
            "key": str(uuid.uuid4()),
            "fromSourceSystem": False,
            "description": description
        }
    })
