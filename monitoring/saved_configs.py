"""
Saved Configurations

Named bundles of watch templates (terms, interval, URL, session kind) that
can recreate a set of watches later. Runtime state is not kept.
"""

import uuid
import logging
from datetime import datetime

from config import settings
from config import database

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = ("match_spec", "interval_seconds", "source_url", "session_kind", "display_label")


def template_from_watch(watch):
    return {field: watch.get(field) for field in TEMPLATE_FIELDS}


def save_config(name, watches, created_at=None, limit=None):
    """
    Store the templates of ``watches`` under ``name``, evicting the oldest
    configurations past the limit.

    Returns:
        dict or None: The saved configuration
    """
    created_at = created_at or datetime.now()
    limit = limit or settings.SAVED_CONFIG_LIMIT
    name = (name or "").strip() or created_at.strftime("%Y-%m-%d %H:%M:%S")

    templates = [template_from_watch(w) for w in watches]
    config = database.create_saved_config(uuid.uuid4().hex, name, templates, created_at)
    if config is None:
        return None

    configs = database.get_saved_configs()
    for old in configs[:max(0, len(configs) - limit)]:
        logger.info(f"Evicting saved configuration '{old['name']}'")
        database.delete_saved_config(old["id"])
    return config


def list_configs():
    return database.get_saved_configs()


def get_config(config_id):
    return database.get_saved_config(config_id)


def delete_config(config_id):
    return database.delete_saved_config(config_id)


def group_templates(templates):
    """
    Group templates that can share one target: same URL and session kind.

    Returns:
        list: [((url, session_kind), [template, ...]), ...] in first-seen order
    """
    groups = {}
    for template in templates:
        key = (template.get("source_url"), template.get("session_kind"))
        groups.setdefault(key, []).append(template)
    return list(groups.items())
