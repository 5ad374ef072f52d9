"""Seed webhook configurations from a YAML file.

Example::

    configurations:
      - webhook_id: 4b67ac88-e506-4a29-9d42-26e504e3435e
        hook_secret: 0GQ7S1MHLV...
        project_id: 3
        task_tag: clickup, imported
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from yaml import YAMLError
from pydantic import BaseModel, ValidationError

from .stores.base import MappingStore, TicketStore

logger = logging.getLogger(__name__)


class ConfigurationSeed(BaseModel):
    """One configuration entry of the seed file."""

    webhook_id: Optional[str] = None
    hook_secret: str = ""
    project_id: int = 0
    task_tag: str = ""

    class Config:
        str_strip_whitespace = True


def validate_seed(seed: ConfigurationSeed, tickets: TicketStore) -> Optional[str]:
    """Return why a seed cannot be saved, or None if it can."""
    if seed.project_id <= 0:
        return "Project ID is required"
    if not seed.webhook_id and not seed.hook_secret:
        return "Webhook ID or webhook secret is required"
    if not tickets.project_exists(seed.project_id):
        return f"Project {seed.project_id} does not exist"
    return None


def load_configurations(path: Path, mappings: MappingStore, tickets: TicketStore) -> int:
    """Save every valid configuration in the seed file.

    A configuration with the same webhook id as a stored one replaces it.

    Args:
        path: Path to the YAML seed file
        mappings: Store the configurations are saved to
        tickets: Store used to check that projects exist

    Returns:
        Number of configurations saved
    """
    if not path.exists():
        logger.info(f"No configuration seed file at {path}")
        return 0

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except YAMLError as e:
        logger.error(f"Invalid YAML in {path.name}: {e}")
        return 0

    entries = data.get("configurations") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        logger.error(f"{path.name} has no 'configurations' list")
        return 0

    saved = 0
    for index, entry in enumerate(entries):
        try:
            seed = ConfigurationSeed(**entry)
        except (ValidationError, TypeError) as e:
            logger.error(f"Invalid configuration #{index} in {path.name}: {e}")
            continue

        problem = validate_seed(seed, tickets)
        if problem:
            logger.error(f"Skipping configuration #{index} in {path.name}: {problem}")
            continue

        config_id = mappings.save_configuration(
            webhook_id=seed.webhook_id or None,
            hook_secret=seed.hook_secret,
            project_id=seed.project_id,
            task_tag=seed.task_tag,
        )
        logger.debug(f"Saved configuration {config_id} for project {seed.project_id}")
        saved += 1

    logger.info(f"Loaded {saved} ClickUp configurations from {path.name}")
    return saved
