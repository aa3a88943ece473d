"""
Template catalogue for server-side vendor tags.

Vendors without a built-in server tag type (Facebook, LinkedIn,
Microsoft Ads) need a community template in the generated container.
The generator looks those up through a TemplateCatalog, so callers can
plug in a file-backed catalogue, an in-memory one, or a fake in tests.
"""

import base64
import json
from dataclasses import dataclass
from typing import Dict, Optional

from loguru import logger


@dataclass(frozen=True)
class TemplateDefinition:
    type_id: str
    display_name: str
    template_data_encoded: str = ''

    @property
    def template_data(self) -> str:
        """Decoded template source; empty when the payload is not valid base64"""
        if not self.template_data_encoded or not isinstance(self.template_data_encoded, str):
            return ''
        try:
            return base64.b64decode(self.template_data_encoded, validate=True).decode('utf-8')
        except ValueError as e:
            logger.warning(f"Template '{self.type_id}' has undecodable template data: {e}")
            return ''


class TemplateCatalog:
    """Read-only lookup of server tag templates by vendor key."""

    def resolve(self, vendor_key: str) -> Optional[TemplateDefinition]:
        raise NotImplementedError


class StaticTemplateCatalog(TemplateCatalog):
    def __init__(self, entries: Dict[str, TemplateDefinition] = None):
        self.entries = dict(entries or {})

    def resolve(self, vendor_key: str) -> Optional[TemplateDefinition]:
        return self.entries.get(vendor_key)

    def __len__(self):
        return len(self.entries)


EMPTY_CATALOG = StaticTemplateCatalog()


def parse_template_catalog(data: Dict) -> StaticTemplateCatalog:
    """
    Build a catalogue from ``{vendorKey: {typeId, displayName, templateData}}``.
    Entries without a typeId are skipped.
    """
    entries = {}
    for vendor_key, entry in (data or {}).items():
        if not isinstance(entry, dict) or not entry.get('typeId'):
            logger.warning(f"Skipping template catalogue entry '{vendor_key}': missing typeId")
            continue
        entries[vendor_key] = TemplateDefinition(
            type_id=entry['typeId'],
            display_name=entry.get('displayName') or entry['typeId'],
            template_data_encoded=entry.get('templateData', '')
        )
    return StaticTemplateCatalog(entries)


def load_template_catalog(file_path: str) -> StaticTemplateCatalog:
    """Load a JSON catalogue file; a missing or broken file yields an empty catalogue"""
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning(f"Template catalogue not found: {file_path}")
        return StaticTemplateCatalog()
    except OSError as e:
        logger.warning(f"Template catalogue {file_path} could not be read: {e}")
        return StaticTemplateCatalog()
    except json.JSONDecodeError as e:
        logger.warning(f"Template catalogue {file_path} is not valid JSON: {e}")
        return StaticTemplateCatalog()
    except UnicodeDecodeError as e:
        logger.warning(f"Template catalogue {file_path} is not UTF-8 text: {e}")
        return StaticTemplateCatalog()

    if not isinstance(data, dict):
        logger.warning(f"Template catalogue {file_path} must contain a JSON object")
        return StaticTemplateCatalog()

    catalog = parse_template_catalog(data)
    logger.info(f"Loaded {len(catalog)} server templates from {file_path}")
    return catalog
