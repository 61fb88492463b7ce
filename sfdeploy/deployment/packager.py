"""Builds the file map (folder layout + package.xml) for a Metadata API deploy"""
import logging
from typing import Dict, List, NamedTuple

from lxml import etree

from sfdeploy.deployment.models import FileMap

logger = logging.getLogger(__name__)

PNS = "http://soap.sforce.com/2006/04/metadata"
MANIFEST_KEY = "package.xml"


class Category(NamedTuple):
    metadata_type: str
    prefix: str
    # Two-level layout: prefix/<name>/<file>
    is_bundle: bool


_CATEGORIES: Dict[str, Category] = {
    "LightningComponentBundle": Category("LightningComponentBundle", "lwc", True),
    "AuraDefinitionBundle": Category("AuraDefinitionBundle", "aura", True),
    "ApexClass": Category("ApexClass", "classes", False),
    "ApexTrigger": Category("ApexTrigger", "triggers", False),
    "ApexPage": Category("ApexPage", "pages", False),
    "ApexComponent": Category("ApexComponent", "components", False),
    "StaticResource": Category("StaticResource", "staticresources", False),
}

_ALIASES = {
    "LWC": "LightningComponentBundle",
    "Aura": "AuraDefinitionBundle",
}

# Source file extension per flat Apex type, for the synthesized -meta.xml
_APEX_SUFFIXES = {
    "ApexClass": ".cls",
    "ApexTrigger": ".trigger",
}


def resolve_category(target_type: str) -> Category:
    """Map a caller-facing type (``LWC``, ``ApexClass``...) to its archive layout.

    Unknown types get a flat layout named after the type; the server is left
    to reject them.
    """
    name = _ALIASES.get(target_type, target_type)
    category = _CATEGORIES.get(name)
    if category is None:
        logger.warning("Unknown metadata type '%s', using a flat layout", target_type)
        category = Category(name, name.lower(), False)
    return category


def is_bundle_type(target_type: str) -> bool:
    return resolve_category(target_type).is_bundle


def _pretty_xml(node) -> str:
    """Return pretty-printed XML string with declaration."""
    return etree.tostring(
        node, encoding="UTF-8", xml_declaration=True, pretty_print=True
    ).decode("utf-8")


def generate_package_xml(members: List[str], metadata_type: str, api_version: str) -> str:
    """Generate a package.xml with one or more members of a single metadata type."""
    root = etree.Element(etree.QName(PNS, "Package"), nsmap={None: PNS})

    types_tag = etree.SubElement(root, etree.QName(PNS, "types"))
    for m in members:
        etree.SubElement(types_tag, etree.QName(PNS, "members")).text = m
    etree.SubElement(types_tag, etree.QName(PNS, "name")).text = metadata_type

    etree.SubElement(root, etree.QName(PNS, "version")).text = api_version
    return _pretty_xml(root)


def generate_apex_meta_xml(metadata_type: str, api_version: str) -> str:
    """Generate the <ApexClass>/<ApexTrigger> companion -meta.xml."""
    root = etree.Element(etree.QName(PNS, metadata_type), nsmap={None: PNS})
    etree.SubElement(root, etree.QName(PNS, "apiVersion")).text = api_version
    etree.SubElement(root, etree.QName(PNS, "status")).text = "Active"
    return _pretty_xml(root)


def _clean_key(key: str) -> str:
    key = key.replace("\\", "/")
    while key.startswith("./"):
        key = key[2:]
    return key.lstrip("/")


def _archive_path(key: str, category: Category, target_name: str) -> str:
    prefix = category.prefix
    file_name = key.rsplit("/", 1)[-1]

    if key.startswith(f"{prefix}/"):
        if category.is_bundle and not key.startswith(f"{prefix}/{target_name}/"):
            return f"{prefix}/{target_name}/{file_name}"
        return key
    if category.is_bundle:
        return f"{prefix}/{target_name}/{file_name}"
    return f"{prefix}/{file_name}"


def build_file_map(
    target_type: str, target_name: str, source_files: FileMap, api_version: str = "59.0"
) -> FileMap:
    """Lay out ``source_files`` the way the Metadata API expects them in a ZIP.

    Keys may be bare file names (``foo.js``), partial paths (``lwc/foo.js``) or
    fully qualified (``lwc/myCmp/foo.js``); all of them end up under
    ``prefix/<target_name>/`` for bundles and ``prefix/`` for flat types.
    The synthesized ``package.xml`` is always the first entry.
    """
    api_version = str(api_version).lstrip("vV")
    category = resolve_category(target_type)

    file_map: FileMap = {
        MANIFEST_KEY: generate_package_xml([target_name], category.metadata_type, api_version)
    }
    for key, content in source_files.items():
        key = _clean_key(key)
        if not key or key == MANIFEST_KEY:
            continue
        path = _archive_path(key, category, target_name)
        if path in file_map:
            logger.warning("Both '%s' and an earlier file map to %s, keeping the later one", key, path)
        file_map[path] = content

    # New Apex sources are rejected without their -meta.xml companion
    suffix = _APEX_SUFFIXES.get(category.metadata_type)
    if suffix:
        for path in [p for p in file_map if p.endswith(suffix)]:
            meta_path = f"{path}-meta.xml"
            if meta_path not in file_map:
                file_map[meta_path] = generate_apex_meta_xml(category.metadata_type, api_version)

    return file_map
