"""OFAC sanctions list parser and normalizer.

Parses the Treasury sdnList XML format (used by both the SDN list and
the Consolidated non-SDN list) and maps each sdnEntry onto the canonical
Entity schema.

Feed documentation: https://ofac.treasury.gov/sanctions-list-service
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from lxml import etree
from pydantic import ValidationError

from sanctionsync.clients.base import FeedDocument
from sanctionsync.exceptions import MalformedFeedError, RecordNormalizationError
from sanctionsync.models.entity import (
    Address,
    Biographic,
    Entity,
    EntityType,
    Identifier,
    SanctionRecord,
    SanctionStatus,
    compute_risk_score,
)
from sanctionsync.utils.datetime import parse_feed_date, utc_now

log = structlog.get_logger(__name__)

OFAC_LIST_SOURCE = "OFAC"
OFAC_ENTRY_URL_TEMPLATE = "https://sanctionssearch.ofac.treas.gov/Details.aspx?id={entry_id}"

# Elements that may legally occur 0..N times. They always parse as lists,
# even when the document holds exactly one of them.
OFAC_REPEATABLE_ELEMENTS: frozenset[str] = frozenset(
    {
        "sdnEntry",
        "program",
        "id",
        "aka",
        "address",
        "nationality",
        "citizenship",
        "dateOfBirthItem",
        "placeOfBirthItem",
        "vesselInfo",
    }
)

# sdnType -> canonical type; anything else maps to Other
OFAC_TYPE_MAP: dict[str, EntityType] = {
    "individual": EntityType.INDIVIDUAL,
    "entity": EntityType.ORGANIZATION,
    "business": EntityType.ORGANIZATION,
    "organization": EntityType.ORGANIZATION,
    "vessel": EntityType.VESSEL,
    "aircraft": EntityType.AIRCRAFT,
}

PRIMARY_NAME_CATEGORY = "primary name"


# --- Generic XML -> tree conversion ---


def _local_name(tag: str) -> str:
    return etree.QName(tag).localname


def xml_to_tree(element: Any, repeatable: frozenset[str]) -> dict[str, Any] | str:
    """Convert an lxml element into nested dicts and strings.

    Names in repeatable always map to lists. Attributes are kept under
    "@name" keys and mixed text under "#text". Empty leaf elements are
    dropped so optional fields come out absent rather than "".
    An undeclared element that repeats keeps its first occurrence.
    """
    children = [c for c in element if isinstance(c.tag, str)]
    attrs = {f"@{_local_name(k)}": v for k, v in element.attrib.items()}
    text = (element.text or "").strip()

    if not children and not attrs:
        return text

    node: dict[str, Any] = dict(attrs)
    if text:
        node["#text"] = text

    for child in children:
        name = _local_name(child.tag)
        value = xml_to_tree(child, repeatable)
        if value == "":
            continue
        if name in repeatable:
            node.setdefault(name, []).append(value)
        elif name in node:
            log.debug("Ignoring repeated element", element=name)
        else:
            node[name] = value

    return node


def _secure_parser() -> etree.XMLParser:
    """XML parser with entity expansion, DTD loading and network access disabled."""
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        dtd_validation=False,
        load_dtd=False,
        huge_tree=False,
        remove_comments=True,
        remove_pis=True,
    )


# --- Parser ---


class OFACParser:
    """Parser for the sdnList XML document."""

    root_element = "sdnList"
    entry_element = "sdnEntry"

    def __init__(self, repeatable: frozenset[str] = OFAC_REPEATABLE_ELEMENTS) -> None:
        self.repeatable = repeatable

    def parse(self, raw: bytes) -> FeedDocument:
        """Parse raw sdnList bytes into a FeedDocument.

        Raises:
            MalformedFeedError: If the document is not well-formed XML or
                is not an sdnList document
        """
        try:
            root = etree.fromstring(raw, _secure_parser())
        except (etree.XMLSyntaxError, ValueError) as e:
            raise MalformedFeedError("Feed is not well-formed XML", detail=str(e)) from e

        if root is None or _local_name(root.tag) != self.root_element:
            raise MalformedFeedError(
                "Unexpected document root",
                expected=self.root_element,
                found=None if root is None else _local_name(root.tag),
            )

        tree = xml_to_tree(root, self.repeatable)
        if not isinstance(tree, dict):
            tree = {}

        # Element name is misspelled in the published schema
        publish = tree.get("publshInformation") or tree.get("publishInformation") or {}
        if not isinstance(publish, dict):
            publish = {}

        record_count = None
        raw_count = _text(publish.get("Record_Count"))
        if raw_count and raw_count.isdigit():
            record_count = int(raw_count)

        entries = [e for e in tree.get(self.entry_element, []) if isinstance(e, dict)]

        log.info(
            "Feed parsed",
            entries=len(entries),
            publish_date=_text(publish.get("Publish_Date")),
            record_count=record_count,
        )

        return FeedDocument(
            publish_date=parse_feed_date(_text(publish.get("Publish_Date"))),
            record_count=record_count,
            entries=entries,
        )


# --- Record helpers ---


def _text(value: Any) -> str | None:
    """Text content of a tree node, or None if empty."""
    if isinstance(value, dict):
        value = value.get("#text")
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _items(record: dict[str, Any], container: str, item: str) -> list[Any]:
    """Items of a repeatable element under its list container."""
    node = record.get(container)
    if not isinstance(node, dict):
        return []
    values = node.get(item, [])
    return values if isinstance(values, list) else [values]


def _join_name(*parts: str | None) -> str:
    return " ".join(" ".join(p.split()) for p in parts if p and p.strip())


def _main_entry(items: list[Any], field: str) -> str | None:
    """Value of field on the item flagged mainEntry, else the first one."""
    dicts = [i for i in items if isinstance(i, dict)]
    for item in dicts:
        if (_text(item.get("mainEntry")) or "").lower() == "true":
            return _text(item.get(field))
    for item in dicts:
        value = _text(item.get(field))
        if value:
            return value
    return None


# --- Normalizer ---


class OFACNormalizer:
    """Maps sdnEntry records onto canonical entities."""

    def __init__(
        self,
        list_name: str = "SDN",
        list_source: str = OFAC_LIST_SOURCE,
        entry_url_template: str = OFAC_ENTRY_URL_TEMPLATE,
    ) -> None:
        self.list_source = list_source
        self.list_name = list_name
        self.entry_url_template = entry_url_template

    def normalize(self, record: dict[str, Any], now: datetime | None = None) -> Entity:
        """Map one sdnEntry onto an unsaved Entity.

        Raises:
            RecordNormalizationError: If uid or name is missing or the
                mapped fields fail validation
        """
        now = now or utc_now()

        entry_id = _text(record.get("uid"))
        if not entry_id:
            raise RecordNormalizationError("Entry has no uid", list_source=self.list_source)

        entity_type = self.classify(_text(record.get("sdnType")))
        name = self._primary_name(record, entity_type)
        if not name:
            raise RecordNormalizationError(
                "Entry has no usable name", list_source=self.list_source, entry_id=entry_id
            )

        programs = [p for p in (_text(v) for v in _items(record, "programList", "program")) if p]

        try:
            sanction = SanctionRecord(
                list_source=self.list_source,
                list_name=self.list_name,
                entry_id=entry_id,
                entry_url=self.entry_url_template.format(entry_id=entry_id),
                date_added=now,
                status=SanctionStatus.ACTIVE,
                reason=_text(record.get("remarks")),
                programs=programs,
            )
            entity = Entity(
                name=name,
                type=entity_type,
                alternate_names=self._alternate_names(record, name),
                identifiers=self._identifiers(record, entity_type),
                addresses=self._addresses(record),
                biographic=self._biographic(record) if entity_type is EntityType.INDIVIDUAL else None,
                sanctions=[sanction],
                risk_score=compute_risk_score(programs),
                created_at=now,
                last_updated=now,
            )
        except ValidationError as e:
            raise RecordNormalizationError(
                "Entry failed validation",
                list_source=self.list_source,
                entry_id=entry_id,
                detail=str(e),
            ) from e

        return entity

    @staticmethod
    def classify(sdn_type: str | None) -> EntityType:
        """Map an sdnType tag onto EntityType, defaulting to Other."""
        if not sdn_type:
            return EntityType.OTHER
        return OFAC_TYPE_MAP.get(sdn_type.strip().lower(), EntityType.OTHER)

    def _primary_name(self, record: dict[str, Any], entity_type: EntityType) -> str:
        first = _text(record.get("firstName"))
        last = _text(record.get("lastName"))
        if entity_type is EntityType.INDIVIDUAL:
            return _join_name(first, last)
        # Non-individuals carry their full name in a single field (lastName in sdnList)
        full = _text(record.get("entireName")) or _text(record.get("wholeName"))
        return _join_name(full) if full else _join_name(first, last)

    def _alternate_names(self, record: dict[str, Any], primary: str) -> list[str]:
        names: list[str] = []
        for aka in _items(record, "akaList", "aka"):
            if not isinstance(aka, dict):
                continue
            category = (
                _text(aka.get("category")) or _text(aka.get("categoryType")) or ""
            ).lower()
            if category == PRIMARY_NAME_CATEGORY or (_text(aka.get("@primary")) or "") == "true":
                continue
            last = _text(aka.get("lastName"))
            name = _join_name(_text(aka.get("firstName")), last) if last else _join_name(
                _text(aka.get("entireName"))
            )
            if name and name != primary and name not in names:
                names.append(name)
        return names

    def _identifiers(self, record: dict[str, Any], entity_type: EntityType) -> list[Identifier]:
        identifiers: list[Identifier] = []
        for item in _items(record, "idList", "id"):
            if not isinstance(item, dict):
                continue
            kind = _text(item.get("idType"))
            value = _text(item.get("idNumber"))
            if not kind or not value:
                continue
            identifiers.append(
                Identifier(
                    kind=kind,
                    value=value,
                    country=_text(item.get("idCountry")),
                    issue_date=parse_feed_date(_text(item.get("issueDate"))),
                    expiry_date=parse_feed_date(_text(item.get("expirationDate"))),
                )
            )

        if entity_type is EntityType.VESSEL:
            for info in record.get("vesselInfo", []):
                if not isinstance(info, dict):
                    continue
                call_sign = _text(info.get("callSign"))
                if call_sign:
                    identifiers.append(
                        Identifier(
                            kind="Call Sign",
                            value=call_sign,
                            country=_text(info.get("vesselFlag")),
                        )
                    )
        return identifiers

    def _addresses(self, record: dict[str, Any]) -> list[Address]:
        addresses: list[Address] = []
        for item in _items(record, "addressList", "address"):
            if not isinstance(item, dict):
                continue
            street = ", ".join(
                line
                for line in (
                    _text(item.get("address1")),
                    _text(item.get("address2")),
                    _text(item.get("address3")),
                )
                if line
            )
            address = Address(
                street=street or None,
                city=_text(item.get("city")),
                state=_text(item.get("stateOrProvince")),
                postal_code=_text(item.get("postalCode")),
                country=_text(item.get("country")),
            )
            if address.model_dump(exclude_none=True):
                addresses.append(address)
        return addresses

    def _biographic(self, record: dict[str, Any]) -> Biographic | None:
        biographic = Biographic(
            date_of_birth=_main_entry(_items(record, "dateOfBirthList", "dateOfBirthItem"), "dateOfBirth"),
            place_of_birth=_main_entry(
                _items(record, "placeOfBirthList", "placeOfBirthItem"), "placeOfBirth"
            ),
            nationality=[
                c
                for c in (
                    _text(n.get("country"))
                    for n in _items(record, "nationalityList", "nationality")
                    if isinstance(n, dict)
                )
                if c
            ],
            citizenship=[
                c
                for c in (
                    _text(n.get("country"))
                    for n in _items(record, "citizenshipList", "citizenship")
                    if isinstance(n, dict)
                )
                if c
            ],
        )
        if not any(
            (
                biographic.date_of_birth,
                biographic.place_of_birth,
                biographic.nationality,
                biographic.citizenship,
            )
        ):
            return None
        return biographic
