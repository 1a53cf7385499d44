"""One creation client per business entity type.

Each client maps a staged bundle slice onto the ``osot_`` column names of its
Dataverse table and binds the records created before it as parents.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from app.clients.dataverse import DataverseClient, odata_bind

logger = logging.getLogger(__name__)

FIELD_PREFIX = "osot_"


@dataclass(frozen=True, slots=True)
class CreatedEntity:
    external_id: str


class EntityCreationClient(Protocol):
    def create(self, payload: Mapping[str, Any], parent_keys: Mapping[str, str]) -> CreatedEntity: ...

    def delete(self, external_id: str) -> None: ...


@dataclass(frozen=True, slots=True)
class ParentBinding:
    """How a child record points at a parent created earlier in the run."""

    parent_type: str
    navigation_property: str
    parent_entity_set: str


def to_dataverse_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {f"{FIELD_PREFIX}{name}": value for name, value in payload.items() if value is not None}


@dataclass
class EntityClient:
    entity_type: str
    entity_set: str
    primary_key: str
    dataverse: DataverseClient
    bindings: tuple[ParentBinding, ...] = field(default_factory=tuple)

    def build_payload(
        self, payload: Mapping[str, Any], parent_keys: Mapping[str, str]
    ) -> dict[str, Any]:
        body = to_dataverse_fields(payload)
        for binding in self.bindings:
            parent_id = parent_keys.get(binding.parent_type)
            if parent_id:
                body[f"{binding.navigation_property}@odata.bind"] = odata_bind(
                    binding.parent_entity_set, parent_id
                )
        return body

    def create(self, payload: Mapping[str, Any], parent_keys: Mapping[str, str]) -> CreatedEntity:
        external_id = self.dataverse.create(
            self.entity_set,
            self.build_payload(payload, parent_keys),
            self.primary_key,
        )
        logger.info("Created %s %s", self.entity_type, external_id)
        return CreatedEntity(external_id=external_id)

    def delete(self, external_id: str) -> None:
        self.dataverse.delete(self.entity_set, external_id)
        logger.info("Deleted %s %s", self.entity_type, external_id)


@dataclass
class VariantEntityClient:
    """Routes to one of several tables based on a discriminator in the payload.

    Education is stored in either the OT or the OTA table. The discriminator is
    kept in the external id so that compensation deletes from the right table.
    """

    entity_type: str
    discriminator: str
    variants: Mapping[str, EntityClient]

    def _variant(self, key: Any) -> EntityClient:
        client = self.variants.get(str(key))
        if client is None:
            raise ValueError(f"Unknown {self.entity_type} {self.discriminator} '{key}'")
        return client

    def create(self, payload: Mapping[str, Any], parent_keys: Mapping[str, str]) -> CreatedEntity:
        key = payload.get(self.discriminator)
        fields = {name: value for name, value in payload.items() if name != self.discriminator}
        created = self._variant(key).create(fields, parent_keys)
        return CreatedEntity(external_id=f"{key}:{created.external_id}")

    def delete(self, external_id: str) -> None:
        key, _, remote_id = external_id.partition(":")
        self._variant(key).delete(remote_id)


_ACCOUNT = ParentBinding("account", "osot_Table_Account", "osot_table_accounts")
_CATEGORY = ParentBinding(
    "category", "osot_Table_Membership_Category", "osot_table_membership_categories"
)


def build_registration_clients(dataverse: DataverseClient) -> dict[str, EntityCreationClient]:
    """Clients for the account onboarding flow, keyed by entity type."""

    def table(entity_type: str, name: str, *bindings: ParentBinding) -> EntityClient:
        return EntityClient(
            entity_type=entity_type,
            entity_set=f"osot_table_{name}es" if name.endswith("s") else f"osot_table_{name}s",
            primary_key=f"osot_table_{name}id",
            dataverse=dataverse,
            bindings=bindings,
        )

    return {
        "account": table("account", "account"),
        "address": table("address", "address", _ACCOUNT),
        "contact": table("contact", "contact", _ACCOUNT),
        "identity": EntityClient(
            entity_type="identity",
            entity_set="osot_table_identities",
            primary_key="osot_table_identityid",
            dataverse=dataverse,
            bindings=(_ACCOUNT,),
        ),
        "education": VariantEntityClient(
            entity_type="education",
            discriminator="category",
            variants={
                "ot": table("education", "ot_education", _ACCOUNT),
                "ota": table("education", "ota_education", _ACCOUNT),
            },
        ),
        "management": table("management", "account_management", _ACCOUNT),
    }


def build_membership_clients(dataverse: DataverseClient) -> dict[str, EntityCreationClient]:
    """Clients for the membership enrolment flow, keyed by entity type."""

    def table(entity_type: str, entity_set: str, primary_key: str, *bindings: ParentBinding):
        return EntityClient(
            entity_type=entity_type,
            entity_set=entity_set,
            primary_key=primary_key,
            dataverse=dataverse,
            bindings=bindings,
        )

    return {
        "category": table(
            "category",
            "osot_table_membership_categories",
            "osot_table_membership_categoryid",
            _ACCOUNT,
        ),
        "employment": table(
            "employment",
            "osot_table_membership_employments",
            "osot_table_membership_employmentid",
            _ACCOUNT,
            _CATEGORY,
        ),
        "practices": table(
            "practices",
            "osot_table_membership_practices",
            "osot_table_membership_practiceid",
            _ACCOUNT,
            _CATEGORY,
        ),
        "preferences": table(
            "preferences",
            "osot_table_membership_preferences",
            "osot_table_membership_preferenceid",
            _ACCOUNT,
            _CATEGORY,
        ),
    }
