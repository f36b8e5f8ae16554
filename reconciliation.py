"""
Identity reconciliation over the Contact graph.

A request carrying an email and/or phone number is matched against known
contacts, the clusters it touches are merged (the oldest primary survives),
a secondary contact is added when the request brings new information, and
the consolidated view of the resulting cluster is returned.
"""

import logging
from typing import Iterable, List, Optional, Set

from contact_store import ContactStore
from db_models import Contact, ContactResponse, LinkPrecedence, normalize_field
from errors import IntegrityError, ValidationError

logger = logging.getLogger(__name__)


def seniority(contact: Contact):
    """Sort key: oldest first, ids break ties between identical timestamps."""
    return (contact.createdAt, contact.id)


def resolve_primary_ids(contacts: Iterable[Contact]) -> Set[int]:
    primary_ids = set()
    for contact in contacts:
        if contact.is_primary:
            primary_ids.add(contact.id)
        elif contact.linkedId is not None:
            primary_ids.add(contact.linkedId)
    return primary_ids


def build_response(contacts: List[Contact]) -> ContactResponse:
    primaries = [c for c in contacts if c.is_primary]
    if len(primaries) != 1:
        logger.error(
            "Cluster has %d primary contacts: %s",
            len(primaries),
            [c.model_dump(mode="json") for c in contacts],
        )
        raise IntegrityError(
            f"Expected exactly one primary contact in cluster, found {len(primaries)}"
        )
    primary = primaries[0]

    secondaries = sorted((c for c in contacts if not c.is_primary), key=seniority)
    misplaced = [c.id for c in secondaries if c.linkedId != primary.id]
    if misplaced:
        logger.error(
            "Secondaries %s are not linked to primary %s: %s",
            misplaced,
            primary.id,
            [c.model_dump(mode="json") for c in contacts],
        )
        raise IntegrityError(
            f"Secondary contacts {misplaced} are not linked to primary {primary.id}"
        )

    emails = []
    phone_numbers = []
    secondary_ids = []
    for contact in [primary] + secondaries:
        if contact.email and contact.email not in emails:
            emails.append(contact.email)
        if contact.phoneNumber and contact.phoneNumber not in phone_numbers:
            phone_numbers.append(contact.phoneNumber)
        if contact.linkPrecedence == LinkPrecedence.SECONDARY:
            secondary_ids.append(contact.id)

    return ContactResponse(
        primaryContatctId=primary.id,
        emails=emails,
        phoneNumbers=phone_numbers,
        secondaryContactIds=secondary_ids,
    )


class ReconciliationEngine:
    def __init__(self, store: ContactStore):
        self.store = store

    def identify(self, email=None, phone_number=None) -> ContactResponse:
        """Reconcile an incoming email/phone pair and return its cluster."""
        try:
            email = normalize_field(email)
            phone_number = normalize_field(phone_number)
        except ValueError as exc:
            raise ValidationError(f"Invalid contact field: {exc}") from exc

        if email is None and phone_number is None:
            raise ValidationError("At least one of email or phoneNumber must be provided")

        logger.debug("Processing identify request email=%s phoneNumber=%s", email, phone_number)

        with self.store.transaction():
            matches = self.store.find_by_email_or_phone(email, phone_number)
            if not matches:
                contact = self.create_primary(email, phone_number)
                return build_response([contact])

            primary_ids = resolve_primary_ids(matches)
            cluster = self.store.find_cluster_by_primary_ids(sorted(primary_ids))
            if len(primary_ids) > 1:
                cluster = self.merge(primary_ids, cluster)

            cluster = self.create_secondary_if_needed(email, phone_number, cluster)
            return build_response(cluster)

    def create_primary(self, email: Optional[str], phone_number: Optional[str]) -> Contact:
        logger.info("Creating new primary contact email=%s phoneNumber=%s", email, phone_number)
        return self.store.create(email, phone_number, None, LinkPrecedence.PRIMARY)

    def merge(self, primary_ids: Set[int], cluster: List[Contact]) -> List[Contact]:
        """Collapse several primary clusters into the one with the oldest primary.

        Losing primaries become secondaries of the winner and their own
        secondaries are re-pointed at the winner, keeping the hierarchy one
        level deep. Running it again on a merged cluster changes nothing.
        """
        primaries = sorted(
            (c for c in cluster if c.id in primary_ids and c.is_primary),
            key=seniority,
        )
        if len(primaries) <= 1:
            return cluster

        winner, losers = primaries[0], primaries[1:]
        loser_ids = {loser.id for loser in losers}
        logger.info("Merging primary contacts winner=%s losers=%s", winner.id, sorted(loser_ids))

        for loser in losers:
            self.store.update(loser.id, linked_id=winner.id, link_precedence=LinkPrecedence.SECONDARY)

        for contact in cluster:
            if contact.linkedId in loser_ids:
                self.store.update(contact.id, linked_id=winner.id)

        return self.store.find_cluster_by_primary_ids([winner.id])

    def create_secondary_if_needed(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        cluster: List[Contact],
    ) -> List[Contact]:
        primary = next((c for c in cluster if c.is_primary), None)
        if primary is None:
            # build_response reports the broken cluster
            return cluster

        # an absent request field matches anything
        exact_match = any(
            (email is None or c.email == email)
            and (phone_number is None or c.phoneNumber == phone_number)
            for c in cluster
        )
        if exact_match:
            return cluster

        known_emails = {c.email for c in cluster if c.email}
        known_phones = {c.phoneNumber for c in cluster if c.phoneNumber}
        email_is_new = email is not None and email not in known_emails
        phone_is_new = phone_number is not None and phone_number not in known_phones
        if not (email_is_new or phone_is_new):
            return cluster

        logger.info(
            "Creating secondary contact email=%s phoneNumber=%s primaryId=%s",
            email, phone_number, primary.id,
        )
        secondary = self.store.create(email, phone_number, primary.id, LinkPrecedence.SECONDARY)
        return cluster + [secondary]
