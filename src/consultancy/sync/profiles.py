"""Map local rows to CRM contact profiles.

Each syncable entity type has one builder turning its Read schema into a
SyncableEntity: the ContactProfile to upsert plus, for contact submissions,
the lead to attach on first sync.
"""

from __future__ import annotations

from src.consultancy.crm.schemas import ContactProfile, LeadCreate
from src.consultancy.orders.schemas import OrderRead
from src.consultancy.sync.schemas import (
    ContactSubmissionRead,
    EntityType,
    SiteUserRead,
    SyncableEntity,
    SyncRecord,
)

WEBSITE_LEAD_TAG = "website-lead"
SITE_USER_TAG = "site-user"
CUSTOMER_TAG = "customer"


def split_full_name(full_name: str) -> tuple[str, str]:
    """'Ada King Lovelace' -> ('Ada', 'King Lovelace'). Split on the first space."""
    parts = full_name.strip().split(" ", 1)
    first = parts[0]
    last = parts[1].strip() if len(parts) > 1 else ""
    return first, last


def slugify_tag(value: str) -> str:
    return "-".join(value.strip().lower().split())


def contact_tags(pillar_name: str | None) -> list[str]:
    tags = [WEBSITE_LEAD_TAG]
    if pillar_name:
        tags.append(slugify_tag(pillar_name))
    return tags


def _record(row: ContactSubmissionRead | SiteUserRead | OrderRead) -> SyncRecord:
    return SyncRecord(
        sync_status=row.sync_status,
        external_id=row.external_id,
        last_error=row.last_error,
        synced_at=row.synced_at,
    )


def submission_entity(submission: ContactSubmissionRead) -> SyncableEntity:
    first_name, last_name = split_full_name(submission.name)
    custom_fields: dict[str, str | None] = {
        "source": submission.source,
        "pillar": submission.pillar_name,
    }
    if submission.created_at is not None:
        custom_fields["submitted_at"] = submission.created_at.isoformat()

    return SyncableEntity(
        entity_type=EntityType.CONTACT_SUBMISSION,
        entity_id=submission.id,
        profile=ContactProfile(
            first_name=first_name,
            last_name=last_name,
            email=submission.email,
            phone=submission.phone,
            company=submission.company,
            notes=submission.message,
            tags=contact_tags(submission.pillar_name),
            custom_fields=custom_fields,
        ),
        record=_record(submission),
        lead=LeadCreate(
            source=submission.source,
            status="new",
            pillar=submission.pillar_name,
            message=submission.message,
            metadata={
                "submission_id": submission.id,
                "ip_address": submission.ip_address,
            },
        ),
        lead_id=submission.crm_lead_id,
    )


def user_entity(user: SiteUserRead) -> SyncableEntity:
    return SyncableEntity(
        entity_type=EntityType.USER,
        entity_id=user.id,
        profile=ContactProfile(
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            phone=user.phone,
            company=user.company,
            tags=[SITE_USER_TAG],
            custom_fields={"source": "registration"},
        ),
        record=_record(user),
    )


def order_entity(order: OrderRead) -> SyncableEntity:
    pillars = sorted({slugify_tag(i.pillar_name) for i in order.items if i.pillar_name})
    return SyncableEntity(
        entity_type=EntityType.ORDER,
        entity_id=order.id,
        profile=ContactProfile(
            first_name=order.customer_first_name,
            last_name=order.customer_last_name,
            email=order.customer_email,
            phone=order.customer_phone,
            company=order.customer_company,
            notes=order.notes,
            tags=[CUSTOMER_TAG, *pillars],
            custom_fields={"source": "checkout", "order_number": order.order_number},
        ),
        record=_record(order),
    )
