"""Enroll a purchaser in every course a bundle purchase implies."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_desk import crud
from affiliate_desk.errors import DuplicateEnrollmentError
from affiliate_desk.models import Course, Enrollment, Payment

logger = logging.getLogger(__name__)


@dataclass
class CascadeResult:
    enrolled: List[int] = field(default_factory=list)
    already_enrolled: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, list[int]]:
        return {
            "enrolled": self.enrolled,
            "already_enrolled": self.already_enrolled,
            "missing": self.missing,
        }


def _clean_ids(values) -> list[int]:
    ids: list[int] = []
    for value in values or []:
        if value is None:
            continue
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed course reference %r", value)
    return ids


def collect_course_ids(db: Session, bundle: Course, result: CascadeResult | None = None) -> list[int]:
    """Ordered, de-duplicated ids: the bundle, its courses, its lower bundles and their courses."""

    ordered: dict[int, None] = {bundle.id: None}
    for course_id in _clean_ids(bundle.related_course_ids):
        ordered.setdefault(course_id, None)

    for bundle_id in _clean_ids(bundle.related_bundle_ids):
        lower = crud.get_course(db, bundle_id)
        if lower is None:
            logger.warning("Bundle %s lists missing lower-tier bundle %s", bundle.id, bundle_id)
            if result is not None and bundle_id not in result.missing:
                result.missing.append(bundle_id)
            continue
        ordered.setdefault(lower.id, None)
        for course_id in _clean_ids(lower.related_course_ids):
            ordered.setdefault(course_id, None)
    return list(ordered)


def enroll_one(db: Session, user_id: int, course: Course, payment: Payment) -> Enrollment:
    """Create the enrollment and bump the catalog counter.

    Raises ``DuplicateEnrollmentError`` if the storage-level uniqueness check
    fires, which only happens when another delivery got there first.
    """

    enrollment = Enrollment(user_id=user_id, course_id=course.id, payment_id=payment.id, status="active")
    db.add(enrollment)
    try:
        db.flush()
    except IntegrityError as exc:
        raise DuplicateEnrollmentError(f"User {user_id} is already enrolled in course {course.id}") from exc
    crud.add_profile_course(db, user_id, course.id)
    crud.increment_course_learners(db, course.id)
    return enrollment


def enroll_for_payment(db: Session, payment: Payment) -> CascadeResult:
    """Run the cascade for one payment; safe to replay after a partial run."""

    result = CascadeResult()
    bundle = crud.get_course(db, payment.purchased_bundle_id)
    if bundle is None:
        logger.warning("Payment %s references missing bundle %s", payment.id, payment.purchased_bundle_id)
        result.missing.append(payment.purchased_bundle_id)
        return result

    for course_id in collect_course_ids(db, bundle, result):
        if crud.is_enrolled(db, payment.user_id, course_id):
            result.already_enrolled.append(course_id)
            continue
        course = bundle if course_id == bundle.id else crud.get_course(db, course_id)
        if course is None:
            logger.warning("Skipping missing course %s while enrolling payment %s", course_id, payment.id)
            result.missing.append(course_id)
            continue
        enroll_one(db, payment.user_id, course, payment)
        result.enrolled.append(course_id)
        logger.info("Enrolled user %s in course %s (payment %s)", payment.user_id, course_id, payment.id)

    return result
